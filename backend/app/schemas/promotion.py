"""Offer and promotion schemas."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.core.sanitize import sanitize_text
from app.models.promotion import DiscountType, OfferStatus, OfferType, PromotionType


def _clean(v):
    return sanitize_text(v) if isinstance(v, str) else v


def _upper_code(v):
    if isinstance(v, str):
        v = v.strip().upper()
        return v or None
    return v


class OfferCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    title: str = Field(..., min_length=1, max_length=200)
    title_en: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    type: OfferType
    discount_value: Decimal = Field(Decimal("0"), ge=0)
    min_purchase: Decimal = Field(Decimal("0"), ge=0)
    max_discount: Optional[Decimal] = Field(None, ge=0)
    applicable_categories: List[int] = []
    applicable_items: List[int] = []
    buy_quantity: Optional[int] = Field(None, ge=1)
    get_quantity: Optional[int] = Field(None, ge=1)
    free_item_id: Optional[int] = Field(None, gt=0)
    code: Optional[str] = Field(None, max_length=50)
    image_url: Optional[str] = Field(None, max_length=500)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: OfferStatus = OfferStatus.ACTIVE
    usage_limit: Optional[int] = Field(None, ge=1)
    sort_order: int = 0

    @field_validator("title", "title_en", "description", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return _clean(v)

    @field_validator("code", mode="before")
    @classmethod
    def _code(cls, v):
        return _upper_code(v)

    @model_validator(mode="after")
    def _check_rules(self):
        if self.type == OfferType.PERCENTAGE.value and self.discount_value > 100:
            raise ValueError("Percentage discount cannot exceed 100")
        if self.type == OfferType.BUY_X_GET_Y.value and not (self.buy_quantity and self.get_quantity):
            raise ValueError("buy_x_get_y offers require buy_quantity and get_quantity")
        if self.type == OfferType.FREE_ITEM.value and not self.free_item_id:
            raise ValueError("free_item offers require free_item_id")
        if self.start_date and self.end_date and self.start_date >= self.end_date:
            raise ValueError("start_date must be before end_date")
        return self


class OfferUpdate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    title_en: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    discount_value: Optional[Decimal] = Field(None, ge=0)
    min_purchase: Optional[Decimal] = Field(None, ge=0)
    max_discount: Optional[Decimal] = Field(None, ge=0)
    applicable_categories: Optional[List[int]] = None
    applicable_items: Optional[List[int]] = None
    buy_quantity: Optional[int] = Field(None, ge=1)
    get_quantity: Optional[int] = Field(None, ge=1)
    free_item_id: Optional[int] = Field(None, gt=0)
    code: Optional[str] = Field(None, max_length=50)
    image_url: Optional[str] = Field(None, max_length=500)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: Optional[OfferStatus] = None
    usage_limit: Optional[int] = Field(None, ge=1)
    sort_order: Optional[int] = None

    @field_validator("title", "title_en", "description", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return _clean(v)

    @field_validator("code", mode="before")
    @classmethod
    def _code(cls, v):
        return _upper_code(v)


class PromotionCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    type: PromotionType
    code: Optional[str] = Field(None, max_length=50)
    discount_type: Optional[DiscountType] = None
    value: Decimal = Field(Decimal("0"), ge=0)
    start_date: datetime
    end_date: datetime
    is_active: bool = True
    usage_limit: Optional[int] = Field(None, ge=1)
    min_purchase_amount: Decimal = Field(Decimal("0"), ge=0)
    buy_qty: Optional[int] = None
    get_qty: Optional[int] = None
    applicable_items: List[int] = []
    applicable_categories: List[int] = []

    @field_validator("name", "description", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return _clean(v)

    @field_validator("code", mode="before")
    @classmethod
    def _code(cls, v):
        return _upper_code(v)


class PromotionUpdate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    code: Optional[str] = Field(None, max_length=50)
    discount_type: Optional[DiscountType] = None
    value: Optional[Decimal] = Field(None, ge=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: Optional[bool] = None
    usage_limit: Optional[int] = Field(None, ge=1)
    min_purchase_amount: Optional[Decimal] = Field(None, ge=0)
    buy_qty: Optional[int] = None
    get_qty: Optional[int] = None
    applicable_items: Optional[List[int]] = None
    applicable_categories: Optional[List[int]] = None

    @field_validator("name", "description", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return _clean(v)

    @field_validator("code", mode="before")
    @classmethod
    def _code(cls, v):
        return _upper_code(v)


class CartLine(BaseModel):
    menu_item_id: Optional[int] = None
    category_id: Optional[int] = None
    quantity: int = Field(1, ge=1)
    unit_price: Decimal = Field(Decimal("0"), ge=0)


class PromotionValidateRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    cart_total: Decimal = Field(..., ge=0)
    items: List[CartLine] = []
