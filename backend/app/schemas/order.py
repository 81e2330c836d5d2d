"""Order schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from app.core.sanitize import sanitize_text
from app.models.order import OrderSource
from app.schemas.modifier import ModifierSelection


def _clean(v):
    return sanitize_text(v) if isinstance(v, str) else v


class OrderLineIn(BaseModel):
    """A cart line; catalog data wins whenever menu_item_id is given."""

    menu_item_id: Optional[int] = Field(None, gt=0)
    name: Optional[str] = Field(None, max_length=200)
    name_en: Optional[str] = Field(None, max_length=200)
    quantity: int = Field(..., ge=1, le=999)
    unit_price: Optional[Decimal] = Field(None, ge=0)
    customizations: List[str] = []
    modifiers: List[ModifierSelection] = []
    notes: Optional[str] = Field(None, max_length=500)
    department: Optional[str] = None
    estimated_prep_time: Optional[int] = Field(None, ge=0)

    @field_validator("name", "name_en", "notes", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return _clean(v)

    @field_validator("customizations", mode="before")
    @classmethod
    def _sanitize_list(cls, v):
        return [_clean(c) for c in v] if isinstance(v, list) else v


class CustomerInfo(BaseModel):
    name: Optional[str] = Field(None, max_length=200)
    phone: Optional[str] = Field(None, max_length=50)
    address: Optional[str] = Field(None, max_length=1000)


class TaxInfo(BaseModel):
    rate: Optional[Decimal] = Field(None, ge=0, le=100)
    include_tax_in_price: Optional[bool] = None


class OrderCreate(BaseModel):
    items: List[OrderLineIn] = []
    customer_name: Optional[str] = Field(None, max_length=200)
    customer_phone: Optional[str] = Field(None, max_length=50)
    customer_address: Optional[str] = Field(None, max_length=1000)
    customer_info: Optional[CustomerInfo] = None
    table_number: Optional[str] = Field(None, max_length=20)
    source: OrderSource = OrderSource.WEBSITE_WHATSAPP
    notes: Optional[str] = Field(None, max_length=2000)
    whatsapp_message_id: Optional[str] = Field(None, max_length=100)
    promotion_code: Optional[str] = Field(None, max_length=50)
    discount_amount: Optional[Decimal] = Field(None, ge=0)
    tax_info: Optional[TaxInfo] = None
    total_amount: Optional[Decimal] = None

    @field_validator("customer_name", "customer_phone", "customer_address", "table_number", "notes", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return _clean(v)

    def to_service_payload(self) -> dict:
        data = self.model_dump(exclude={"customer_info", "items", "tax_info", "source"})
        info = self.customer_info
        if info is not None:
            data["customer_name"] = data.get("customer_name") or _clean(info.name)
            data["customer_phone"] = data.get("customer_phone") or _clean(info.phone)
            data["customer_address"] = data.get("customer_address") or _clean(info.address)
        data["items"] = [line.model_dump() for line in self.items]
        data["tax_info"] = self.tax_info.model_dump() if self.tax_info else None
        data["source"] = self.source.value
        return data


class OrderUpdate(BaseModel):
    status: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=2000)
    delivery_date: Optional[datetime] = None
    assigned_to: Optional[Dict[str, str]] = None
    department_statuses: Optional[Dict[str, str]] = None
    customer_name: Optional[str] = Field(None, min_length=1, max_length=200)
    customer_phone: Optional[str] = Field(None, max_length=50)
    customer_address: Optional[str] = Field(None, max_length=1000)
    table_number: Optional[str] = Field(None, max_length=20)

    @field_validator("notes", "customer_name", "customer_phone", "customer_address", "table_number", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return _clean(v)


class DepartmentStatusUpdate(BaseModel):
    department: str
    status: str
    item_id: Optional[int] = Field(None, gt=0)
    assigned_to: Optional[str] = Field(None, max_length=200)

    @field_validator("assigned_to", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return _clean(v)
