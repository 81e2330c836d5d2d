"""Offer and promotion models (discount rules applied at checkout)."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, validates

from app.db.base import Base, TimestampMixin
from app.models.validators import non_negative, validate_list


class OfferType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    BUY_X_GET_Y = "buy_x_get_y"
    FREE_ITEM = "free_item"


class OfferStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"


class PromotionType(str, Enum):
    DISCOUNT_CODE = "discount-code"
    BUY_X_GET_Y = "buy-x-get-y"


class DiscountType(str, Enum):
    PERCENT = "percent"
    FIXED = "fixed"


class Offer(Base, TimestampMixin):
    """Marketing offer displayed on the public menu."""

    __tablename__ = "offers"

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    title_en: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    discount_value: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    min_purchase: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    max_discount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    applicable_categories: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    applicable_items: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    buy_quantity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    get_quantity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    free_item_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    code: Mapped[Optional[str]] = mapped_column(String(50), unique=True, nullable=True, index=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=OfferStatus.ACTIVE.value, nullable=False)
    usage_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    used_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    @validates("discount_value", "min_purchase", "max_discount")
    def _validate_amounts(self, key, value):
        return non_negative(key, value)

    @validates("applicable_categories", "applicable_items")
    def _validate_targets(self, key, value):
        return validate_list(key, value)


class Promotion(Base, TimestampMixin):
    """Code-based or buy-X-get-Y promotion validated at checkout."""

    __tablename__ = "promotions"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    code: Mapped[Optional[str]] = mapped_column(String(50), unique=True, nullable=True, index=True)
    discount_type: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    value: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    usage_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    min_purchase_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    buy_qty: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    get_qty: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    applicable_items: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    applicable_categories: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    @validates("value", "min_purchase_amount")
    def _validate_amounts(self, key, value):
        return non_negative(key, value)

    @validates("applicable_items", "applicable_categories")
    def _validate_targets(self, key, value):
        return validate_list(key, value)

    @property
    def usage_exhausted(self) -> bool:
        return self.usage_limit is not None and self.usage_count >= self.usage_limit
