"""Customer order models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from app.db.base import Base, TimestampMixin, utcnow
from app.models.validators import non_negative, percentage, positive


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class DepartmentStatus(str, Enum):
    """Progress of a department's share of an order, in fulfilment order."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    READY = "ready"
    SERVED = "served"


class OrderSource(str, Enum):
    WEBSITE_WHATSAPP = "website_whatsapp"
    MANUAL = "manual"
    WEBSITE = "website"


# Allowed lifecycle moves; delivered and cancelled are terminal
ORDER_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.PREPARING, OrderStatus.CANCELLED},
    OrderStatus.PREPARING: {OrderStatus.READY, OrderStatus.CANCELLED},
    OrderStatus.READY: {OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}

DEPARTMENT_STATUS_RANK = {status.value: rank for rank, status in enumerate(DepartmentStatus)}


class Order(Base, TimestampMixin):
    """Customer order with per-department fulfilment state."""

    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_number: Mapped[str] = mapped_column(String(20), unique=True, index=True, nullable=False)

    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    include_tax_in_price: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    customer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    customer_address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    table_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    source: Mapped[str] = mapped_column(String(30), default=OrderSource.WEBSITE_WHATSAPP.value, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    whatsapp_message_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    promotion_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    status: Mapped[str] = mapped_column(String(20), default=OrderStatus.PENDING.value, nullable=False, index=True)
    department_statuses: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    assigned_to: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    order_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False, index=True
    )
    delivery_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    inventory_consumed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    inventory_restored: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )

    @validates("total_amount")
    def _validate_total(self, key, value):
        return positive(key, value)

    @validates("subtotal", "discount_amount", "tax_amount")
    def _validate_amounts(self, key, value):
        return non_negative(key, value)

    @validates("tax_rate")
    def _validate_tax_rate(self, key, value):
        return percentage(key, value)

    @property
    def is_terminal(self) -> bool:
        return self.status in (OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value)

    @property
    def departments(self) -> list[str]:
        """Departments that have at least one line on this order."""
        seen: list[str] = []
        for item in self.items:
            if item.department not in seen:
                seen.append(item.department)
        return seen


class OrderItem(Base):
    """Line item on an order."""

    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    menu_item_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("menu_items.id", ondelete="SET NULL"), nullable=True, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    name_en: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    customizations: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    department: Mapped[str] = mapped_column(String(20), default="kitchen", nullable=False, index=True)
    department_status: Mapped[str] = mapped_column(
        String(20), default=DepartmentStatus.PENDING.value, nullable=False
    )
    estimated_prep_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    order: Mapped[Order] = relationship("Order", back_populates="items")

    @validates("quantity")
    def _validate_quantity(self, key, value):
        return positive(key, value)

    @validates("unit_price", "total_price")
    def _validate_prices(self, key, value):
        return non_negative(key, value)
