"""Inventory models: materials and the stock movement ledger."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from app.db.base import Base, TimestampMixin, utcnow
from app.models.validators import non_negative


class MaterialStatus(str, Enum):
    ACTIVE = "active"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"


class MaterialCategory(str, Enum):
    FOOD = "food"
    BEVERAGE = "beverage"
    SHISHA = "shisha"
    CLEANING = "cleaning"
    OTHER = "other"


class MovementReason(str, Enum):
    """Reasons for stock movements."""

    ORDER = "order"  # Consumed by a placed order
    REFUND = "refund"  # Order cancelled, consumption reversed
    MANUAL = "manual"  # Manual usage recorded by staff
    WASTE = "waste"  # Spoilage, breakage
    ADJUSTMENT = "adjustment"  # Quantity edited or set downwards
    RESTOCK = "restock"  # Goods received / set upwards


def derive_status(quantity, min_limit, alert_limit) -> MaterialStatus:
    """Stock status implied by a quantity and its thresholds."""
    quantity = Decimal(str(quantity or 0))
    threshold = Decimal(str(alert_limit or 0)) or Decimal(str(min_limit or 0))
    if quantity <= 0:
        return MaterialStatus.OUT_OF_STOCK
    if quantity <= threshold:
        return MaterialStatus.LOW_STOCK
    return MaterialStatus.ACTIVE


class Material(Base, TimestampMixin):
    """Inventory ingredient with stock thresholds."""

    __tablename__ = "materials"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    name_en: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)
    current_quantity: Mapped[Decimal] = mapped_column(Numeric(12, 3), default=Decimal("0"), nullable=False)
    min_limit: Mapped[Decimal] = mapped_column(Numeric(12, 3), default=Decimal("0"), nullable=False)
    alert_limit: Mapped[Decimal] = mapped_column(Numeric(12, 3), default=Decimal("0"), nullable=False)
    cost_per_unit: Mapped[Decimal] = mapped_column(Numeric(12, 4), default=Decimal("0"), nullable=False)
    supplier: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    category: Mapped[str] = mapped_column(String(20), default=MaterialCategory.FOOD.value, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), default=MaterialStatus.OUT_OF_STOCK.value, nullable=False, index=True)
    last_restocked: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expiry_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    @validates("current_quantity", "min_limit", "alert_limit", "cost_per_unit")
    def _validate_amounts(self, key, value):
        return non_negative(key, value)

    def refresh_status(self) -> MaterialStatus:
        """Recompute and store the derived status; returns it."""
        status = derive_status(self.current_quantity, self.min_limit, self.alert_limit)
        self.status = status.value
        return status

    @property
    def is_low(self) -> bool:
        return self.status != MaterialStatus.ACTIVE.value


class StockMovement(Base):
    """Ledger of all material quantity changes (single source of truth)."""

    __tablename__ = "stock_movements"

    id: Mapped[int] = mapped_column(primary_key=True)
    ts: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False, index=True
    )
    material_id: Mapped[int] = mapped_column(
        ForeignKey("materials.id", ondelete="CASCADE"), nullable=False, index=True
    )
    qty_delta: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    department: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    ref_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)  # order, manual
    ref_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_by: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    material: Mapped[Material] = relationship("Material")
