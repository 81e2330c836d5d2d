"""Modifier groups: priced choices (size, extras, sauces) attached to menu items."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import Boolean, Column, ForeignKey, Integer, Numeric, String, Table, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from app.db.base import Base, TimestampMixin
from app.models.validators import non_negative


class ModifierType(str, Enum):
    SINGLE = "single"
    MULTIPLE = "multiple"


menu_item_modifiers = Table(
    "menu_item_modifiers",
    Base.metadata,
    Column("menu_item_id", ForeignKey("menu_items.id", ondelete="CASCADE"), primary_key=True),
    Column("modifier_id", ForeignKey("modifiers.id", ondelete="CASCADE"), primary_key=True),
)


class Modifier(Base, TimestampMixin):
    """A group of options a customer picks from when ordering an item."""

    __tablename__ = "modifiers"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    name_en: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(10), default=ModifierType.SINGLE.value, nullable=False)
    required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    min_selections: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_selections: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    options: Mapped[List["ModifierOption"]] = relationship(
        "ModifierOption",
        back_populates="modifier",
        cascade="all, delete-orphan",
        order_by=lambda: (ModifierOption.sort_order, ModifierOption.id),
    )
    menu_items: Mapped[List["MenuItem"]] = relationship(
        "MenuItem", secondary="menu_item_modifiers", back_populates="modifiers"
    )

    def apply_selection_rules(self) -> None:
        """Normalize selection bounds for the group type.

        Single groups allow exactly one pick; a required single group always
        has a default option.

        Raises:
            ValueError: when a multiple group's minimum exceeds its maximum.
        """
        if self.type == ModifierType.SINGLE.value:
            self.min_selections = None
            self.max_selections = 1
            if self.required and self.options and not any(o.is_default for o in self.options):
                self.options[0].is_default = True
        elif self.min_selections and self.max_selections and self.min_selections > self.max_selections:
            raise ValueError("min_selections cannot be greater than max_selections")

    @property
    def default_options(self) -> List["ModifierOption"]:
        return [o for o in self.options if o.is_default]


class ModifierOption(Base):
    """One priced choice inside a modifier group."""

    __tablename__ = "modifier_options"

    id: Mapped[int] = mapped_column(primary_key=True)
    modifier_id: Mapped[int] = mapped_column(
        ForeignKey("modifiers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    name_en: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    modifier: Mapped[Modifier] = relationship("Modifier", back_populates="options")

    @validates("price")
    def _validate_price(self, key, value):
        return non_negative(key, value)
