"""Menu catalog models: categories, menu items and their recipe lines."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import Boolean, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from app.db.base import Base, TimestampMixin
from app.models.validators import non_negative, positive


class MenuItemStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    OUT_OF_STOCK = "out_of_stock"


class Category(Base, TimestampMixin):
    """Menu category; its department routes items to a fulfilment queue."""

    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    name_en: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    department: Mapped[str] = mapped_column(String(20), default="kitchen", nullable=False)
    color: Mapped[Optional[str]] = mapped_column(String(7), nullable=True)
    icon: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    items: Mapped[List["MenuItem"]] = relationship("MenuItem", back_populates="category")


class MenuItem(Base, TimestampMixin):
    """Orderable menu item."""

    __tablename__ = "menu_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    name_en: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    discount_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    category_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True
    )
    department: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # overrides category
    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    preparation_time: Mapped[int] = mapped_column(Integer, default=15, nullable=False)  # minutes
    calories: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_featured: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=MenuItemStatus.ACTIVE.value, nullable=False, index=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    category: Mapped[Optional[Category]] = relationship("Category", back_populates="items")
    ingredients: Mapped[List["MenuItemIngredient"]] = relationship(
        "MenuItemIngredient",
        back_populates="menu_item",
        cascade="all, delete-orphan",
        order_by="MenuItemIngredient.id",
    )
    modifiers: Mapped[List["Modifier"]] = relationship(
        "Modifier",
        secondary="menu_item_modifiers",
        back_populates="menu_items",
        order_by=lambda: (Modifier.sort_order, Modifier.id),
    )

    @validates("price")
    def _validate_price(self, key, value):
        return positive(key, value)

    @validates("discount_price")
    def _validate_discount_price(self, key, value):
        return non_negative(key, value)

    @property
    def effective_department(self) -> str:
        if self.department:
            return self.department
        if self.category is not None and self.category.department:
            return self.category.department
        return "kitchen"

    @property
    def effective_price(self) -> Decimal:
        if self.discount_price is not None and 0 < self.discount_price < self.price:
            return self.discount_price
        return self.price

    @property
    def is_orderable(self) -> bool:
        return self.is_available and self.status == MenuItemStatus.ACTIVE.value


class MenuItemIngredient(Base):
    """One recipe line: how much of a material a single portion consumes."""

    __tablename__ = "menu_item_ingredients"

    id: Mapped[int] = mapped_column(primary_key=True)
    menu_item_id: Mapped[int] = mapped_column(
        ForeignKey("menu_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    material_id: Mapped[int] = mapped_column(
        ForeignKey("materials.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    portion: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)
    required: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    menu_item: Mapped[MenuItem] = relationship("MenuItem", back_populates="ingredients")
    material: Mapped["Material"] = relationship("Material")

    @validates("portion")
    def _validate_portion(self, key, value):
        return positive(key, value)


from app.models.inventory import Material  # noqa: E402
from app.models.modifier import Modifier  # noqa: E402
