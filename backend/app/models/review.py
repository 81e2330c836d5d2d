"""Customer reviews of individual menu items, shown once approved."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from app.db.base import Base, TimestampMixin


class MenuItemReview(Base, TimestampMixin):
    __tablename__ = "menu_item_reviews"

    id: Mapped[int] = mapped_column(primary_key=True)
    menu_item_id: Mapped[int] = mapped_column(
        ForeignKey("menu_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    author_name: Mapped[str] = mapped_column(String(200), nullable=False)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    is_approved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)

    menu_item: Mapped["MenuItem"] = relationship("MenuItem")

    @validates("rating")
    def _validate_rating(self, key, value):
        if value is not None and not 1 <= int(value) <= 5:
            raise ValueError(f"{key} must be between 1 and 5, got {value}")
        return value


from app.models.menu import MenuItem  # noqa: E402
