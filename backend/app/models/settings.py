"""Singleton settings rows: tax handling and site theme."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from sqlalchemy import JSON, Boolean, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, validates

from app.db.base import Base, TimestampMixin
from app.models.validators import percentage

TAX_TYPES = ("VAT", "GST", "SALES_TAX", "CUSTOM")

DEFAULT_THEME = {
    "primary": "#c0392b",
    "secondary": "#2c3e50",
    "accent": "#f39c12",
    "background": "#ffffff",
    "text": "#222222",
}

DEFAULT_CONTACT = {
    "phone": "",
    "whatsapp": "",
    "address": "",
    "opening_hours": "",
}


class TaxSettings(Base, TimestampMixin):
    """Tax configuration applied when pricing orders."""

    __tablename__ = "tax_settings"

    id: Mapped[int] = mapped_column(primary_key=True)
    enable_tax_handling: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    tax_type: Mapped[str] = mapped_column(String(20), default="VAT", nullable=False)
    vat_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("15"), nullable=False)
    include_tax_in_price: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    tax_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    company_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    compliance_mode: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    display_tax_breakdown: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    @validates("vat_rate")
    def _validate_rate(self, key, value):
        return percentage(key, value)


class SiteSettings(Base, TimestampMixin):
    """Public site branding and contact details."""

    __tablename__ = "site_settings"

    id: Mapped[int] = mapped_column(primary_key=True)
    restaurant_name: Mapped[str] = mapped_column(String(200), nullable=False)
    logo_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    logo_position: Mapped[str] = mapped_column(String(10), default="center", nullable=False)
    layout_template: Mapped[str] = mapped_column(String(50), default="classic", nullable=False)
    theme: Mapped[dict] = mapped_column(JSON, default=lambda: dict(DEFAULT_THEME), nullable=False)
    contact: Mapped[dict] = mapped_column(JSON, default=lambda: dict(DEFAULT_CONTACT), nullable=False)
