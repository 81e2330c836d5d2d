"""
Settings Schemas
Pydantic models for the tax and site settings endpoints
"""
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from app.core.sanitize import sanitize_text
from app.core.validators import validate_hex_color


class TaxSettingsUpdate(BaseModel):
    """Partial update of the tax configuration"""
    enable_tax_handling: Optional[bool] = None
    tax_type: Optional[Literal["VAT", "GST", "SALES_TAX", "CUSTOM"]] = None
    vat_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    include_tax_in_price: Optional[bool] = None
    tax_number: Optional[str] = Field(None, max_length=50)
    company_name: Optional[str] = Field(None, max_length=200)
    compliance_mode: Optional[bool] = None
    display_tax_breakdown: Optional[bool] = None

    @field_validator("tax_number", "company_name", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return sanitize_text(v) if isinstance(v, str) else v


class ThemeColors(BaseModel):
    """Theme colours, each ``#rrggbb``"""
    primary: Optional[str] = None
    secondary: Optional[str] = None
    accent: Optional[str] = None
    background: Optional[str] = None
    text: Optional[str] = None

    @field_validator("primary", "secondary", "accent", "background", "text")
    @classmethod
    def _color(cls, v):
        return validate_hex_color(v)


class ContactInfo(BaseModel):
    phone: Optional[str] = Field(None, max_length=50)
    whatsapp: Optional[str] = Field(None, max_length=50)
    address: Optional[str] = Field(None, max_length=500)
    opening_hours: Optional[str] = Field(None, max_length=500)

    @field_validator("phone", "whatsapp", "address", "opening_hours", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return sanitize_text(v) if isinstance(v, str) else v


class SiteSettingsUpdate(BaseModel):
    """Partial update of the public site settings; theme and contact are merged"""
    restaurant_name: Optional[str] = Field(None, min_length=1, max_length=200)
    logo_url: Optional[str] = Field(None, max_length=500)
    logo_position: Optional[Literal["left", "center", "right"]] = None
    layout_template: Optional[str] = Field(None, min_length=1, max_length=50)
    theme: Optional[ThemeColors] = None
    contact: Optional[ContactInfo] = None

    @field_validator("restaurant_name", "layout_template", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return sanitize_text(v) if isinstance(v, str) else v
