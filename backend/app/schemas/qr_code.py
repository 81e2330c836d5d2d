"""QR code schemas."""

from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from app.core.sanitize import sanitize_text
from app.core.validators import validate_hex_color


def _clean(v):
    return sanitize_text(v) if isinstance(v, str) else v


class QRCustomization(BaseModel):
    foreground_color: Optional[str] = None
    background_color: Optional[str] = None
    size: Optional[int] = Field(None, ge=100, le=1000)
    error_correction: Optional[Literal["L", "M", "Q", "H"]] = None
    include_logo: Optional[bool] = None

    @field_validator("foreground_color", "background_color")
    @classmethod
    def _color(cls, v):
        return validate_hex_color(v)


class QRCodeCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    type: Literal["branch", "table", "category", "custom"] = "table"
    target_id: Optional[str] = Field(None, max_length=50)
    table_number: Optional[str] = Field(None, max_length=20)
    url: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = Field(None, max_length=2000)
    customization: Optional[QRCustomization] = None
    is_active: bool = True

    @field_validator("name", "description", "table_number", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return _clean(v)

    @field_validator("url")
    @classmethod
    def _url(cls, v):
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("url must start with http:// or https://")
        return v


class QRCodeUpdate(QRCodeCreate):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    type: Optional[Literal["branch", "table", "category", "custom"]] = None
    is_active: Optional[bool] = None


class QRScanRequest(BaseModel):
    token: Optional[str] = Field(None, max_length=64)
