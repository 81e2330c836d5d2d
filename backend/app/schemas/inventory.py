"""Inventory (materials and stock) schemas."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.core.sanitize import sanitize_text
from app.core.validators import validate_department
from app.models.inventory import MaterialCategory, MovementReason
from app.services.units import is_known_unit, normalize_unit


def _check_unit(value):
    if value is None:
        return value
    if not is_known_unit(value):
        raise ValueError(f"Unknown unit '{value}'")
    return normalize_unit(value)


class MaterialCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    name: str = Field(..., min_length=1, max_length=200)
    name_en: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    unit: str = Field(..., min_length=1, max_length=20)
    current_quantity: Decimal = Field(Decimal("0"), ge=0)
    min_limit: Decimal = Field(Decimal("0"), ge=0)
    alert_limit: Decimal = Field(Decimal("0"), ge=0)
    cost_per_unit: Decimal = Field(Decimal("0"), ge=0)
    supplier: Optional[str] = Field(None, max_length=200)
    category: MaterialCategory = MaterialCategory.FOOD
    expiry_date: Optional[datetime] = None
    notes: Optional[str] = Field(None, max_length=2000)
    is_active: bool = True

    @field_validator("name", "name_en", "description", "supplier", "notes", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return sanitize_text(v) if isinstance(v, str) else v

    @field_validator("unit")
    @classmethod
    def _unit(cls, v):
        return _check_unit(v)


class MaterialUpdate(MaterialCreate):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    unit: Optional[str] = Field(None, min_length=1, max_length=20)
    current_quantity: Optional[Decimal] = Field(None, ge=0)
    min_limit: Optional[Decimal] = Field(None, ge=0)
    alert_limit: Optional[Decimal] = Field(None, ge=0)
    cost_per_unit: Optional[Decimal] = Field(None, ge=0)
    category: Optional[MaterialCategory] = None
    is_active: Optional[bool] = None


class StockUpdate(BaseModel):
    operation: str
    quantity: Decimal = Field(..., ge=0)
    reason: Optional[str] = Field(None, max_length=500)

    @field_validator("reason", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return sanitize_text(v) if isinstance(v, str) else v


class BulkStockItem(StockUpdate):
    id: int = Field(..., gt=0)


class BulkStockUpdate(BaseModel):
    updates: List[BulkStockItem] = Field(..., min_length=1, max_length=200)


class UsageCreate(BaseModel):
    material_id: int = Field(..., gt=0)
    quantity: Decimal = Field(..., gt=0)
    unit: Optional[str] = Field(None, max_length=20)
    usage_type: str = MovementReason.MANUAL.value
    department: Optional[str] = None
    reason: Optional[str] = Field(None, max_length=500)
    notes: Optional[str] = Field(None, max_length=500)

    @field_validator("usage_type")
    @classmethod
    def _usage_type(cls, v):
        allowed = (MovementReason.MANUAL.value, MovementReason.WASTE.value)
        if v not in allowed:
            raise ValueError(f"usage_type must be one of: {', '.join(allowed)}")
        return v

    @field_validator("department")
    @classmethod
    def _department(cls, v):
        return validate_department(v)

    @field_validator("reason", "notes", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return sanitize_text(v) if isinstance(v, str) else v
