"""Modifier group schemas."""

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from app.core.sanitize import sanitize_text
from app.models.modifier import ModifierType


def _clean(v):
    return sanitize_text(v) if isinstance(v, str) else v


class ModifierOptionIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    name_en: Optional[str] = Field(None, max_length=200)
    price: Decimal = Field(Decimal("0"), ge=0)
    is_default: bool = False

    @field_validator("name", "name_en", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return _clean(v)


class ModifierCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    name_en: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    type: ModifierType = ModifierType.SINGLE
    options: List[ModifierOptionIn] = Field(..., min_length=1)
    required: bool = False
    min_selections: Optional[int] = Field(None, ge=0)
    max_selections: Optional[int] = Field(None, ge=1)
    sort_order: int = 0
    is_active: bool = True

    @field_validator("name", "name_en", "description", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return _clean(v)

    @model_validator(mode="after")
    def _check_bounds(self):
        if (
            self.min_selections is not None
            and self.max_selections is not None
            and self.min_selections > self.max_selections
        ):
            raise ValueError("min_selections cannot be greater than max_selections")
        return self


class ModifierUpdate(ModifierCreate):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    type: Optional[ModifierType] = None
    options: Optional[List[ModifierOptionIn]] = Field(None, min_length=1)
    required: Optional[bool] = None
    sort_order: Optional[int] = None
    is_active: Optional[bool] = None


class ModifierSelection(BaseModel):
    """Options picked from one modifier group for an order line."""

    modifier_id: int = Field(..., gt=0)
    option_ids: List[int] = []
