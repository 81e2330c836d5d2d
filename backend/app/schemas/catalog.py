"""Menu catalog schemas."""

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from app.core.sanitize import sanitize_text
from app.core.validators import validate_department, validate_hex_color
from app.models.menu import MenuItemStatus


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    name_en: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    department: str = "kitchen"
    color: Optional[str] = None
    icon: Optional[str] = Field(None, max_length=100)
    sort_order: int = 0
    is_active: bool = True

    @field_validator("name", "name_en", "description", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return sanitize_text(v) if isinstance(v, str) else v

    @field_validator("department")
    @classmethod
    def _department(cls, v):
        return validate_department(v)

    @field_validator("color")
    @classmethod
    def _color(cls, v):
        return validate_hex_color(v)


class CategoryUpdate(CategoryCreate):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    department: Optional[str] = None
    sort_order: Optional[int] = None
    is_active: Optional[bool] = None


class IngredientLine(BaseModel):
    """A recipe line: portion of a material per menu item."""

    material_id: int = Field(..., gt=0)
    portion: Decimal = Field(..., gt=0)
    unit: str = Field(..., min_length=1, max_length=20)
    required: bool = True


class MenuItemCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    name_en: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    price: Decimal = Field(..., gt=0)
    discount_price: Optional[Decimal] = Field(None, ge=0)
    category_id: Optional[int] = Field(None, gt=0)
    department: Optional[str] = None
    image_url: Optional[str] = Field(None, max_length=500)
    preparation_time: int = Field(15, ge=0, le=600)
    calories: Optional[int] = Field(None, ge=0)
    is_available: bool = True
    is_featured: bool = False
    status: Optional[MenuItemStatus] = None
    sort_order: int = 0
    ingredients: List[IngredientLine] = []
    modifier_ids: List[int] = []

    @field_validator("name", "name_en", "description", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return sanitize_text(v) if isinstance(v, str) else v

    @field_validator("department")
    @classmethod
    def _department(cls, v):
        return validate_department(v)


class MenuItemUpdate(MenuItemCreate):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    price: Optional[Decimal] = Field(None, gt=0)
    preparation_time: Optional[int] = Field(None, ge=0, le=600)
    is_available: Optional[bool] = None
    is_featured: Optional[bool] = None
    sort_order: Optional[int] = None
    ingredients: Optional[List[IngredientLine]] = None
    modifier_ids: Optional[List[int]] = None
