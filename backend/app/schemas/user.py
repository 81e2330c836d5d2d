"""Staff account schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from app.core.rbac import UserRole
from app.core.sanitize import sanitize_text
from app.core.validators import validate_department


class Permissions(BaseModel):
    can_view_reports: bool = False
    can_manage_menu: bool = False
    can_manage_orders: bool = True
    can_manage_staff: bool = False
    can_manage_inventory: bool = False


class UserBase(BaseModel):
    """Base user schema."""

    username: str = Field(..., min_length=3, max_length=100, pattern=r"^[A-Za-z0-9_.-]+$")
    email: Optional[EmailStr] = None
    name: str = Field(..., min_length=1, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    department: Optional[str] = None

    @field_validator("name", "phone", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return sanitize_text(v) if isinstance(v, str) else v

    @field_validator("department")
    @classmethod
    def _department(cls, v):
        return validate_department(v)


class UserCreate(UserBase):
    """User creation schema."""

    password: str = Field(..., min_length=8, max_length=128)
    role: UserRole = UserRole.STAFF
    permissions: Optional[Permissions] = None
    is_active: bool = True


class UserUpdate(BaseModel):
    """User update schema."""

    email: Optional[EmailStr] = None
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    department: Optional[str] = None
    password: Optional[str] = Field(None, min_length=8, max_length=128)
    role: Optional[UserRole] = None
    permissions: Optional[Permissions] = None
    is_active: Optional[bool] = None

    @field_validator("name", "phone", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return sanitize_text(v) if isinstance(v, str) else v

    @field_validator("department")
    @classmethod
    def _department(cls, v):
        return validate_department(v)


class UserResponse(BaseModel):
    """User response schema."""

    id: int
    username: str
    email: Optional[str] = None
    name: str
    role: UserRole
    department: Optional[str] = None
    phone: Optional[str] = None
    permissions: dict
    is_active: bool
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
