"""Menu item review schemas."""

from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from app.core.sanitize import sanitize_text


class ReviewCreate(BaseModel):
    author_name: str = Field(..., min_length=1, max_length=200)
    rating: int = Field(..., ge=1, le=5)
    text: str = Field(..., min_length=1, max_length=500)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=50)

    @field_validator("author_name", "text", "phone", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return sanitize_text(v) if isinstance(v, str) else v

    @field_validator("email")
    @classmethod
    def _lower(cls, v):
        return v.lower() if v else v


class ReviewModeration(BaseModel):
    is_approved: bool
