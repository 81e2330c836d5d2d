"""Notification schemas."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.core.rbac import UserRole
from app.core.sanitize import sanitize_text
from app.core.validators import validate_department
from app.models.notification import NOTIFICATION_DEPARTMENTS, NotificationPriority, NotificationType


class NotificationCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    type: NotificationType = NotificationType.SYSTEM
    priority: NotificationPriority = NotificationPriority.MEDIUM
    title: str = Field(..., min_length=1, max_length=300)
    message: str = Field(..., min_length=1, max_length=5000)
    data: Optional[Dict[str, Any]] = None
    department: Optional[str] = None
    action_required: bool = False
    target_roles: List[UserRole] = []
    target_users: List[int] = []
    expires_at: Optional[datetime] = None

    @field_validator("title", "message", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return sanitize_text(v) if isinstance(v, str) else v

    @field_validator("department")
    @classmethod
    def _department(cls, v):
        return validate_department(v, allow=NOTIFICATION_DEPARTMENTS)


class NotificationUpdate(BaseModel):
    read: Optional[bool] = None
    dismissed: Optional[bool] = None
