"""Staff notification model."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, TimestampMixin


class NotificationType(str, Enum):
    ORDER = "order"
    SYSTEM = "system"
    STAFF = "staff"
    INVENTORY = "inventory"
    ALERT = "alert"


class NotificationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


NOTIFICATION_DEPARTMENTS = ("kitchen", "barista", "shisha", "admin")


class Notification(Base, TimestampMixin):
    """Notification shown on the dashboard and pushed over WebSocket."""

    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(primary_key=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    priority: Mapped[str] = mapped_column(String(10), default=NotificationPriority.MEDIUM.value, nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    department: Mapped[Optional[str]] = mapped_column(String(20), nullable=True, index=True)
    action_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    target_roles: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    target_users: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    dismissed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    def is_visible_to(self, user_id: int, role: str) -> bool:
        """Untargeted notifications are visible to everyone."""
        if not self.target_roles and not self.target_users:
            return True
        return role in (self.target_roles or []) or user_id in (self.target_users or [])
