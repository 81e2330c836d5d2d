"""Staff notification service.

Creates notification rows, deduplicates open inventory alerts and queues
every new notification for the WebSocket channels once the transaction
commits.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.models.notification import Notification, NotificationPriority, NotificationType
from app.services.websocket_service import Channel, EventType, department_channel, queue_event

logger = logging.getLogger(__name__)


def serialize_notification(n: Notification) -> Dict[str, Any]:
    return {
        "id": n.id,
        "type": n.type,
        "priority": n.priority,
        "title": n.title,
        "message": n.message,
        "data": n.data or {},
        "department": n.department,
        "action_required": n.action_required,
        "target_roles": n.target_roles or [],
        "target_users": n.target_users or [],
        "read": n.read,
        "read_at": n.read_at.isoformat() if n.read_at else None,
        "dismissed": n.dismissed,
        "expires_at": n.expires_at.isoformat() if n.expires_at else None,
        "created_at": n.created_at.isoformat() if n.created_at else None,
    }


class NotificationService:
    """Notification persistence and delivery."""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        type: str,
        title: str,
        message: str,
        priority: str = NotificationPriority.MEDIUM.value,
        data: Optional[Dict[str, Any]] = None,
        department: Optional[str] = None,
        action_required: bool = False,
        target_roles: Optional[List[str]] = None,
        target_users: Optional[List[int]] = None,
        expires_at: Optional[datetime] = None,
        created_by: Optional[int] = None,
    ) -> Notification:
        notification = Notification(
            type=type,
            priority=priority,
            title=title,
            message=message,
            data=data or {},
            department=department,
            action_required=action_required,
            target_roles=target_roles or [],
            target_users=target_users or [],
            expires_at=expires_at,
            created_by=created_by,
        )
        self.db.add(notification)
        self.db.flush()

        channels = [Channel.NOTIFICATIONS.value]
        dept_channel = department_channel(department)
        if dept_channel:
            channels.append(dept_channel)
        queue_event(
            self.db,
            EventType.NOTIFICATION.value,
            {
                "id": notification.id,
                "type": type,
                "priority": priority,
                "title": title,
                "message": message,
                "department": department,
                "data": data or {},
            },
            channels,
        )
        logger.info(f"Notification created: [{priority}] {title}")
        return notification

    def find_open_alert(self, alert: str, material_id: int) -> Optional[Notification]:
        """Unread, undismissed inventory alert of one kind for one material."""
        candidates = (
            self.db.query(Notification)
            .filter(
                Notification.type == NotificationType.INVENTORY.value,
                Notification.read.is_(False),
                Notification.dismissed.is_(False),
            )
            .all()
        )
        for n in candidates:
            data = n.data or {}
            if data.get("alert") == alert and data.get("material_id") == material_id:
                return n
        return None

    def create_inventory_alert(
        self,
        alert: str,
        material_id: int,
        title: str,
        message: str,
        priority: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Optional[Notification]:
        """Create an inventory alert unless the same one is still open."""
        if self.find_open_alert(alert, material_id) is not None:
            logger.debug(f"Skipping duplicate {alert} alert for material {material_id}")
            return None
        payload = {"alert": alert, "material_id": material_id}
        payload.update(data or {})
        return self.create(
            type=NotificationType.INVENTORY.value,
            title=title,
            message=message,
            priority=priority,
            data=payload,
            department="admin",
            action_required=priority in (NotificationPriority.HIGH.value, NotificationPriority.URGENT.value),
            target_roles=["admin", "manager"],
        )

    def resolve_inventory_alerts(self, material_id: int, alerts: tuple = ("low_stock", "out_of_stock")) -> int:
        """Mark open alerts for a material as read once stock recovers."""
        resolved = 0
        for alert in alerts:
            n = self.find_open_alert(alert, material_id)
            if n is not None:
                n.read = True
                n.read_at = datetime.now(timezone.utc)
                resolved += 1
        if resolved:
            self.db.flush()
        return resolved

    def visible_query(self):
        """Notifications not expired; targeting is applied in Python (JSON lists)."""
        now = datetime.now(timezone.utc)
        return self.db.query(Notification).filter(
            or_(Notification.expires_at.is_(None), Notification.expires_at > now)
        )

    def list_for_user(
        self,
        user_id: int,
        role: str,
        type: Optional[str] = None,
        priority: Optional[str] = None,
        unread: Optional[bool] = None,
        department: Optional[str] = None,
        include_dismissed: bool = False,
    ) -> List[Notification]:
        query = self.visible_query()
        if type:
            query = query.filter(Notification.type == type)
        if priority:
            query = query.filter(Notification.priority == priority)
        if unread is True:
            query = query.filter(Notification.read.is_(False))
        elif unread is False:
            query = query.filter(Notification.read.is_(True))
        if department:
            query = query.filter(Notification.department == department)
        if not include_dismissed:
            query = query.filter(Notification.dismissed.is_(False))

        rows = query.order_by(Notification.created_at.desc(), Notification.id.desc()).all()
        return [n for n in rows if n.is_visible_to(user_id, role)]

    def unread_count(self, user_id: int, role: str) -> int:
        rows = (
            self.visible_query()
            .filter(Notification.read.is_(False), Notification.dismissed.is_(False))
            .all()
        )
        return sum(1 for n in rows if n.is_visible_to(user_id, role))

    def mark_read(self, notification: Notification, read: bool = True) -> Notification:
        notification.read = read
        notification.read_at = datetime.now(timezone.utc) if read else None
        return notification

    def mark_all_read(self, user_id: int, role: str) -> int:
        rows = self.list_for_user(user_id, role, unread=True)
        for n in rows:
            self.mark_read(n)
        return len(rows)

