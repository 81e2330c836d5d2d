"""Notifications API routes."""

from typing import Optional

from fastapi import APIRouter, HTTPException, Request, status

from app.core.rate_limit import limiter
from app.core.rbac import CurrentUser, RequireManager, UserRole
from app.core.validators import PositiveIntId
from app.db.session import DbSession
from app.models.notification import Notification, NotificationPriority, NotificationType
from app.schemas.notification import NotificationCreate, NotificationUpdate
from app.services.notification_service import NotificationService, serialize_notification

router = APIRouter()


def _role(user) -> str:
    return user.role.value if isinstance(user.role, UserRole) else str(user.role)


def _get_visible_or_404(db, notification_id: int, current_user) -> Notification:
    notification = db.get(Notification, notification_id)
    if not notification or not notification.is_visible_to(current_user.user_id, _role(current_user)):
        raise HTTPException(status_code=404, detail="Notification not found")
    return notification


@router.get("")
@limiter.limit("120/minute")
def list_notifications(
    request: Request,
    db: DbSession,
    current_user: CurrentUser,
    type: Optional[NotificationType] = None,
    priority: Optional[NotificationPriority] = None,
    unread: Optional[bool] = None,
    department: Optional[str] = None,
    include_dismissed: bool = False,
):
    """Notifications visible to the current user, newest first."""
    service = NotificationService(db)
    role = _role(current_user)
    rows = service.list_for_user(
        current_user.user_id,
        role,
        type=type.value if type else None,
        priority=priority.value if priority else None,
        unread=unread,
        department=department,
        include_dismissed=include_dismissed,
    )
    return {
        "items": [serialize_notification(n) for n in rows],
        "total": len(rows),
        "unread_count": service.unread_count(current_user.user_id, role),
    }


@router.post("", status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def create_notification(
    request: Request,
    data: NotificationCreate,
    db: DbSession,
    current_user: RequireManager,
):
    """Create a notification and push it to connected dashboards."""
    notification = NotificationService(db).create(
        **data.model_dump(),
        created_by=current_user.user_id,
    )
    db.commit()
    db.refresh(notification)
    return serialize_notification(notification)


@router.post("/mark-all-read")
@limiter.limit("30/minute")
def mark_all_read(request: Request, db: DbSession, current_user: CurrentUser):
    count = NotificationService(db).mark_all_read(current_user.user_id, _role(current_user))
    db.commit()
    return {"message": f"{count} notifications marked as read", "updated_count": count}


@router.patch("/{notification_id}")
@limiter.limit("120/minute")
def update_notification(
    request: Request,
    notification_id: PositiveIntId,
    data: NotificationUpdate,
    db: DbSession,
    current_user: CurrentUser,
):
    """Mark a notification read/unread or dismiss it."""
    notification = _get_visible_or_404(db, notification_id, current_user)
    if data.read is not None:
        NotificationService(db).mark_read(notification, data.read)
    if data.dismissed is not None:
        notification.dismissed = data.dismissed
    db.commit()
    db.refresh(notification)
    return serialize_notification(notification)


@router.delete("/{notification_id}")
@limiter.limit("30/minute")
def delete_notification(
    request: Request,
    notification_id: PositiveIntId,
    db: DbSession,
    current_user: CurrentUser,
):
    notification = _get_visible_or_404(db, notification_id, current_user)
    db.delete(notification)
    db.commit()
    return {"message": "Notification deleted"}
