"""Audit logs API routes."""

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from sqlalchemy import func

from app.core.rate_limit import limiter
from app.core.rbac import RequireAdmin
from app.core.responses import paginated_response
from app.db.session import DbSession
from app.models.audit import AuditLogEntry
from app.services.audit_service import serialize_audit_entry
from app.services.order_service import parse_date_range

router = APIRouter()


@router.get("")
@limiter.limit("60/minute")
def get_audit_logs(
    request: Request,
    db: DbSession,
    current_user: RequireAdmin,
    action: Optional[str] = Query(None, max_length=50),
    entity_type: Optional[str] = Query(None, max_length=50),
    user_id: Optional[int] = Query(None, gt=0),
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
):
    """Get audit logs with filters, newest first."""
    try:
        start, end = parse_date_range(start_date, end_date)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    query = db.query(AuditLogEntry)
    if action:
        query = query.filter(AuditLogEntry.action == action)
    if entity_type:
        query = query.filter(AuditLogEntry.entity_type == entity_type)
    if user_id:
        query = query.filter(AuditLogEntry.user_id == user_id)
    if start:
        query = query.filter(AuditLogEntry.created_at >= start)
    if end:
        query = query.filter(AuditLogEntry.created_at < end)

    total = query.count()
    entries = query.order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc()).offset(skip).limit(limit).all()
    return paginated_response([serialize_audit_entry(e) for e in entries], total, skip, limit)


@router.get("/summary")
@limiter.limit("30/minute")
def get_audit_summary(request: Request, db: DbSession, current_user: RequireAdmin):
    """Counts per action and the number of distinct acting users."""
    per_action = (
        db.query(AuditLogEntry.action, func.count(AuditLogEntry.id))
        .group_by(AuditLogEntry.action)
        .all()
    )
    users = db.query(func.count(func.distinct(AuditLogEntry.user_id))).scalar() or 0
    counts = {action: count for action, count in per_action}
    return {
        "total_actions": sum(counts.values()),
        "users_active": users,
        "actions": counts,
        "most_common_action": max(counts, key=counts.get) if counts else None,
    }
