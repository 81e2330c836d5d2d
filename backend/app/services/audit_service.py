"""Audit trail writes and queries.

``log_action`` is called by ``AuditLoggingMiddleware`` after every successful
state-changing API request. Without an explicit ``db`` session it opens its own
short-lived session, so the middleware never touches the request's session.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.db import session as db_session
from app.models.audit import AuditLogEntry

logger = logging.getLogger("audit")

METHOD_ACTIONS = {
    "POST": "create",
    "PUT": "update",
    "PATCH": "update",
    "DELETE": "delete",
}


def entity_from_path(path: str, prefix: str) -> tuple[str, str]:
    """('materials', '12') for '/api/v1/materials/12/stock'."""
    parts = [p for p in path[len(prefix):].split("/") if p]
    if not parts:
        return "", ""
    entity_type = parts[0].replace("-", "_")
    entity_id = next((p for p in parts[1:] if p.isdigit() or p.startswith("job_")), "")
    return entity_type, entity_id


def log_action(
    action: str,
    entity_type: str = "",
    entity_id: str = "",
    user_id: Optional[int] = None,
    user_name: str = "",
    ip_address: str = "",
    details: Optional[dict[str, Any]] = None,
    db: Optional[Session] = None,
) -> None:
    """Write an audit log entry.

    Args:
        action: create, update, delete, login, logout...
        entity_type: Resource collection (orders, materials, staff...)
        entity_id: ID of the affected entity
        user_id: ID of the acting user
        user_name: Username of the acting user
        ip_address: Client IP address
        details: Extra context (path, method, description)
        db: Optional existing session. If None, a new one is opened and committed.
    """
    own_session = db is None
    if own_session:
        db = db_session.SessionLocal()

    try:
        db.add(AuditLogEntry(
            user_id=user_id,
            user_name=user_name,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id else "",
            details=details or {},
            ip_address=ip_address or "",
            created_at=datetime.now(timezone.utc),
        ))
        if own_session:
            db.commit()
        else:
            db.flush()
    except Exception:
        # Auditing must never fail the request it describes
        logger.exception("Failed to write audit log entry")
        if own_session:
            db.rollback()
    finally:
        if own_session:
            db.close()


def serialize_audit_entry(entry: AuditLogEntry) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "user_id": entry.user_id,
        "user_name": entry.user_name,
        "action": entry.action,
        "entity_type": entry.entity_type,
        "entity_id": entry.entity_id,
        "details": entry.details or {},
        "ip_address": entry.ip_address,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }
