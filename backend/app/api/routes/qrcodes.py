"""QR code routes: management, image rendering, scans and analytics."""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, HTTPException, Query, Request, Response, status

from app.core.rate_limit import limiter
from app.core.rbac import RequireManager
from app.core.responses import list_response
from app.core.validators import PositiveIntId
from app.db.session import DbSession
from app.models.qr_code import DEFAULT_CUSTOMIZATION, QRCode
from app.schemas.qr_code import QRCodeCreate, QRCodeUpdate, QRScanRequest
from app.services.qr_service import (
    QRCodeService,
    default_url,
    generate_token,
    render_data_url,
    render_png,
    render_svg,
    serialize_qr_code,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_qr_or_404(db, qr_id: int) -> QRCode:
    qr_code = db.get(QRCode, qr_id)
    if not qr_code:
        raise HTTPException(status_code=404, detail="QR code not found")
    return qr_code


@router.get("")
@limiter.limit("60/minute")
def list_qr_codes(
    request: Request,
    db: DbSession,
    current_user: RequireManager,
    type: Optional[str] = None,
    is_active: Optional[bool] = None,
):
    query = db.query(QRCode)
    if type:
        query = query.filter(QRCode.type == type)
    if is_active is not None:
        query = query.filter(QRCode.is_active.is_(is_active))
    codes = query.order_by(QRCode.created_at.desc(), QRCode.id.desc()).all()
    return list_response([serialize_qr_code(c) for c in codes])


@router.post("", status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_qr_code(request: Request, data: QRCodeCreate, db: DbSession, current_user: RequireManager):
    token = generate_token()
    customization = data.customization.model_dump(exclude_none=True) if data.customization else {}
    qr_code = QRCode(
        name=data.name,
        type=data.type,
        target_id=data.target_id,
        table_number=data.table_number,
        url=data.url or default_url(data.type, token, data.target_id),
        token=token,
        description=data.description,
        customization={**DEFAULT_CUSTOMIZATION, **customization},
        is_active=data.is_active,
        created_by=current_user.user_id,
    )
    db.add(qr_code)
    db.commit()
    db.refresh(qr_code)
    logger.info(f"QR code {qr_code.id} '{qr_code.name}' created")
    return {**serialize_qr_code(qr_code), "image": render_data_url(qr_code)}


@router.post("/scan")
@limiter.limit("60/minute")
def scan_qr_code(request: Request, data: QRScanRequest, db: DbSession):
    """Record a scan from the public menu and return where the code points."""
    if not data.token:
        raise HTTPException(status_code=400, detail="Token is required")

    qr_code = QRCodeService(db).record_scan(
        data.token,
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
        referrer=request.headers.get("referer"),
    )
    if qr_code is None:
        raise HTTPException(status_code=404, detail="QR code not found or inactive")
    db.commit()
    return {
        "url": qr_code.url,
        "type": qr_code.type,
        "target_id": qr_code.target_id,
        "table_number": qr_code.table_number,
    }


@router.get("/{qr_id}")
@limiter.limit("60/minute")
def get_qr_code(request: Request, qr_id: PositiveIntId, db: DbSession, current_user: RequireManager):
    qr_code = _get_qr_or_404(db, qr_id)
    return {**serialize_qr_code(qr_code), "image": render_data_url(qr_code)}


@router.put("/{qr_id}")
@limiter.limit("30/minute")
def update_qr_code(
    request: Request,
    qr_id: PositiveIntId,
    data: QRCodeUpdate,
    db: DbSession,
    current_user: RequireManager,
):
    qr_code = _get_qr_or_404(db, qr_id)
    updates = data.model_dump(exclude_unset=True)

    customization = updates.pop("customization", None)
    if customization:
        changes = {k: v for k, v in customization.items() if v is not None}
        qr_code.customization = {**DEFAULT_CUSTOMIZATION, **(qr_code.customization or {}), **changes}
    for field, value in updates.items():
        if value is None and field in ("name", "type", "is_active"):
            continue
        setattr(qr_code, field, value)
    if not qr_code.url:
        qr_code.url = default_url(qr_code.type, qr_code.token, qr_code.target_id)

    db.commit()
    db.refresh(qr_code)
    return {**serialize_qr_code(qr_code), "image": render_data_url(qr_code)}


@router.delete("/{qr_id}")
@limiter.limit("30/minute")
def delete_qr_code(request: Request, qr_id: PositiveIntId, db: DbSession, current_user: RequireManager):
    qr_code = _get_qr_or_404(db, qr_id)
    db.delete(qr_code)
    db.commit()
    return {"message": "QR code deleted successfully"}


@router.get("/{qr_id}/image")
@limiter.limit("60/minute")
def get_qr_image(
    request: Request,
    qr_id: PositiveIntId,
    db: DbSession,
    current_user: RequireManager,
    format: Literal["png", "svg"] = "png",
):
    qr_code = _get_qr_or_404(db, qr_id)
    if format == "svg":
        return Response(content=render_svg(qr_code), media_type="image/svg+xml")
    return Response(content=render_png(qr_code), media_type="image/png")


@router.get("/{qr_id}/analytics")
@limiter.limit("30/minute")
def get_qr_analytics(
    request: Request,
    qr_id: PositiveIntId,
    db: DbSession,
    current_user: RequireManager,
    days: int = Query(30, ge=1, le=365),
):
    qr_code = _get_qr_or_404(db, qr_id)
    return QRCodeService(db).analytics(qr_code, days)
