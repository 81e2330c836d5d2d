"""Receipt printer routes."""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, HTTPException, Query, Request, status

from app.core.rate_limit import limiter
from app.core.rbac import RequireManager, RequireStaff
from app.core.responses import list_response
from app.core.validators import PositiveIntId
from app.db.session import DbSession
from app.models.printer import DEFAULT_PRINTER_SETTINGS, Printer
from app.schemas.printer import PrinterCreate, PrinterUpdate, check_connection_fields
from app.services.print_service import PrintJobService

logger = logging.getLogger(__name__)

router = APIRouter()


def _serialize_printer(printer: Printer) -> dict:
    return {
        "id": printer.id,
        "name": printer.name,
        "department": printer.department,
        "connection_type": printer.connection_type,
        "ip_address": printer.ip_address,
        "port": printer.port,
        "usb_path": printer.usb_path,
        "bluetooth_address": printer.bluetooth_address,
        "paper_width": printer.paper_width,
        "is_active": printer.is_active,
        "is_online": printer.is_online,
        "last_test_at": printer.last_test_at.isoformat() if printer.last_test_at else None,
        "last_print_at": printer.last_print_at.isoformat() if printer.last_print_at else None,
        "last_order_printed": printer.last_order_printed,
        "print_count": printer.print_count or 0,
        "error_count": printer.error_count or 0,
        "last_error": printer.last_error,
        "settings": {**DEFAULT_PRINTER_SETTINGS, **(printer.settings or {})},
        "created_at": printer.created_at.isoformat() if printer.created_at else None,
        "updated_at": printer.updated_at.isoformat() if printer.updated_at else None,
    }


def _get_printer_or_404(db, printer_id: int) -> Printer:
    printer = db.get(Printer, printer_id)
    if not printer:
        raise HTTPException(status_code=404, detail="Printer not found")
    return printer


def _ensure_unique_name(db, name: str, exclude_id: Optional[int] = None) -> None:
    query = db.query(Printer.id).filter(Printer.name == name)
    if exclude_id is not None:
        query = query.filter(Printer.id != exclude_id)
    if query.first():
        raise HTTPException(status_code=409, detail=f"Printer '{name}' already exists")


@router.get("")
@limiter.limit("60/minute")
def list_printers(
    request: Request,
    db: DbSession,
    current_user: RequireStaff,
    department: Optional[str] = None,
    is_active: Optional[bool] = None,
):
    query = db.query(Printer)
    if department:
        query = query.filter(Printer.department == department)
    if is_active is not None:
        query = query.filter(Printer.is_active.is_(is_active))
    printers = query.order_by(Printer.department, Printer.name).all()
    return list_response([_serialize_printer(p) for p in printers])


@router.get("/{printer_id}")
@limiter.limit("60/minute")
def get_printer(request: Request, printer_id: PositiveIntId, db: DbSession, current_user: RequireStaff):
    return _serialize_printer(_get_printer_or_404(db, printer_id))


@router.post("", status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_printer(request: Request, data: PrinterCreate, db: DbSession, current_user: RequireManager):
    _ensure_unique_name(db, data.name)
    payload = data.model_dump()
    payload["settings"] = {**DEFAULT_PRINTER_SETTINGS, **payload["settings"]}
    printer = Printer(**payload)
    db.add(printer)
    db.commit()
    db.refresh(printer)
    logger.info(f"Printer '{printer.name}' ({printer.connection_type}) added for {printer.department}")
    return _serialize_printer(printer)


@router.put("/{printer_id}")
@limiter.limit("30/minute")
def update_printer(
    request: Request,
    printer_id: PositiveIntId,
    data: PrinterUpdate,
    db: DbSession,
    current_user: RequireManager,
):
    printer = _get_printer_or_404(db, printer_id)
    updates = data.model_dump(exclude_unset=True)

    if updates.get("name"):
        _ensure_unique_name(db, updates["name"], exclude_id=printer.id)
    try:
        check_connection_fields(
            updates.get("connection_type") or printer.connection_type,
            updates.get("ip_address", printer.ip_address),
            updates.get("usb_path", printer.usb_path),
            updates.get("bluetooth_address", printer.bluetooth_address),
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    settings_patch = updates.pop("settings", None)
    if settings_patch:
        changes = {k: v for k, v in settings_patch.items() if v is not None}
        printer.settings = {**DEFAULT_PRINTER_SETTINGS, **(printer.settings or {}), **changes}
    for field, value in updates.items():
        if value is None and field in ("name", "department", "connection_type", "port", "paper_width", "is_active"):
            continue
        setattr(printer, field, value)

    db.commit()
    db.refresh(printer)
    return _serialize_printer(printer)


@router.delete("/{printer_id}")
@limiter.limit("30/minute")
def delete_printer(request: Request, printer_id: PositiveIntId, db: DbSession, current_user: RequireManager):
    printer = _get_printer_or_404(db, printer_id)
    db.delete(printer)
    db.commit()
    logger.info(f"Printer '{printer.name}' deleted by {current_user.username}")
    return {"message": "Printer deleted successfully"}


@router.post("/{printer_id}/test")
@limiter.limit("10/minute")
async def test_printer(
    request: Request,
    printer_id: PositiveIntId,
    db: DbSession,
    current_user: RequireManager,
    test_type: Literal["connection", "print"] = Query("connection", alias="type"),
):
    """Check the printer's connection or print a test page."""
    printer = _get_printer_or_404(db, printer_id)
    result = await PrintJobService(db, current_user.user_id).test_printer(printer, test_type)
    db.commit()
    db.refresh(printer)
    return {**result, "printer": _serialize_printer(printer)}
