"""Print job routes: queueing order tickets and managing their lifecycle."""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, HTTPException, Query, Request, Response, status

from app.core.rate_limit import limiter
from app.core.rbac import RequireStaff
from app.core.responses import list_response, paginated_response
from app.core.validators import PositiveIntId
from app.db.session import DbSession
from app.models.order import Order
from app.models.printer import Printer, PrintJob
from app.schemas.printer import PrintJobCreate
from app.services.print_service import PrintJobError, PrintJobService, serialize_print_job

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_job_or_404(db, job_id: str) -> PrintJob:
    job = db.query(PrintJob).filter(PrintJob.job_id == job_id).first()
    if not job:
        raise HTTPException(status_code=404, detail="Print job not found")
    return job


@router.get("")
@limiter.limit("60/minute")
def list_print_jobs(
    request: Request,
    db: DbSession,
    current_user: RequireStaff,
    printer_id: Optional[int] = Query(None, gt=0),
    order_id: Optional[int] = Query(None, gt=0),
    job_status: Optional[str] = Query(None, alias="status"),
    department: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    query = db.query(PrintJob)
    if printer_id:
        query = query.filter(PrintJob.printer_id == printer_id)
    if order_id:
        query = query.filter(PrintJob.order_id == order_id)
    if job_status:
        query = query.filter(PrintJob.status == job_status)
    if department:
        query = query.filter(PrintJob.department == department)

    total = query.count()
    jobs = query.order_by(PrintJob.created_at.desc(), PrintJob.id.desc()).offset(skip).limit(limit).all()
    return paginated_response([serialize_print_job(j) for j in jobs], total, skip, limit)


@router.post("", status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def create_print_job(request: Request, data: PrintJobCreate, db: DbSession, current_user: RequireStaff):
    """Queue a ticket for one printer and send it straight away."""
    printer = db.get(Printer, data.printer_id)
    if not printer:
        raise HTTPException(status_code=404, detail="Printer not found")
    order = db.get(Order, data.order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")

    service = PrintJobService(db, current_user.user_id)
    overrides = data.print_settings.model_dump(exclude_none=True) if data.print_settings else None
    try:
        job = service.create_job(printer, order, priority=data.priority, print_settings=overrides)
    except PrintJobError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    await service.process(job)
    db.commit()
    db.refresh(job)
    return serialize_print_job(job)


@router.post("/order/{order_id}", status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def print_order(request: Request, order_id: PositiveIntId, db: DbSession, current_user: RequireStaff):
    """Send an order to every active printer whose department has items on it."""
    order = db.get(Order, order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")

    service = PrintJobService(db, current_user.user_id)
    try:
        jobs = service.create_jobs_for_order(order)
    except PrintJobError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    if not jobs:
        raise HTTPException(status_code=400, detail="No active printer accepts this order's items")

    for job in jobs:
        await service.process(job)
    db.commit()
    return list_response([serialize_print_job(j) for j in jobs])


@router.get("/{job_id}")
@limiter.limit("60/minute")
def get_print_job(request: Request, job_id: str, db: DbSession, current_user: RequireStaff):
    return serialize_print_job(_get_job_or_404(db, job_id))


@router.put("/{job_id}")
@limiter.limit("30/minute")
async def update_print_job(
    request: Request,
    job_id: str,
    db: DbSession,
    current_user: RequireStaff,
    action: Literal["reprint", "cancel", "retry"] = Query(...),
):
    """Reprint a finished job, cancel a pending one or retry a failed one."""
    job = _get_job_or_404(db, job_id)
    try:
        result = await PrintJobService(db, current_user.user_id).perform_action(job, action)
    except (ValueError, PrintJobError) as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    db.commit()
    db.refresh(result)
    return serialize_print_job(result)


@router.get("/{job_id}/escpos")
@limiter.limit("30/minute")
def get_escpos(request: Request, job_id: str, db: DbSession, current_user: RequireStaff):
    """Raw ESC/POS bytes for a job, for printing from a local bridge."""
    job = _get_job_or_404(db, job_id)
    payload = PrintJobService(db).render(job)
    return Response(
        content=payload,
        media_type="application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{job.job_id}.bin"'},
    )
