"""Reporting routes: sales, inventory, tax and dashboard figures."""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from app.core.rate_limit import limiter
from app.core.rbac import CurrentUser, TokenData, UserRole
from app.db.session import DbSession
from app.models.user import User
from app.services.order_service import parse_date_range
from app.services.report_service import ReportService, export_report

logger = logging.getLogger(__name__)

router = APIRouter()


def require_reports_access(current_user: CurrentUser, db: DbSession) -> TokenData:
    """Managers and admins, or staff granted the can_view_reports permission."""
    if current_user.has_role(UserRole.MANAGER):
        return current_user
    user = db.get(User, current_user.user_id)
    if user is None or not user.has_permission("can_view_reports"):
        raise HTTPException(status_code=403, detail="Reports access required")
    return current_user


ReportsAccess = Annotated[TokenData, Depends(require_reports_access)]


def _date_range(date_from: Optional[str], date_to: Optional[str]):
    try:
        return parse_date_range(date_from, date_to)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/sales")
@limiter.limit("30/minute")
def sales_report(
    request: Request,
    db: DbSession,
    current_user: ReportsAccess,
    report_type: str = Query("summary", alias="type"),
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    department: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
):
    """Sales report of the requested type; ``to`` includes the whole day."""
    start, end = _date_range(date_from, date_to)
    try:
        data = ReportService(db).sales_report(report_type, start, end, department)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    result = {
        "type": report_type,
        "from": start.isoformat() if start else None,
        "to": end.isoformat() if end else None,
        "department": department,
    }
    if report_type == "menu-items":
        total = len(data)
        offset = (page - 1) * limit
        result.update({
            "data": data[offset:offset + limit],
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": (total + limit - 1) // limit,
        })
    else:
        result["data"] = data
    return result


@router.get("/sales/export")
@limiter.limit("10/minute")
def export_sales_report(
    request: Request,
    db: DbSession,
    current_user: ReportsAccess,
    report_type: str = Query("summary", alias="type"),
    fmt: str = Query("csv", alias="format"),
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    department: Optional[str] = None,
):
    """Download a sales report as CSV, Excel or PDF."""
    start, end = _date_range(date_from, date_to)
    try:
        data = ReportService(db).sales_report(report_type, start, end, department)
        output, media_type, filename = export_report(report_type, data, fmt)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return StreamingResponse(
        output,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/inventory")
@limiter.limit("30/minute")
def inventory_report(
    request: Request,
    db: DbSession,
    current_user: ReportsAccess,
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
):
    start, end = _date_range(date_from, date_to)
    return ReportService(db).inventory_report(start, end)


@router.get("/dashboard")
@limiter.limit("60/minute")
def dashboard(request: Request, db: DbSession, current_user: ReportsAccess):
    return ReportService(db).dashboard()


@router.get("/tax")
@limiter.limit("30/minute")
def tax_report(
    request: Request,
    db: DbSession,
    current_user: ReportsAccess,
    period: str = Query("month"),
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
):
    """Tax collected for the current day, week, month or year, or a custom range."""
    start, end = _date_range(date_from, date_to)
    try:
        return ReportService(db).tax_report(period, start, end)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
