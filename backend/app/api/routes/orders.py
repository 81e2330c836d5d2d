"""Customer order routes: placement, listing, lifecycle and kitchen queues."""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request, status
from sqlalchemy.orm import selectinload

from app.core.rate_limit import limiter
from app.core.rbac import RequireStaff
from app.core.responses import list_response, page_response
from app.core.validators import DEPARTMENTS, PositiveIntId
from app.db.session import DbSession
from app.models.order import Order, OrderStatus
from app.schemas.order import DepartmentStatusUpdate, OrderCreate, OrderUpdate
from app.services.inventory_service import InsufficientStockError
from app.services.order_service import (
    InvalidStatusTransition,
    OrderService,
    OrderValidationError,
    serialize_order,
)
from app.services.promotion_service import PromotionNotFoundError, PromotionValidationError
from app.services.units import UnitConversionError

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_order_or_404(db, order_id: int) -> Order:
    order = db.get(Order, order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@router.post("", status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def create_order(request: Request, data: OrderCreate, db: DbSession):
    """Place an order (public). Stock is consumed with the insert or not at all."""
    service = OrderService(db)
    try:
        order = service.create_order(data.to_service_payload())
        db.commit()
    except InsufficientStockError as e:
        db.rollback()
        logger.warning(f"Order rejected, insufficient stock: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except (OrderValidationError, PromotionNotFoundError, PromotionValidationError, UnitConversionError) as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    db.refresh(order)
    return serialize_order(order)


@router.get("")
@limiter.limit("60/minute")
def list_orders(
    request: Request,
    db: DbSession,
    current_user: RequireStaff,
    status: Optional[OrderStatus] = None,
    department: Optional[str] = None,
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
):
    """Orders, newest first."""
    try:
        query = OrderService(db).query_orders(
            status=status.value if status else None,
            department=department,
            date_from=date_from,
            date_to=date_to,
            search=search,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    total = query.count()
    orders = (
        query.options(selectinload(Order.items))
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return page_response([serialize_order(o) for o in orders], total, page, limit)


@router.get("/department/{department}")
@limiter.limit("120/minute")
def department_orders(request: Request, department: str, db: DbSession, current_user: RequireStaff):
    """Active orders for a kitchen display, showing only that department's lines."""
    if department not in DEPARTMENTS:
        raise HTTPException(status_code=400, detail=f"Department must be one of: {', '.join(DEPARTMENTS)}")

    results = []
    for order in OrderService(db).department_queue(department):
        data = serialize_order(order)
        data["items"] = [i for i in data["items"] if i["department"] == department]
        data["department_status"] = (order.department_statuses or {}).get(department, "pending")
        results.append(data)
    return list_response(results)


@router.get("/{order_id}")
@limiter.limit("60/minute")
def get_order(request: Request, order_id: PositiveIntId, db: DbSession, current_user: RequireStaff):
    return serialize_order(_get_order_or_404(db, order_id))


@router.put("/{order_id}")
@limiter.limit("60/minute")
async def update_order(
    request: Request,
    order_id: PositiveIntId,
    data: OrderUpdate,
    db: DbSession,
    current_user: RequireStaff,
):
    """Update order details and/or move it through its lifecycle."""
    order = _get_order_or_404(db, order_id)
    service = OrderService(db, current_user.user_id)
    updates = data.model_dump(exclude_unset=True)

    try:
        for department, dept_status in (updates.pop("department_statuses", None) or {}).items():
            service.update_department_status(order, department, dept_status)
        new_status = updates.pop("status", None)
        if new_status:
            service.update_status(order, new_status)
    except (InvalidStatusTransition, OrderValidationError) as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    assigned = updates.pop("assigned_to", None)
    if assigned:
        order.assigned_to = {**(order.assigned_to or {}), **assigned}
    for field, value in updates.items():
        if field == "customer_name" and not value:
            continue
        setattr(order, field, value)

    db.commit()
    db.refresh(order)
    return serialize_order(order)


@router.put("/{order_id}/department-status")
@limiter.limit("120/minute")
async def update_department_status(
    request: Request,
    order_id: PositiveIntId,
    data: DepartmentStatusUpdate,
    db: DbSession,
    current_user: RequireStaff,
):
    """Advance a department's items; the order follows when every department is ready."""
    order = _get_order_or_404(db, order_id)
    try:
        OrderService(db, current_user.user_id).update_department_status(
            order,
            data.department,
            data.status,
            item_id=data.item_id,
            assigned_to=data.assigned_to or current_user.name,
        )
    except (InvalidStatusTransition, OrderValidationError) as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    db.commit()
    db.refresh(order)
    return serialize_order(order)
