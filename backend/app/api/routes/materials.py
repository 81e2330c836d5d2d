"""Inventory material routes: stock levels, movements, usage and alerts."""

import logging
from typing import Optional

from fastapi import APIRouter, Body, HTTPException, Query, Request, status
from pydantic import BaseModel, ValidationError
from sqlalchemy import or_

from app.core.rate_limit import limiter
from app.core.rbac import RequireManager, RequireStaff
from app.core.responses import list_response, paginated_response
from app.core.sanitize import like_pattern
from app.core.validators import PositiveIntId
from app.db.session import DbSession
from app.models.inventory import Material, MaterialStatus, MovementReason, StockMovement
from app.models.menu import MenuItemIngredient
from app.schemas.inventory import BulkStockUpdate, MaterialCreate, MaterialUpdate, StockUpdate, UsageCreate
from app.services.inventory_service import (
    InsufficientStockError,
    InvalidStockOperation,
    InventoryService,
    serialize_movement,
)
from app.services.order_service import parse_date_range
from app.services.units import UnitConversionError

logger = logging.getLogger(__name__)

router = APIRouter()

SORT_FIELDS = {
    "name": Material.name,
    "current_quantity": Material.current_quantity,
    "created_at": Material.created_at,
    "updated_at": Material.updated_at,
}


def _serialize_material(m: Material) -> dict:
    return {
        "id": m.id,
        "name": m.name,
        "name_en": m.name_en,
        "description": m.description,
        "unit": m.unit,
        "current_quantity": float(m.current_quantity),
        "min_limit": float(m.min_limit),
        "alert_limit": float(m.alert_limit),
        "cost_per_unit": float(m.cost_per_unit),
        "stock_value": round(float(m.current_quantity * m.cost_per_unit), 2),
        "supplier": m.supplier,
        "category": m.category,
        "status": m.status,
        "is_low": m.is_low,
        "last_restocked": m.last_restocked.isoformat() if m.last_restocked else None,
        "expiry_date": m.expiry_date.isoformat() if m.expiry_date else None,
        "notes": m.notes,
        "is_active": m.is_active,
        "created_at": m.created_at.isoformat() if m.created_at else None,
        "updated_at": m.updated_at.isoformat() if m.updated_at else None,
    }


def _parse(model: type[BaseModel], payload: dict):
    """Validate a request body, reporting problems as 400."""
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ()))
        detail = f"{field}: {first['msg']}" if field else first["msg"]
        raise HTTPException(status_code=400, detail=detail)


def _get_material_or_404(db, material_id: int) -> Material:
    material = db.get(Material, material_id)
    if not material:
        raise HTTPException(status_code=404, detail="Material not found")
    return material


@router.get("")
@limiter.limit("60/minute")
def list_materials(
    request: Request,
    db: DbSession,
    current_user: RequireStaff,
    category: Optional[str] = None,
    status: Optional[MaterialStatus] = None,
    low_stock: Optional[bool] = None,
    search: Optional[str] = Query(None, max_length=100),
    is_active: Optional[bool] = None,
    sort_by: str = Query("name"),
    sort_order: str = Query("asc", pattern="^(asc|desc)$"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
):
    """List materials."""
    if sort_by not in SORT_FIELDS:
        raise HTTPException(status_code=400, detail=f"sort_by must be one of: {', '.join(SORT_FIELDS)}")

    query = db.query(Material)
    if category:
        query = query.filter(Material.category == category)
    if status:
        query = query.filter(Material.status == status.value)
    if low_stock:
        query = query.filter(Material.current_quantity <= Material.alert_limit)
    if is_active is not None:
        query = query.filter(Material.is_active == is_active)
    if search:
        pattern = like_pattern(search)
        query = query.filter(or_(
            Material.name.ilike(pattern, escape="\\"),
            Material.name_en.ilike(pattern, escape="\\"),
            Material.description.ilike(pattern, escape="\\"),
        ))

    column = SORT_FIELDS[sort_by]
    total = query.count()
    materials = (
        query.order_by(column.desc() if sort_order == "desc" else column.asc(), Material.id)
        .offset(skip)
        .limit(limit)
        .all()
    )
    return paginated_response([_serialize_material(m) for m in materials], total, skip, limit)


@router.get("/alerts")
@limiter.limit("60/minute")
def get_material_alerts(request: Request, db: DbSession, current_user: RequireStaff):
    """Low stock, out of stock and expiry alerts."""
    return InventoryService(db).get_alerts()


@router.get("/usage")
@limiter.limit("60/minute")
def list_usage(
    request: Request,
    db: DbSession,
    current_user: RequireStaff,
    material_id: Optional[int] = Query(None, gt=0),
    usage_type: Optional[MovementReason] = None,
    department: Optional[str] = None,
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
):
    """Stock movement history (usage, waste, order consumption, restocks)."""
    try:
        start, end = parse_date_range(date_from, date_to)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    query = db.query(StockMovement)
    if material_id:
        query = query.filter(StockMovement.material_id == material_id)
    if usage_type:
        query = query.filter(StockMovement.reason == usage_type.value)
    if department:
        query = query.filter(StockMovement.department == department)
    if start:
        query = query.filter(StockMovement.ts >= start)
    if end:
        query = query.filter(StockMovement.ts < end)

    total = query.count()
    movements = (
        query.order_by(StockMovement.ts.desc(), StockMovement.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )
    return paginated_response([serialize_movement(m) for m in movements], total, skip, limit)


@router.post("/usage", status_code=status.HTTP_201_CREATED)
@limiter.limit("60/minute")
async def record_usage(request: Request, data: UsageCreate, db: DbSession, current_user: RequireStaff):
    """Record manual usage or waste of a material."""
    material = _get_material_or_404(db, data.material_id)
    service = InventoryService(db, current_user.user_id)
    notes = "; ".join(p for p in (data.reason, data.notes) if p) or None
    try:
        movement = service.record_usage(
            material,
            data.quantity,
            unit=data.unit,
            usage_type=data.usage_type,
            department=data.department or current_user.department,
            notes=notes,
        )
    except (InsufficientStockError, UnitConversionError) as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    db.commit()
    db.refresh(movement)
    db.refresh(material)
    return {"usage": serialize_movement(movement), "material": _serialize_material(material)}


@router.post("/bulk-update")
@limiter.limit("20/minute")
async def bulk_update_stock(request: Request, data: BulkStockUpdate, db: DbSession, current_user: RequireManager):
    """Apply several stock operations at once; all succeed or none do."""
    service = InventoryService(db, current_user.user_id)
    try:
        updated = service.bulk_update([u.model_dump() for u in data.updates])
    except LookupError as e:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(e))
    except (InvalidStockOperation, InsufficientStockError) as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    db.commit()
    return {"message": "Stock updated", "updated_count": updated}


@router.post("", status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def create_material(
    request: Request,
    db: DbSession,
    current_user: RequireManager,
    payload: dict = Body(...),
):
    """Create a material; any opening stock is recorded as a restock."""
    data = _parse(MaterialCreate, payload)
    opening = data.current_quantity
    material = Material(**data.model_dump(exclude={"current_quantity"}))
    material.current_quantity = 0
    material.refresh_status()
    db.add(material)
    db.flush()

    if opening > 0:
        InventoryService(db, current_user.user_id).apply_movement(
            material, opening, MovementReason.RESTOCK.value, notes="Opening stock"
        )
    db.commit()
    db.refresh(material)
    logger.info(f"Material created: {material.name} (ID: {material.id}, {material.current_quantity} {material.unit})")
    return _serialize_material(material)


@router.get("/{material_id}")
@limiter.limit("60/minute")
def get_material(request: Request, material_id: PositiveIntId, db: DbSession, current_user: RequireStaff):
    """Material with its latest movements and 30-day usage."""
    material = _get_material_or_404(db, material_id)
    service = InventoryService(db)
    result = _serialize_material(material)
    result["recent_movements"] = [serialize_movement(m) for m in service.recent_movements(material, 20)]
    result["usage_stats"] = service.usage_stats(material, 30)
    return result


@router.put("/{material_id}")
@limiter.limit("30/minute")
async def update_material(
    request: Request,
    material_id: PositiveIntId,
    db: DbSession,
    current_user: RequireManager,
    payload: dict = Body(...),
):
    """Edit a material; quantity changes are logged as adjustments."""
    material = _get_material_or_404(db, material_id)
    data = _parse(MaterialUpdate, payload)
    updates = data.model_dump(exclude_unset=True)
    new_quantity = updates.pop("current_quantity", None)
    new_unit = updates.pop("unit", None)

    service = InventoryService(db, current_user.user_id)
    # Values sent alongside a new unit are already expressed in it
    if new_unit is not None:
        try:
            service.change_unit(material, new_unit)
        except UnitConversionError as e:
            db.rollback()
            raise HTTPException(status_code=400, detail=str(e))

    for field, value in updates.items():
        if value is None and field in ("name", "min_limit", "alert_limit", "cost_per_unit", "category", "is_active"):
            continue
        setattr(material, field, value)

    if new_quantity is not None:
        service.set_quantity_from_edit(material, new_quantity)
    service.recheck_status(material)

    db.commit()
    db.refresh(material)
    return _serialize_material(material)


@router.patch("/{material_id}/stock")
@limiter.limit("60/minute")
async def update_stock(
    request: Request,
    material_id: PositiveIntId,
    db: DbSession,
    current_user: RequireStaff,
    payload: dict = Body(...),
):
    """Set, add or subtract stock."""
    material = _get_material_or_404(db, material_id)
    data = _parse(StockUpdate, payload)
    service = InventoryService(db, current_user.user_id)
    try:
        movement = service.update_stock(material, data.operation, data.quantity, data.reason)
    except (InvalidStockOperation, InsufficientStockError) as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    db.commit()
    db.refresh(material)
    return {
        "material": _serialize_material(material),
        "movement": serialize_movement(movement) if movement else None,
    }


@router.delete("/{material_id}")
@limiter.limit("30/minute")
def delete_material(request: Request, material_id: PositiveIntId, db: DbSession, current_user: RequireManager):
    """Delete a material that no recipe uses."""
    material = _get_material_or_404(db, material_id)
    used_by = db.query(MenuItemIngredient).filter(MenuItemIngredient.material_id == material.id).count()
    if used_by:
        raise HTTPException(
            status_code=400,
            detail=f"Material is used by {used_by} menu item recipe line(s); remove it from recipes first",
        )
    db.query(StockMovement).filter(StockMovement.material_id == material.id).delete(synchronize_session=False)
    db.delete(material)
    db.commit()
    logger.info(f"Material deleted: {material.name} (ID: {material_id})")
    return {"message": "Material deleted", "id": material_id}


@router.get("/{material_id}/movements")
@limiter.limit("60/minute")
def list_material_movements(
    request: Request,
    material_id: PositiveIntId,
    db: DbSession,
    current_user: RequireStaff,
    limit: int = Query(50, ge=1, le=500),
):
    material = _get_material_or_404(db, material_id)
    movements = InventoryService(db).recent_movements(material, limit)
    return list_response([serialize_movement(m) for m in movements])
