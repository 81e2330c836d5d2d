"""Modifier group routes: public listing and manager CRUD."""

import logging

from fastapi import APIRouter, HTTPException, Request, status

from app.core.rate_limit import limiter
from app.core.rbac import RequireManager
from app.core.responses import list_response
from app.core.validators import PositiveIntId
from app.db.session import DbSession
from app.models.modifier import Modifier
from app.schemas.modifier import ModifierCreate, ModifierUpdate
from app.services.modifier_service import build_options, serialize_modifier

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_modifier_or_404(db, modifier_id: int) -> Modifier:
    modifier = db.get(Modifier, modifier_id)
    if not modifier:
        raise HTTPException(status_code=404, detail="Modifier not found")
    return modifier


def _apply_rules(db, modifier: Modifier) -> None:
    try:
        modifier.apply_selection_rules()
    except ValueError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))


@router.get("")
@limiter.limit("120/minute")
def list_modifiers(request: Request, db: DbSession):
    """Active modifier groups in display order."""
    modifiers = (
        db.query(Modifier)
        .filter(Modifier.is_active.is_(True))
        .order_by(Modifier.sort_order, Modifier.name)
        .all()
    )
    return list_response([serialize_modifier(m) for m in modifiers])


@router.get("/{modifier_id}")
@limiter.limit("120/minute")
def get_modifier(request: Request, modifier_id: PositiveIntId, db: DbSession):
    return serialize_modifier(_get_modifier_or_404(db, modifier_id))


@router.post("", status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_modifier(request: Request, data: ModifierCreate, db: DbSession, current_user: RequireManager):
    modifier = Modifier(**data.model_dump(exclude={"options", "type"}))
    modifier.type = data.type.value
    modifier.options = build_options([o.model_dump() for o in data.options])
    _apply_rules(db, modifier)
    db.add(modifier)
    db.commit()
    db.refresh(modifier)
    logger.info(f"Modifier created: {modifier.name} (ID: {modifier.id}, {len(modifier.options)} options)")
    return serialize_modifier(modifier)


@router.put("/{modifier_id}")
@limiter.limit("30/minute")
def update_modifier(
    request: Request,
    modifier_id: PositiveIntId,
    data: ModifierUpdate,
    db: DbSession,
    current_user: RequireManager,
):
    modifier = _get_modifier_or_404(db, modifier_id)
    updates = data.model_dump(exclude_unset=True, exclude={"options", "type"})
    for field, value in updates.items():
        if value is None and field in ("name", "required", "sort_order", "is_active"):
            continue
        setattr(modifier, field, value)
    if data.type is not None:
        modifier.type = data.type.value
    if data.options is not None:
        modifier.options = build_options([o.model_dump() for o in data.options])
    _apply_rules(db, modifier)
    db.commit()
    db.refresh(modifier)
    return serialize_modifier(modifier)


@router.delete("/{modifier_id}")
@limiter.limit("30/minute")
def delete_modifier(request: Request, modifier_id: PositiveIntId, db: DbSession, current_user: RequireManager):
    """Delete a modifier group; menu items using it lose the group."""
    modifier = _get_modifier_or_404(db, modifier_id)
    db.delete(modifier)
    db.commit()
    logger.info(f"Modifier deleted: {modifier.name} (ID: {modifier_id})")
    return {"message": "Modifier deleted", "id": modifier_id}
