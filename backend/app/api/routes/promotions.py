"""Promotions routes."""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, HTTPException, Request, status

from app.core.rate_limit import limiter
from app.core.rbac import RequireManager
from app.core.responses import list_response
from app.core.validators import PositiveIntId
from app.db.session import DbSession
from app.models.promotion import Promotion
from app.schemas.promotion import PromotionCreate, PromotionUpdate, PromotionValidateRequest
from app.services.promotion_service import (
    PromotionNotFoundError,
    PromotionService,
    PromotionValidationError,
    check_promotion_rules,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ---- Helpers ----

def _serialize_promotion(p: Promotion) -> dict:
    """Convert a Promotion ORM instance to a JSON-friendly dict."""
    return {
        "id": p.id,
        "name": p.name,
        "description": p.description,
        "type": p.type,
        "code": p.code,
        "discount_type": p.discount_type,
        "value": float(p.value or 0),
        "start_date": p.start_date.isoformat() if p.start_date else None,
        "end_date": p.end_date.isoformat() if p.end_date else None,
        "is_active": p.is_active,
        "usage_limit": p.usage_limit,
        "usage_count": p.usage_count or 0,
        "min_purchase_amount": float(p.min_purchase_amount or 0),
        "buy_qty": p.buy_qty,
        "get_qty": p.get_qty,
        "applicable_items": p.applicable_items or [],
        "applicable_categories": p.applicable_categories or [],
        "created_at": p.created_at.isoformat() if p.created_at else None,
        "updated_at": p.updated_at.isoformat() if p.updated_at else None,
    }


def _get_promotion_or_404(db, promotion_id: int) -> Promotion:
    promotion = db.get(Promotion, promotion_id)
    if not promotion:
        raise HTTPException(status_code=404, detail="Promotion not found")
    return promotion


def _ensure_unique_code(db, code: Optional[str], exclude_id: Optional[int] = None) -> None:
    if not code:
        return
    query = db.query(Promotion.id).filter(Promotion.code == code)
    if exclude_id is not None:
        query = query.filter(Promotion.id != exclude_id)
    if query.first():
        raise HTTPException(status_code=409, detail=f"Promotion code '{code}' already exists")


# ---- Routes ----

@router.get("")
@limiter.limit("60/minute")
def list_promotions(
    request: Request,
    db: DbSession,
    current_user: RequireManager,
    is_active: Optional[bool] = None,
    type: Optional[str] = None,
):
    query = db.query(Promotion)
    if is_active is not None:
        query = query.filter(Promotion.is_active.is_(is_active))
    if type:
        query = query.filter(Promotion.type == type)
    promotions = query.order_by(Promotion.created_at.desc(), Promotion.id.desc()).all()
    return list_response([_serialize_promotion(p) for p in promotions])


@router.get("/active")
@limiter.limit("120/minute")
def active_promotions(request: Request, db: DbSession):
    """Promotions customers can use right now (public)."""
    now = datetime.now(timezone.utc)
    promotions = (
        db.query(Promotion)
        .filter(
            Promotion.is_active.is_(True),
            Promotion.start_date <= now,
            Promotion.end_date >= now,
        )
        .order_by(Promotion.end_date)
        .all()
    )
    return list_response([_serialize_promotion(p) for p in promotions if not p.usage_exhausted])


@router.post("/validate")
@limiter.limit("30/minute")
def validate_promotion(request: Request, data: PromotionValidateRequest, db: DbSession):
    """Check a promotion code against a cart and return the discount it gives."""
    try:
        return PromotionService(db).validate(
            data.code,
            data.cart_total,
            [line.model_dump() for line in data.items],
        )
    except PromotionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PromotionValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{promotion_id}")
@limiter.limit("60/minute")
def get_promotion(request: Request, promotion_id: PositiveIntId, db: DbSession, current_user: RequireManager):
    return _serialize_promotion(_get_promotion_or_404(db, promotion_id))


@router.post("", status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_promotion(request: Request, data: PromotionCreate, db: DbSession, current_user: RequireManager):
    payload = data.model_dump()
    try:
        check_promotion_rules(payload)
    except PromotionValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    _ensure_unique_code(db, payload.get("code"))

    promotion = Promotion(**payload)
    db.add(promotion)
    db.commit()
    db.refresh(promotion)
    logger.info(f"Promotion {promotion.id} '{promotion.name}' created by {current_user.username}")
    return _serialize_promotion(promotion)


@router.put("/{promotion_id}")
@limiter.limit("30/minute")
def update_promotion(
    request: Request,
    promotion_id: PositiveIntId,
    data: PromotionUpdate,
    db: DbSession,
    current_user: RequireManager,
):
    promotion = _get_promotion_or_404(db, promotion_id)
    updates = data.model_dump(exclude_unset=True)

    merged = {**_serialize_promotion(promotion), **updates}
    merged["start_date"] = updates.get("start_date", promotion.start_date)
    merged["end_date"] = updates.get("end_date", promotion.end_date)
    try:
        check_promotion_rules(merged)
    except PromotionValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if "code" in updates:
        _ensure_unique_code(db, updates["code"], exclude_id=promotion.id)

    for field, value in updates.items():
        setattr(promotion, field, value)
    db.commit()
    db.refresh(promotion)
    return _serialize_promotion(promotion)


@router.patch("/{promotion_id}/toggle-active")
@limiter.limit("30/minute")
def toggle_promotion(request: Request, promotion_id: PositiveIntId, db: DbSession, current_user: RequireManager):
    promotion = _get_promotion_or_404(db, promotion_id)
    promotion.is_active = not promotion.is_active
    db.commit()
    db.refresh(promotion)
    return _serialize_promotion(promotion)


@router.delete("/{promotion_id}")
@limiter.limit("30/minute")
def delete_promotion(request: Request, promotion_id: PositiveIntId, db: DbSession, current_user: RequireManager):
    promotion = _get_promotion_or_404(db, promotion_id)
    db.delete(promotion)
    db.commit()
    return {"message": "Promotion deleted successfully"}
