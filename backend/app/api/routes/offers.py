"""Menu offer routes."""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Request, status

from app.core.rate_limit import limiter
from app.core.rbac import RequireManager
from app.core.responses import list_response
from app.core.validators import PositiveIntId
from app.db.base import as_utc
from app.db.session import DbSession
from app.models.promotion import Offer, OfferStatus
from app.schemas.promotion import OfferCreate, OfferUpdate
from app.services.promotion_service import active_offers_query, refresh_offer_status

logger = logging.getLogger(__name__)

router = APIRouter()


def _serialize_offer(offer: Offer) -> dict:
    return {
        "id": offer.id,
        "title": offer.title,
        "title_en": offer.title_en,
        "description": offer.description,
        "type": offer.type,
        "discount_value": float(offer.discount_value or 0),
        "min_purchase": float(offer.min_purchase or 0),
        "max_discount": float(offer.max_discount) if offer.max_discount is not None else None,
        "applicable_categories": offer.applicable_categories or [],
        "applicable_items": offer.applicable_items or [],
        "buy_quantity": offer.buy_quantity,
        "get_quantity": offer.get_quantity,
        "free_item_id": offer.free_item_id,
        "code": offer.code,
        "image_url": offer.image_url,
        "start_date": offer.start_date.isoformat() if offer.start_date else None,
        "end_date": offer.end_date.isoformat() if offer.end_date else None,
        "status": offer.status,
        "usage_limit": offer.usage_limit,
        "used_count": offer.used_count or 0,
        "sort_order": offer.sort_order,
        "created_at": offer.created_at.isoformat() if offer.created_at else None,
        "updated_at": offer.updated_at.isoformat() if offer.updated_at else None,
    }


def _get_offer_or_404(db, offer_id: int) -> Offer:
    offer = db.get(Offer, offer_id)
    if not offer:
        raise HTTPException(status_code=404, detail="Offer not found")
    return offer


def _ensure_unique_code(db, code: Optional[str], exclude_id: Optional[int] = None) -> None:
    if not code:
        return
    query = db.query(Offer.id).filter(Offer.code == code)
    if exclude_id is not None:
        query = query.filter(Offer.id != exclude_id)
    if query.first():
        raise HTTPException(status_code=409, detail=f"Offer code '{code}' already exists")


@router.get("")
@limiter.limit("120/minute")
def list_offers(
    request: Request,
    db: DbSession,
    active: bool = False,
    status: Optional[OfferStatus] = None,
):
    """Offers for the menu. ``active=true`` restricts to offers valid right now."""
    if active:
        offers = active_offers_query(db).order_by(Offer.sort_order, Offer.id).all()
        return list_response([_serialize_offer(o) for o in offers])

    offers = db.query(Offer).order_by(Offer.sort_order, Offer.id).all()
    changed = False
    for offer in offers:
        before = offer.status
        if refresh_offer_status(offer) != before:
            changed = True
    if changed:
        db.commit()

    if status:
        offers = [o for o in offers if o.status == status.value]
    return list_response([_serialize_offer(o) for o in offers])


@router.get("/{offer_id}")
@limiter.limit("120/minute")
def get_offer(request: Request, offer_id: PositiveIntId, db: DbSession):
    return _serialize_offer(_get_offer_or_404(db, offer_id))


@router.post("", status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_offer(request: Request, data: OfferCreate, db: DbSession, current_user: RequireManager):
    _ensure_unique_code(db, data.code)
    offer = Offer(**data.model_dump())
    refresh_offer_status(offer)
    db.add(offer)
    db.commit()
    db.refresh(offer)
    logger.info(f"Offer {offer.id} '{offer.title}' created by {current_user.username}")
    return _serialize_offer(offer)


@router.put("/{offer_id}")
@limiter.limit("30/minute")
def update_offer(
    request: Request,
    offer_id: PositiveIntId,
    data: OfferUpdate,
    db: DbSession,
    current_user: RequireManager,
):
    offer = _get_offer_or_404(db, offer_id)
    updates = data.model_dump(exclude_unset=True)
    if "code" in updates:
        _ensure_unique_code(db, updates["code"], exclude_id=offer.id)

    start = as_utc(updates.get("start_date", offer.start_date))
    end = as_utc(updates.get("end_date", offer.end_date))
    if start and end and start >= end:
        raise HTTPException(status_code=400, detail="start_date must be before end_date")

    for field, value in updates.items():
        setattr(offer, field, value)
    refresh_offer_status(offer)
    db.commit()
    db.refresh(offer)
    return _serialize_offer(offer)


@router.delete("/{offer_id}")
@limiter.limit("30/minute")
def delete_offer(request: Request, offer_id: PositiveIntId, db: DbSession, current_user: RequireManager):
    offer = _get_offer_or_404(db, offer_id)
    db.delete(offer)
    db.commit()
    return {"message": "Offer deleted successfully"}
