"""Menu item review moderation."""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request

from app.core.rate_limit import limiter
from app.core.rbac import RequireManager
from app.core.responses import paginated_response
from app.core.validators import PositiveIntId
from app.db.session import DbSession
from app.models.review import MenuItemReview
from app.schemas.review import ReviewModeration
from app.services.review_service import serialize_review

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_review_or_404(db, review_id: int) -> MenuItemReview:
    review = db.get(MenuItemReview, review_id)
    if not review:
        raise HTTPException(status_code=404, detail="Review not found")
    return review


@router.get("")
@limiter.limit("60/minute")
def list_reviews(
    request: Request,
    db: DbSession,
    current_user: RequireManager,
    is_approved: Optional[bool] = None,
    menu_item_id: Optional[int] = Query(None, gt=0),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
):
    """Every review, pending ones included, newest first."""
    query = db.query(MenuItemReview)
    if is_approved is not None:
        query = query.filter(MenuItemReview.is_approved == is_approved)
    if menu_item_id:
        query = query.filter(MenuItemReview.menu_item_id == menu_item_id)
    total = query.count()
    reviews = (
        query.order_by(MenuItemReview.created_at.desc(), MenuItemReview.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )
    return paginated_response([serialize_review(r, private=True) for r in reviews], total, skip, limit)


@router.patch("/{review_id}")
@limiter.limit("60/minute")
def moderate_review(
    request: Request,
    review_id: PositiveIntId,
    data: ReviewModeration,
    db: DbSession,
    current_user: RequireManager,
):
    """Approve or hide a review."""
    review = _get_review_or_404(db, review_id)
    review.is_approved = data.is_approved
    db.commit()
    db.refresh(review)
    logger.info(
        f"Review {review.id} {'approved' if review.is_approved else 'hidden'} by {current_user.username}"
    )
    return serialize_review(review, private=True)


@router.delete("/{review_id}")
@limiter.limit("30/minute")
def delete_review(request: Request, review_id: PositiveIntId, db: DbSession, current_user: RequireManager):
    review = _get_review_or_404(db, review_id)
    db.delete(review)
    db.commit()
    return {"message": "Review deleted", "id": review_id}
