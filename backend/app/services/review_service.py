"""Menu item reviews: moderation state and rating summaries."""

from typing import Any, Dict

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.review import MenuItemReview


def serialize_review(review: MenuItemReview, private: bool = False) -> Dict[str, Any]:
    """Public shape by default; ``private`` adds contact details for moderators."""
    data = {
        "id": review.id,
        "menu_item_id": review.menu_item_id,
        "author_name": review.author_name,
        "rating": review.rating,
        "text": review.text,
        "is_approved": review.is_approved,
        "created_at": review.created_at.isoformat() if review.created_at else None,
    }
    if private:
        data.update({
            "menu_item_name": review.menu_item.name if review.menu_item else None,
            "email": review.email,
            "phone": review.phone,
            "updated_at": review.updated_at.isoformat() if review.updated_at else None,
        })
    return data


def review_summary(db: Session, menu_item_id: int) -> Dict[str, Any]:
    """Count and average of approved ratings for a menu item."""
    count, average = (
        db.query(func.count(MenuItemReview.id), func.avg(MenuItemReview.rating))
        .filter(MenuItemReview.menu_item_id == menu_item_id, MenuItemReview.is_approved.is_(True))
        .one()
    )
    return {
        "review_count": count or 0,
        "average_rating": round(float(average), 1) if average is not None else None,
    }
