"""Menu category routes."""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Request, status
from sqlalchemy import func

from app.core.rate_limit import limiter
from app.core.rbac import RequireManager
from app.core.responses import list_response
from app.core.validators import PositiveIntId
from app.db.session import DbSession
from app.models.menu import Category, MenuItem
from app.schemas.catalog import CategoryCreate, CategoryUpdate

logger = logging.getLogger(__name__)

router = APIRouter()


def _serialize_category(category: Category, item_count: int = 0) -> dict:
    return {
        "id": category.id,
        "name": category.name,
        "name_en": category.name_en,
        "description": category.description,
        "department": category.department,
        "color": category.color,
        "icon": category.icon,
        "sort_order": category.sort_order,
        "is_active": category.is_active,
        "item_count": item_count,
        "created_at": category.created_at.isoformat() if category.created_at else None,
        "updated_at": category.updated_at.isoformat() if category.updated_at else None,
    }


def _get_category_or_404(db, category_id: int) -> Category:
    category = db.get(Category, category_id)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return category


@router.get("")
@limiter.limit("120/minute")
def list_categories(
    request: Request,
    db: DbSession,
    department: Optional[str] = None,
    include_inactive: bool = False,
):
    """Public category listing, sorted for display."""
    query = db.query(Category)
    if not include_inactive:
        query = query.filter(Category.is_active.is_(True))
    if department:
        query = query.filter(Category.department == department)
    categories = query.order_by(Category.sort_order, Category.name).all()

    counts = dict(
        db.query(MenuItem.category_id, func.count(MenuItem.id))
        .group_by(MenuItem.category_id)
        .all()
    )
    return list_response([_serialize_category(c, counts.get(c.id, 0)) for c in categories])


@router.get("/{category_id}")
@limiter.limit("120/minute")
def get_category(request: Request, category_id: PositiveIntId, db: DbSession):
    category = _get_category_or_404(db, category_id)
    return _serialize_category(category, len(category.items))


@router.post("", status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_category(request: Request, data: CategoryCreate, db: DbSession, current_user: RequireManager):
    category = Category(**data.model_dump())
    db.add(category)
    db.commit()
    db.refresh(category)
    logger.info(f"Category created: {category.name} (ID: {category.id})")
    return _serialize_category(category)


@router.put("/{category_id}")
@limiter.limit("30/minute")
def update_category(
    request: Request,
    category_id: PositiveIntId,
    data: CategoryUpdate,
    db: DbSession,
    current_user: RequireManager,
):
    category = _get_category_or_404(db, category_id)
    for field, value in data.model_dump(exclude_unset=True).items():
        if value is None and field in ("name", "department", "sort_order", "is_active"):
            continue
        setattr(category, field, value)
    db.commit()
    db.refresh(category)
    return _serialize_category(category, len(category.items))


@router.delete("/{category_id}")
@limiter.limit("30/minute")
def delete_category(request: Request, category_id: PositiveIntId, db: DbSession, current_user: RequireManager):
    """Delete an empty category."""
    category = _get_category_or_404(db, category_id)
    item_count = db.query(func.count(MenuItem.id)).filter(MenuItem.category_id == category.id).scalar()
    if item_count:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot delete category with {item_count} menu item(s). Move or delete them first.",
        )
    db.delete(category)
    db.commit()
    logger.info(f"Category deleted: {category.name} (ID: {category_id})")
    return {"message": "Category deleted", "id": category_id}
