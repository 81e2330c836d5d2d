"""Menu item routes: public browsing and manager CRUD with recipes."""

import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, Request, status
from sqlalchemy import and_, or_
from sqlalchemy.orm import selectinload

from app.core.rate_limit import limiter
from app.core.rbac import RequireManager
from app.core.responses import list_response, paginated_response
from app.core.sanitize import like_pattern
from app.core.validators import PositiveIntId
from app.db.session import DbSession
from app.models.inventory import Material
from app.models.menu import Category, MenuItem, MenuItemIngredient, MenuItemStatus
from app.models.modifier import Modifier
from app.models.review import MenuItemReview
from app.schemas.catalog import IngredientLine, MenuItemCreate, MenuItemUpdate
from app.schemas.review import ReviewCreate
from app.services.inventory_service import InventoryService
from app.services.modifier_service import serialize_modifier
from app.services.review_service import review_summary, serialize_review
from app.services.units import are_compatible, normalize_unit

logger = logging.getLogger(__name__)

router = APIRouter()


def _serialize_menu_item(item: MenuItem) -> dict:
    return {
        "id": item.id,
        "name": item.name,
        "name_en": item.name_en,
        "description": item.description,
        "price": float(item.price),
        "discount_price": float(item.discount_price) if item.discount_price is not None else None,
        "effective_price": float(item.effective_price),
        "category_id": item.category_id,
        "category_name": item.category.name if item.category else None,
        "department": item.effective_department,
        "image_url": item.image_url,
        "preparation_time": item.preparation_time,
        "calories": item.calories,
        "is_available": item.is_available,
        "is_featured": item.is_featured,
        "status": item.status,
        "is_orderable": item.is_orderable,
        "sort_order": item.sort_order,
        "ingredients": [
            {
                "id": ing.id,
                "material_id": ing.material_id,
                "material_name": ing.material.name if ing.material else None,
                "portion": float(ing.portion),
                "unit": ing.unit,
                "required": ing.required,
            }
            for ing in item.ingredients
        ],
        "modifiers": [serialize_modifier(m) for m in item.modifiers],
        "created_at": item.created_at.isoformat() if item.created_at else None,
        "updated_at": item.updated_at.isoformat() if item.updated_at else None,
    }


def _get_item_or_404(db, item_id: int) -> MenuItem:
    item = db.get(MenuItem, item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Menu item not found")
    return item


def _build_recipe(db, lines: List[IngredientLine]) -> List[MenuItemIngredient]:
    """Recipe lines checked against the materials they reference."""
    recipe = []
    for line in lines:
        material = db.get(Material, line.material_id)
        if material is None:
            raise HTTPException(status_code=400, detail=f"Material {line.material_id} not found")
        if not are_compatible(line.unit, material.unit):
            raise HTTPException(
                status_code=400,
                detail=f"Unit '{line.unit}' is not compatible with '{material.unit}' for material '{material.name}'",
            )
        recipe.append(MenuItemIngredient(
            material=material,
            portion=line.portion,
            unit=normalize_unit(line.unit),
            required=line.required,
        ))
    return recipe


def _resolve_modifiers(db, modifier_ids: List[int]) -> List[Modifier]:
    modifiers = []
    for modifier_id in dict.fromkeys(modifier_ids):
        modifier = db.get(Modifier, modifier_id)
        if modifier is None:
            raise HTTPException(status_code=400, detail=f"Modifier {modifier_id} not found")
        modifiers.append(modifier)
    return modifiers


def _check_category(db, category_id: Optional[int]) -> None:
    if category_id is not None and db.get(Category, category_id) is None:
        raise HTTPException(status_code=400, detail=f"Category {category_id} not found")


@router.get("")
@limiter.limit("120/minute")
def list_menu_items(
    request: Request,
    db: DbSession,
    category_id: Optional[int] = Query(None, gt=0),
    department: Optional[str] = None,
    status: Optional[MenuItemStatus] = None,
    featured: Optional[bool] = None,
    available: Optional[bool] = None,
    search: Optional[str] = Query(None, max_length=100),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
):
    """Public menu listing."""
    query = (
        db.query(MenuItem)
        .outerjoin(Category, MenuItem.category_id == Category.id)
        .options(
            selectinload(MenuItem.ingredients).selectinload(MenuItemIngredient.material),
            selectinload(MenuItem.modifiers).selectinload(Modifier.options),
        )
    )
    if category_id:
        query = query.filter(MenuItem.category_id == category_id)
    if department:
        query = query.filter(or_(
            MenuItem.department == department,
            and_(MenuItem.department.is_(None), Category.department == department),
        ))
    if status:
        query = query.filter(MenuItem.status == status.value)
    if featured is not None:
        query = query.filter(MenuItem.is_featured == featured)
    if available is not None:
        query = query.filter(MenuItem.is_available == available)
    if search:
        pattern = like_pattern(search)
        query = query.filter(or_(
            MenuItem.name.ilike(pattern, escape="\\"),
            MenuItem.name_en.ilike(pattern, escape="\\"),
            MenuItem.description.ilike(pattern, escape="\\"),
        ))

    total = query.count()
    items = query.order_by(MenuItem.sort_order, MenuItem.name).offset(skip).limit(limit).all()
    return paginated_response([_serialize_menu_item(i) for i in items], total, skip, limit)


@router.get("/{item_id}")
@limiter.limit("120/minute")
def get_menu_item(request: Request, item_id: PositiveIntId, db: DbSession):
    return _serialize_menu_item(_get_item_or_404(db, item_id))


@router.post("", status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_menu_item(request: Request, data: MenuItemCreate, db: DbSession, current_user: RequireManager):
    """Create a menu item; its availability follows its recipe stock."""
    _check_category(db, data.category_id)
    fields = data.model_dump(exclude={"ingredients", "status", "modifier_ids"})
    item = MenuItem(**fields)
    item.status = (data.status or MenuItemStatus.ACTIVE).value
    item.ingredients = _build_recipe(db, data.ingredients)
    item.modifiers = _resolve_modifiers(db, data.modifier_ids)
    db.add(item)

    InventoryService(db, current_user.user_id).evaluate_menu_item(item)
    db.commit()
    db.refresh(item)
    logger.info(f"Menu item created: {item.name} (ID: {item.id}, status: {item.status})")
    return _serialize_menu_item(item)


@router.put("/{item_id}")
@limiter.limit("30/minute")
def update_menu_item(
    request: Request,
    item_id: PositiveIntId,
    data: MenuItemUpdate,
    db: DbSession,
    current_user: RequireManager,
):
    item = _get_item_or_404(db, item_id)
    updates = data.model_dump(exclude_unset=True, exclude={"ingredients", "status", "modifier_ids"})
    if "category_id" in updates:
        _check_category(db, updates["category_id"])

    for field, value in updates.items():
        if value is None and field in ("name", "price", "preparation_time", "is_available", "is_featured", "sort_order"):
            continue
        setattr(item, field, value)
    if data.status is not None:
        item.status = data.status.value
    if data.ingredients is not None:
        item.ingredients = _build_recipe(db, data.ingredients)
    if data.modifier_ids is not None:
        item.modifiers = _resolve_modifiers(db, data.modifier_ids)

    InventoryService(db, current_user.user_id).evaluate_menu_item(item)
    db.commit()
    db.refresh(item)
    return _serialize_menu_item(item)


@router.delete("/{item_id}")
@limiter.limit("30/minute")
def delete_menu_item(request: Request, item_id: PositiveIntId, db: DbSession, current_user: RequireManager):
    item = _get_item_or_404(db, item_id)
    db.delete(item)
    db.commit()
    logger.info(f"Menu item deleted: {item.name} (ID: {item_id})")
    return {"message": "Menu item deleted", "id": item_id}


@router.get("/{item_id}/reviews")
@limiter.limit("120/minute")
def list_menu_item_reviews(request: Request, item_id: PositiveIntId, db: DbSession):
    """Approved reviews of a menu item, newest first."""
    _get_item_or_404(db, item_id)
    reviews = (
        db.query(MenuItemReview)
        .filter(MenuItemReview.menu_item_id == item_id, MenuItemReview.is_approved.is_(True))
        .order_by(MenuItemReview.created_at.desc(), MenuItemReview.id.desc())
        .all()
    )
    return {**list_response([serialize_review(r) for r in reviews]), **review_summary(db, item_id)}


@router.post("/{item_id}/reviews", status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
def create_menu_item_review(request: Request, item_id: PositiveIntId, data: ReviewCreate, db: DbSession):
    """Submit a review; it stays hidden until a manager approves it."""
    _get_item_or_404(db, item_id)
    review = MenuItemReview(menu_item_id=item_id, is_approved=False, **data.model_dump())
    db.add(review)
    db.commit()
    db.refresh(review)
    logger.info(f"Review {review.id} submitted for menu item {item_id} (rating {review.rating})")
    return serialize_review(review)
