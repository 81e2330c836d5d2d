"""Staff account management routes."""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request, status
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from app.core.rate_limit import limiter
from app.core.rbac import RequireManager, TokenData, UserRole
from app.core.responses import paginated_response
from app.core.sanitize import like_pattern
from app.core.security import get_password_hash
from app.core.validators import PositiveIntId
from app.db.session import DbSession
from app.models.user import DEFAULT_PERMISSIONS, User
from app.schemas.user import UserCreate, UserResponse, UserUpdate

logger = logging.getLogger(__name__)

router = APIRouter()


def _staff_to_dict(user: User) -> dict:
    return UserResponse.model_validate(user).model_dump(mode="json")


def _get_user_or_404(db, staff_id: int) -> User:
    user = db.get(User, staff_id)
    if not user:
        raise HTTPException(status_code=404, detail="Staff member not found")
    return user


def _guard_admin_role(current_user: TokenData, role: Optional[UserRole], target: Optional[User] = None) -> None:
    """Only admins may grant the admin role or touch an admin account."""
    if current_user.role == UserRole.ADMIN:
        return
    if role == UserRole.ADMIN or (target is not None and target.role == UserRole.ADMIN):
        raise HTTPException(status_code=403, detail="Only admins can manage admin accounts")


@router.get("")
@limiter.limit("60/minute")
def list_staff(
    request: Request,
    db: DbSession,
    current_user: RequireManager,
    role: Optional[UserRole] = None,
    department: Optional[str] = None,
    is_active: Optional[bool] = None,
    search: Optional[str] = Query(None, max_length=100),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    """List staff accounts."""
    query = db.query(User)
    if role:
        query = query.filter(User.role == role)
    if department:
        query = query.filter(User.department == department)
    if is_active is not None:
        query = query.filter(User.is_active == is_active)
    if search:
        pattern = like_pattern(search)
        query = query.filter(or_(
            User.name.ilike(pattern, escape="\\"),
            User.username.ilike(pattern, escape="\\"),
            User.email.ilike(pattern, escape="\\"),
        ))

    total = query.count()
    users = query.order_by(User.name).offset(skip).limit(limit).all()
    return paginated_response([_staff_to_dict(u) for u in users], total, skip, limit)


@router.post("", status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_staff(request: Request, data: UserCreate, db: DbSession, current_user: RequireManager):
    """Create a staff account."""
    _guard_admin_role(current_user, data.role)

    if db.query(User).filter(User.username == data.username).first():
        raise HTTPException(status_code=409, detail="Username already exists")
    if data.email and db.query(User).filter(User.email == data.email).first():
        raise HTTPException(status_code=409, detail="Email already exists")

    permissions = dict(DEFAULT_PERMISSIONS)
    if data.permissions:
        permissions.update(data.permissions.model_dump())

    user = User(
        username=data.username,
        email=data.email,
        password_hash=get_password_hash(data.password),
        name=data.name,
        role=data.role,
        department=data.department,
        phone=data.phone,
        permissions=permissions,
        is_active=data.is_active,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Username or email already exists")
    db.refresh(user)
    logger.info(f"Staff account created: {user.username} (ID: {user.id}, role: {user.role.value}) by {current_user.username}")
    return _staff_to_dict(user)


@router.get("/{staff_id}")
@limiter.limit("60/minute")
def get_staff(request: Request, staff_id: PositiveIntId, db: DbSession, current_user: RequireManager):
    return _staff_to_dict(_get_user_or_404(db, staff_id))


@router.put("/{staff_id}")
@limiter.limit("30/minute")
def update_staff(
    request: Request,
    staff_id: PositiveIntId,
    data: UserUpdate,
    db: DbSession,
    current_user: RequireManager,
):
    """Update a staff account."""
    user = _get_user_or_404(db, staff_id)
    _guard_admin_role(current_user, data.role, user)

    updates = data.model_dump(exclude_unset=True)
    if user.id == current_user.user_id:
        if updates.get("is_active") is False:
            raise HTTPException(status_code=400, detail="You cannot deactivate your own account")
        if "role" in updates and updates["role"] != user.role:
            raise HTTPException(status_code=400, detail="You cannot change your own role")

    if data.email and data.email != user.email:
        if db.query(User).filter(User.email == data.email, User.id != user.id).first():
            raise HTTPException(status_code=409, detail="Email already exists")

    password = updates.pop("password", None)
    if password:
        user.password_hash = get_password_hash(password)
    permissions = updates.pop("permissions", None)
    if permissions is not None:
        user.permissions = {**DEFAULT_PERMISSIONS, **(user.permissions or {}), **permissions}
    for field, value in updates.items():
        setattr(user, field, value)

    db.commit()
    db.refresh(user)
    return _staff_to_dict(user)


@router.delete("/{staff_id}")
@limiter.limit("30/minute")
def delete_staff(request: Request, staff_id: PositiveIntId, db: DbSession, current_user: RequireManager):
    user = _get_user_or_404(db, staff_id)
    if user.id == current_user.user_id:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")
    _guard_admin_role(current_user, None, user)

    db.delete(user)
    db.commit()
    logger.info(f"Staff account deleted: {user.username} (ID: {staff_id}) by {current_user.username}")
    return {"message": "Staff member deleted", "id": staff_id}


@router.patch("/{staff_id}/toggle-status")
@limiter.limit("30/minute")
def toggle_staff_status(request: Request, staff_id: PositiveIntId, db: DbSession, current_user: RequireManager):
    """Activate or deactivate an account."""
    user = _get_user_or_404(db, staff_id)
    if user.id == current_user.user_id:
        raise HTTPException(status_code=400, detail="You cannot deactivate your own account")
    _guard_admin_role(current_user, None, user)

    user.is_active = not user.is_active
    db.commit()
    db.refresh(user)
    return _staff_to_dict(user)
