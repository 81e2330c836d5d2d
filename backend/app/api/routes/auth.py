"""Authentication routes."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException, Request, status

from app.core.config import settings
from app.core.rate_limit import limiter
from app.core.rbac import CurrentUser, UserRole
from app.core.security import (
    blacklist_token,
    create_access_token,
    get_password_hash,
    request_token,
    verify_password,
)
from app.db.session import DbSession
from app.models.user import DEFAULT_PERMISSIONS, User
from app.schemas.auth import ChangePasswordRequest, LoginRequest, Token
from app.schemas.user import UserCreate, UserResponse
from app.services.audit_service import log_action

logger = logging.getLogger("auth")

router = APIRouter()


def _issue_token(user: User) -> str:
    return create_access_token(
        data={
            "sub": str(user.id),
            "username": user.username,
            "role": user.role.value,
            "name": user.name,
        }
    )


@router.post("/login", response_model=Token)
@limiter.limit("5/minute")
def login(request: Request, login_request: LoginRequest, db: DbSession):
    """Authenticate a staff member and return a JWT."""
    client_ip = request.client.host if request.client else "unknown"
    username = login_request.username.strip()
    user = db.query(User).filter(User.username == username).first()

    if not user or not verify_password(login_request.password, user.password_hash):
        logger.warning(f"Failed login attempt for username: {username} from IP: {client_ip}")
        log_action("failed_login", "session", user_name=username, ip_address=client_ip)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )
    if not user.is_active:
        logger.warning(f"Login attempt for inactive user: {username} (ID: {user.id}) from IP: {client_ip}")
        log_action("failed_login", "session", user_id=user.id, user_name=username, ip_address=client_ip)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User account is inactive",
        )

    user.last_login = datetime.now(timezone.utc)
    db.commit()
    db.refresh(user)

    logger.info(f"Successful login: {user.username} (ID: {user.id}, role: {user.role.value}) from IP: {client_ip}")
    log_action("login", "session", user_id=user.id, user_name=user.username, ip_address=client_ip)
    return Token(
        access_token=_issue_token(user),
        expires_in=settings.access_token_expire_minutes * 60,
        user=UserResponse.model_validate(user).model_dump(mode="json"),
    )


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
def register(request: Request, user_create: UserCreate, db: DbSession):
    """Create the first account (always an admin); closed once any user exists."""
    client_ip = request.client.host if request.client else "unknown"

    if db.query(User).first():
        logger.warning(f"Registration attempt blocked (users exist) from IP: {client_ip}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Registration is closed. Contact administrator.",
        )

    user = User(
        username=user_create.username,
        email=user_create.email,
        password_hash=get_password_hash(user_create.password),
        name=user_create.name,
        phone=user_create.phone,
        role=UserRole.ADMIN,
        permissions={flag: True for flag in DEFAULT_PERMISSIONS},
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Initial admin registered: {user.username} (ID: {user.id}) from IP: {client_ip}")
    return user


@router.get("/me", response_model=UserResponse)
@limiter.limit("60/minute")
def get_current_user_info(request: Request, current_user: CurrentUser, db: DbSession):
    """Get current authenticated user info."""
    user = db.get(User, current_user.user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


@router.post("/logout")
@limiter.limit("30/minute")
def logout(request: Request, current_user: CurrentUser):
    """Revoke the current token."""
    token = request_token(request)
    if token:
        blacklist_token(token)
    logger.info(f"User logged out: {current_user.username} (ID: {current_user.user_id})")
    return {"message": "Logged out successfully"}


@router.post("/change-password")
@limiter.limit("5/minute")
def change_password(
    request: Request,
    data: ChangePasswordRequest,
    current_user: CurrentUser,
    db: DbSession,
):
    """Change password for the current user; the current token is revoked."""
    user = db.get(User, current_user.user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    if not verify_password(data.old_password, user.password_hash):
        raise HTTPException(status_code=400, detail="Current password is incorrect")
    if data.old_password == data.new_password:
        raise HTTPException(status_code=400, detail="New password must differ from the current one")

    user.password_hash = get_password_hash(data.new_password)
    db.commit()

    token = request_token(request)
    if token:
        blacklist_token(token)

    logger.info(f"Password changed for user: {user.username} (ID: {user.id})")
    return {"message": "Password changed. Please log in again."}
