"""Role-Based Access Control (RBAC) utilities."""

from enum import Enum
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status

from app.core.security import request_token_payload
from app.db.session import DbSession


class UserRole(str, Enum):
    """Staff roles."""

    ADMIN = "admin"
    MANAGER = "manager"
    KITCHEN = "kitchen"
    BARISTA = "barista"
    SHISHA = "shisha"
    STAFF = "staff"


# Role hierarchy: admin > manager > station staff
ROLE_HIERARCHY = {
    UserRole.ADMIN: 3,
    UserRole.MANAGER: 2,
    UserRole.KITCHEN: 1,
    UserRole.BARISTA: 1,
    UserRole.SHISHA: 1,
    UserRole.STAFF: 1,
}

# Station roles map onto the department whose queue they work
ROLE_DEPARTMENTS = {
    UserRole.KITCHEN: "kitchen",
    UserRole.BARISTA: "barista",
    UserRole.SHISHA: "shisha",
}


class TokenData:
    """Decoded token data.

    Attributes:
        user_id: The user's database ID.
        username: The login name.
        role: The user's role.
        id: Alias for user_id.
    """

    def __init__(self, user_id: int, username: str, role: UserRole, name: str = ""):
        self.user_id = user_id
        self.id = user_id
        self.username = username
        self.role = role
        self.name = name or username

    @property
    def department(self) -> Optional[str]:
        return ROLE_DEPARTMENTS.get(self.role)

    def has_role(self, minimum_role: UserRole) -> bool:
        return ROLE_HIERARCHY.get(self.role, 0) >= ROLE_HIERARCHY.get(minimum_role, 0)


def _token_data_from_payload(payload: dict) -> Optional[TokenData]:
    user_id = payload.get("sub")
    username = payload.get("username")
    role = payload.get("role")
    if user_id is None or username is None or role is None:
        return None
    try:
        user_role = UserRole(role)
    except ValueError:
        return None
    return TokenData(user_id=int(user_id), username=username, role=user_role, name=payload.get("name", ""))


async def get_current_user(request: Request, db: DbSession) -> TokenData:
    """Get the current authenticated user from the JWT token.

    The user must still exist and be active.
    """
    payload = request_token_payload(request)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token_data = _token_data_from_payload(payload)
    if token_data is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    from app.models.user import User

    user = db.get(User, token_data.user_id)
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User account is disabled",
        )
    return token_data


def require_role(minimum_role: UserRole):
    """Dependency to require a minimum role level."""

    async def role_checker(
        current_user: Annotated[TokenData, Depends(get_current_user)]
    ) -> TokenData:
        if not current_user.has_role(minimum_role):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role {minimum_role.value} or higher",
            )
        return current_user

    return role_checker


RequireAdmin = Annotated[TokenData, Depends(require_role(UserRole.ADMIN))]
RequireManager = Annotated[TokenData, Depends(require_role(UserRole.MANAGER))]
RequireStaff = Annotated[TokenData, Depends(require_role(UserRole.STAFF))]
CurrentUser = Annotated[TokenData, Depends(get_current_user)]


async def get_optional_current_user(request: Request) -> Optional[TokenData]:
    """Get the current user if a valid token is provided, otherwise None."""
    payload = request_token_payload(request)
    if payload is None:
        return None
    return _token_data_from_payload(payload)


OptionalCurrentUser = Annotated[Optional[TokenData], Depends(get_optional_current_user)]
