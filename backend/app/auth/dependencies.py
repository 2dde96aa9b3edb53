"""FastAPI authentication dependencies for route protection."""

import uuid
from collections.abc import Awaitable, Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.jwt import ACCESS, decode_token
from app.database import get_db
from app.models.user import User

# Strict bearer: raises 403 automatically if no token provided
_bearer_scheme = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Extract and validate the Bearer token, then return the authenticated user.

    Raises:
        HTTPException 401: If the token is invalid, expired, wrong type, or user not found.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    token = credentials.credentials

    try:
        # Only access tokens authenticate requests; refresh tokens are rejected here
        payload = decode_token(token, expected_type=ACCESS)
    except JWTError:
        raise credentials_exception from None

    # Extract user ID from the subject claim
    sub: str | None = payload.get("sub")
    if sub is None:
        raise credentials_exception

    try:
        user_id = uuid.UUID(sub)
    except ValueError:
        raise credentials_exception from None

    # Query the user from the database
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if user is None:
        raise credentials_exception

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User account is inactive",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return user


async def get_current_active_user(
    user: User = Depends(get_current_user),
) -> User:
    """Return the current user only if their account is active.

    Raises:
        HTTPException 403: If the user account is inactive or banned.
    """
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is inactive",
        )
    return user


# ---------------------------------------------------------------------------
# Role-based authorization
# ---------------------------------------------------------------------------


def is_admin(user: User) -> bool:
    """True for users whose role is ADMIN or SUPERADMIN (any case)."""
    return user.role is not None and user.role.is_admin


def has_permission(user: User, resource: str, action: str) -> bool:
    """True if the user's role grants ``action`` on ``resource``. Admin roles always pass."""
    return user.role is not None and user.role.allows(resource, action)


async def get_admin_user(
    user: User = Depends(get_current_active_user),
) -> User:
    """Return the current user only if they hold an admin role.

    Raises:
        HTTPException 403: If the user is not an admin.
    """
    if not is_admin(user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user


def require_permission(resource: str, action: str) -> Callable[..., Awaitable[User]]:
    """Build a dependency that admits admins and users whose role grants ``resource.action``.

    Usage::

        @router.get("/tickets", dependencies=[Depends(require_permission("ticket", "read"))])
    """

    async def _check_permission(user: User = Depends(get_current_active_user)) -> User:
        if not has_permission(user, resource, action):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permission: {resource}.{action}",
            )
        return user

    return _check_permission
