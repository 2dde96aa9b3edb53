"""Auth API router — email/password accounts and JWT sessions.

Accounts start with an empty token balance and no role; staff roles are
granted by admins. Emails are stored lower-cased so lookups are exact.
"""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_active_user
from app.auth.jwt import REFRESH, create_token_pair, decode_token
from app.auth.passwords import hash_password, verify_password
from app.database import get_db
from app.models.user import User
from app.schemas.auth import (
    AuthResponse,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    TokenResponse,
    UserResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])

_BEARER = {"WWW-Authenticate": "Bearer"}


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail, headers=_BEARER)


async def _find_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == email.lower()))
    return result.scalar_one_or_none()


def _session_for(user: User) -> AuthResponse:
    return AuthResponse(
        user=UserResponse.model_validate(user),
        tokens=TokenResponse(**create_token_pair(str(user.id))),
    )


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(body: RegisterRequest, db: AsyncSession = Depends(get_db)) -> AuthResponse:
    """Create an account and sign it in."""
    if await _find_by_email(db, body.email) is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered",
        )

    user = User(
        email=body.email.lower(),
        hashed_password=hash_password(body.password),
        name=body.name,
    )
    db.add(user)
    await db.flush()
    # role is selectin-loaded; refresh so role_name serializes without lazy IO
    await db.refresh(user)

    logger.info("Registered user %s", user.id)
    return _session_for(user)


@router.post("/login", response_model=AuthResponse)
async def login(body: LoginRequest, db: AsyncSession = Depends(get_db)) -> AuthResponse:
    user = await _find_by_email(db, body.email)
    if user is None or not verify_password(body.password, user.hashed_password):
        logger.info("Failed login for %s", body.email.lower())
        raise _unauthorized("Invalid email or password")

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is inactive",
        )
    return _session_for(user)


@router.post("/refresh", response_model=TokenResponse)
async def refresh(body: RefreshRequest, db: AsyncSession = Depends(get_db)) -> TokenResponse:
    """Exchange a refresh token for a new pair. Deactivated accounts cannot refresh."""
    try:
        payload = decode_token(body.refresh_token, expected_type=REFRESH)
        user_id = uuid.UUID(payload.get("sub") or "")
    except (JWTError, ValueError):
        raise _unauthorized("Invalid or expired refresh token") from None

    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        raise _unauthorized("User not found or inactive")

    return TokenResponse(**create_token_pair(str(user.id)))


@router.get("/me", response_model=UserResponse)
async def me(current_user: User = Depends(get_current_active_user)) -> UserResponse:
    """Profile of the caller, including role name and token balance."""
    return UserResponse.model_validate(current_user)
