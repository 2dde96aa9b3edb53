"""JWT access/refresh tokens (python-jose, HS256 by default)."""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from app.config import settings

ACCESS = "access"
REFRESH = "refresh"


def _encode(data: dict, token_type: str, lifetime: timedelta) -> str:
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    to_encode.update({"exp": now + lifetime, "iat": now, "type": token_type})
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a short-lived access token. ``data`` must carry ``sub`` (the user id)."""
    lifetime = expires_delta or timedelta(minutes=settings.jwt_access_token_expire_minutes)
    return _encode(data, ACCESS, lifetime)


def create_refresh_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a long-lived refresh token. ``data`` must carry ``sub`` (the user id)."""
    lifetime = expires_delta or timedelta(days=settings.jwt_refresh_token_expire_days)
    return _encode(data, REFRESH, lifetime)


def decode_token(token: str, expected_type: str | None = None) -> dict:
    """Decode and verify a JWT.

    Args:
        token: Encoded JWT string.
        expected_type: If given, the ``type`` claim must equal it.

    Raises:
        jose.JWTError: If the token is invalid, expired, malformed, or of the
            wrong type.
    """
    payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    if expected_type is not None and payload.get("type") != expected_type:
        raise JWTError(f"Expected a {expected_type} token")
    return payload


def create_token_pair(user_id: str) -> dict[str, str]:
    """Access and refresh tokens for a user, plus ``token_type``."""
    payload = {"sub": user_id}
    return {
        "access_token": create_access_token(payload),
        "refresh_token": create_refresh_token(payload),
        "token_type": "bearer",
    }
