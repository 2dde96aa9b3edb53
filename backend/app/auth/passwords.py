"""Password hashing with bcrypt.

bcrypt only looks at the first 72 bytes of a password and recent releases
reject longer input outright, so passwords are truncated to that length on
both hashing and verification.
"""

import bcrypt

BCRYPT_MAX_BYTES = 72


def _encode(password: str) -> bytes:
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    """Hash a plain-text password, returning the bcrypt hash as text."""
    return bcrypt.hashpw(_encode(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str | None) -> bool:
    """True if the password matches the hash. A missing or malformed hash never matches."""
    if not hashed_password:
        return False
    try:
        return bcrypt.checkpw(_encode(plain_password), hashed_password.encode("utf-8"))
    except ValueError:
        return False
