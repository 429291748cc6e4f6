from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
from jose import jwt

from core.config import settings


def hash_password(password: str, *, rounds: int | None = None) -> str:
    salt = bcrypt.gensalt(rounds=rounds or settings.bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash.
        return False


def token_ttl_seconds() -> int:
    return int(settings.access_token_expire_minutes) * 60


def create_access_token(*, user_id: str, username: str, role: str) -> str:
    """Signed session token.

    Student tokens also carry `student_id` (the register number), which is the
    key used in every CBCS preference and assignment row.
    """

    issued = datetime.now(timezone.utc)
    claims: dict[str, Any] = {
        "sub": user_id,
        "username": username,
        "role": role,
        "iat": int(issued.timestamp()),
        "exp": int((issued + timedelta(seconds=token_ttl_seconds())).timestamp()),
    }
    if role == "STUDENT":
        claims["student_id"] = username
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict[str, Any]:
    """Verify signature and expiry; raises jose.JWTError on any problem."""

    return jwt.decode(
        token,
        settings.jwt_secret_key,
        algorithms=[settings.jwt_algorithm],
        options={"require_sub": True, "require_exp": True},
    )
