from __future__ import annotations

import uuid
from typing import Callable

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.orm import Session

from core.db import get_db
from core.security import decode_token
from models.user import User


bearer_scheme = HTTPBearer(auto_error=False)


def _token_from_request(request: Request, creds: HTTPAuthorizationCredentials | None) -> str:
    # Bearer header wins; the HttpOnly cookie covers browser sessions.
    token = (creds.credentials if creds is not None else None) or request.cookies.get("access_token")
    if not token:
        raise HTTPException(status_code=401, detail="NOT_AUTHENTICATED")
    return token


def _user_id_from_token(token: str) -> uuid.UUID:
    try:
        claims = decode_token(token)
        return uuid.UUID(str(claims["sub"]))
    except (JWTError, KeyError, ValueError):
        raise HTTPException(status_code=401, detail="INVALID_TOKEN")


def get_current_user(
    request: Request,
    creds: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    cached = getattr(request.state, "current_user", None)
    if isinstance(cached, User):
        return cached

    user = db.get(User, _user_id_from_token(_token_from_request(request, creds)))
    if user is None:
        raise HTTPException(status_code=401, detail="INVALID_TOKEN")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="USER_DISABLED")

    request.state.current_user = user
    return user


def is_admin(user: User) -> bool:
    return (user.role or "").upper() == "ADMIN"


def _require_role(role: str, detail: str) -> Callable[..., User]:
    def _dependency(current_user: User = Depends(get_current_user)) -> User:
        if (current_user.role or "").upper() != role:
            raise HTTPException(status_code=403, detail=detail)
        return current_user

    return _dependency


require_admin = _require_role("ADMIN", "NOT_AUTHORIZED")
# Students act under their register number (the username) in every CBCS table.
require_student = _require_role("STUDENT", "STUDENTS_ONLY")
