from __future__ import annotations

import logging
import time
from collections import defaultdict, deque

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from api.deps import get_current_user
from core.config import settings
from core.db import get_db
from core.security import create_access_token, token_ttl_seconds, verify_password
from models.user import User
from schemas.auth import LoginRequest, LoginResponse, MeResponse


router = APIRouter()

logger = logging.getLogger(__name__)


SESSION_COOKIE = "access_token"

# Sliding window keyed by ip + username. Per process: every worker keeps its own window.
_LOGIN_WINDOW_SECONDS = 60
_LOGIN_MAX_ATTEMPTS = 12
_attempts: dict[str, deque[float]] = defaultdict(deque)


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _throttle_login(request: Request, username: str) -> None:
    window = _attempts[f"{_client_ip(request)}:{username.lower()}"]
    now = time.monotonic()
    while window and now - window[0] >= _LOGIN_WINDOW_SECONDS:
        window.popleft()
    window.append(now)
    if len(window) > _LOGIN_MAX_ATTEMPTS:
        raise HTTPException(status_code=429, detail="RATE_LIMITED")


def _set_session_cookie(response: Response, token: str) -> None:
    if settings.cookie_samesite not in {"lax", "strict", "none"}:
        raise HTTPException(status_code=500, detail="INVALID_COOKIE_SAMESITE")
    response.set_cookie(
        key=SESSION_COOKIE,
        value=token,
        max_age=token_ttl_seconds(),
        path="/",
        httponly=True,
        secure=settings.environment.lower() == "production",
        samesite=settings.cookie_samesite,
    )


@router.post("/login", response_model=LoginResponse)
def login(
    payload: LoginRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
) -> LoginResponse:
    username = payload.username.strip()
    _throttle_login(request, username)

    user = db.execute(
        select(User).where(func.lower(User.username) == func.lower(username))
    ).scalar_one_or_none()

    # Unknown user and wrong password look the same to the caller.
    if user is None or not verify_password(payload.password, user.password_hash):
        logger.warning("Login rejected ip=%s username=%r known=%s", _client_ip(request), username, user is not None)
        raise HTTPException(status_code=401, detail="INVALID_CREDENTIALS")
    if not user.is_active:
        logger.warning("Login rejected (disabled) ip=%s username=%r", _client_ip(request), username)
        raise HTTPException(status_code=403, detail="USER_DISABLED")

    token = create_access_token(user_id=str(user.id), username=user.username, role=user.role)
    _set_session_cookie(response, token)

    logger.info("Login ip=%s username=%r role=%s", _client_ip(request), user.username, user.role)
    return LoginResponse(access_token=token, role=user.role, expires_in=token_ttl_seconds())


@router.post("/logout")
def logout(response: Response) -> dict:
    response.delete_cookie(key=SESSION_COOKIE, path="/")
    return {"ok": True}


@router.get("/me", response_model=MeResponse)
def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    return MeResponse(
        id=current_user.id,
        username=current_user.username,
        role=current_user.role,
        student_id=current_user.username if current_user.role == "STUDENT" else None,
        is_active=current_user.is_active,
        created_at=current_user.created_at,
    )
