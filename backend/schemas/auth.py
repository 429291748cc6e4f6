from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    # Students sign in with their register number.
    username: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=1, max_length=256)


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: Literal["ADMIN", "STUDENT"]
    expires_in: int


class MeResponse(BaseModel):
    id: uuid.UUID
    username: str
    role: Literal["ADMIN", "STUDENT"]
    student_id: str | None = None
    is_active: bool
    created_at: datetime
