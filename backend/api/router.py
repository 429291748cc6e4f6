from __future__ import annotations

from fastapi import APIRouter, Depends

from api.deps import get_current_user
from api.routes import auth, cycles


api_router = APIRouter()
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])

# Every non-auth route needs a logged-in user; role checks live on the endpoints.
_protected = [Depends(get_current_user)]
api_router.include_router(cycles.router, prefix="/cycles", tags=["cbcs"], dependencies=_protected)
