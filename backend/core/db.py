from __future__ import annotations

# Short import path for the engine/session helpers in core/database.py.
from core.database import (  # noqa: F401
    DatabaseUnavailableError,
    ENGINE,
    SessionLocal,
    get_db,
    is_transient_db_connectivity_error,
    session_scope,
    supports_row_locks,
)

__all__ = [
    "DatabaseUnavailableError",
    "ENGINE",
    "SessionLocal",
    "get_db",
    "is_transient_db_connectivity_error",
    "session_scope",
    "supports_row_locks",
]
