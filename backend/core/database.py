from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from core.config import settings


logger = logging.getLogger(__name__)


class DatabaseUnavailableError(RuntimeError):
    """The database could not be reached after the connect retries."""


# Backoff between connection attempts made by get_db().
_RETRY_DELAYS_SECONDS = (0.2, 0.5, 1.0)

# Lower-cased fragments of driver messages that mean "could not reach the server".
# Constraint violations and SQL errors never match these.
_TRANSIENT_MARKERS = (
    "getaddrinfo failed",
    "could not translate host name",
    "name or service not known",
    "connection refused",
    "actively refused",
    "connection reset",
    "server closed the connection unexpectedly",
    "timeout",
    "timed out",
)


def is_transient_db_connectivity_error(exc: BaseException) -> bool:
    messages: list[str] = []
    seen: set[int] = set()
    cur: BaseException | None = exc
    while cur is not None and id(cur) not in seen:
        seen.add(id(cur))
        messages.append(str(cur).lower())
        cur = cur.__cause__ or cur.__context__

    joined = "\n".join(messages)
    return any(marker in joined for marker in _TRANSIENT_MARKERS)


def normalize_database_url(raw: str) -> str:
    """Point every PostgreSQL URL at the psycopg2 driver."""

    url = raw.strip()
    for prefix in ("postgresql+psycopg://", "postgresql://", "postgres://"):
        if url.startswith(prefix):
            return "postgresql+psycopg2://" + url[len(prefix):]
    return url


def get_engine() -> Engine:
    url = normalize_database_url(settings.database_url)

    if make_url(url).get_backend_name() == "sqlite":
        # Local dev + tests. Finalize runs on a worker thread, and concurrent
        # writers wait on the file lock instead of failing immediately.
        return create_engine(url, connect_args={"check_same_thread": False, "timeout": 30})

    # connect_timeout bounds how long a request waits during an outage.
    return create_engine(url, pool_pre_ping=True, connect_args={"connect_timeout": 3})


ENGINE = get_engine()
SessionLocal = sessionmaker(bind=ENGINE, autoflush=False, autocommit=False)


def supports_row_locks(db: Session) -> bool:
    """SELECT ... FOR UPDATE is meaningful on PostgreSQL; SQLite serializes writers itself."""

    return db.get_bind().dialect.name != "sqlite"


def _open_checked_session() -> Session:
    last_exc: OperationalError | None = None
    for delay in (*_RETRY_DELAYS_SECONDS, None):
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
            return db
        except OperationalError as exc:
            db.close()
            last_exc = exc
            if delay is None or not is_transient_db_connectivity_error(exc):
                break
            logger.warning("Database ping failed; retrying in %.1fs", delay)
            time.sleep(delay)
    raise DatabaseUnavailableError("Database temporarily unavailable") from last_exc


def get_db() -> Iterator[Session]:
    # Only the ping is retried. Errors raised by the endpoint itself propagate
    # unchanged so they keep their own status codes.
    db = _open_checked_session()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Session for scripts and startup hooks: commit on success, roll back on error."""

    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
