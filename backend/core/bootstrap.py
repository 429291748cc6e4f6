from __future__ import annotations

import logging

from sqlalchemy import func, select

import models  # noqa: F401  (registers every table on Base.metadata)
from core.config import settings
from core.db import ENGINE, session_scope
from core.security import hash_password
from models.base import Base
from models.user import User


logger = logging.getLogger(__name__)


def seed_admin_if_configured() -> bool:
    """Create the SEED_ADMIN_USERNAME account once. Returns True when a row was added."""

    username = settings.seed_admin_username
    password = settings.seed_admin_password
    if not username or not password:
        return False

    with session_scope() as db:
        taken = db.execute(
            select(User.id).where(func.lower(User.username) == func.lower(username))
        ).first()
        if taken is not None:
            return False
        db.add(User(username=username, password_hash=hash_password(password), role="ADMIN"))

    logger.warning("Seeded admin %r from environment; change its password after first login.", username)
    return True


def bootstrap_schema() -> None:
    """Create missing tables, then seed the configured admin. Safe on every startup."""

    Base.metadata.create_all(bind=ENGINE)
    logger.info("Schema ready (%d tables)", len(Base.metadata.tables))
    seed_admin_if_configured()
