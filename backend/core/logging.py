from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path

from core.config import BACKEND_DIR


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
LOG_DIR = Path(BACKEND_DIR) / "logs"

# Loggers whose records also go to allocation.log in production.
ALLOCATION_LOGGERS = (
    "services.preference_store",
    "services.cycle_coordinator",
    "services.allocation_runner",
    "allocation.algorithm",
)


def _rotating_file(name: str, level: int, formatter: logging.Formatter) -> logging.Handler:
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        LOG_DIR / name,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(*, environment: str, level: str | int | None = None) -> None:
    """Configure application logging once per process.

    - Development: console only, DEBUG unless `level` says otherwise.
    - Production: console + logs/app.log, plus logs/allocation.log for the
      CBCS submission/finalize loggers. INFO unless `level` says otherwise.
    """

    root = logging.getLogger()
    if root.handlers:
        return

    production = (environment or "").strip().lower() == "production"
    if level is None:
        level = logging.INFO if production else logging.DEBUG
    elif isinstance(level, str):
        level = logging.getLevelName(level.upper())

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z")

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(formatter)
    handlers: list[logging.Handler] = [console]
    if production:
        handlers.append(_rotating_file("app.log", level, formatter))

    logging.basicConfig(level=level, handlers=handlers)

    if production:
        audit = _rotating_file("allocation.log", logging.INFO, formatter)
        for name in ALLOCATION_LOGGERS:
            logging.getLogger(name).addHandler(audit)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).setLevel(level)
    # Statement logging at DEBUG would print every row of a finalize run.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
