from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from sqlalchemy import text
from sqlalchemy.exc import OperationalError as SAOperationalError

from api.router import api_router
from core.bootstrap import bootstrap_schema
from core.config import settings
from core.db import DatabaseUnavailableError, ENGINE, is_transient_db_connectivity_error
from core.logging import setup_logging
from services.errors import CbcsError


logger = logging.getLogger(__name__)


def _db_unavailable() -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content={"code": "DATABASE_UNAVAILABLE", "message": "Database temporarily unavailable. Please retry."},
    )


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(CbcsError)
    def _cbcs_error(request: Request, exc: CbcsError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s %s", request.method, request.url.path, exc.code, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(DatabaseUnavailableError)
    def _database_unavailable(request: Request, exc: DatabaseUnavailableError):
        logger.warning("Database unavailable for %s %s", request.method, request.url.path, exc_info=exc)
        return _db_unavailable()

    @app.exception_handler(SAOperationalError)
    def _operational_error(request: Request, exc: SAOperationalError):
        if is_transient_db_connectivity_error(exc):
            logger.warning("Transient database error for %s %s", request.method, request.url.path, exc_info=exc)
            return _db_unavailable()
        logger.error("Database operation failed for %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"code": "DATABASE_ERROR", "message": "Database operation failed."},
        )


@asynccontextmanager
async def _lifespan(_app: FastAPI):
    if settings.auto_create_schema:
        bootstrap_schema()
    yield


def create_app() -> FastAPI:
    setup_logging(environment=settings.environment, level=settings.log_level)
    is_production = settings.environment.lower() == "production"
    app = FastAPI(
        title="CBCS Elective Allocation API",
        version="0.1.0",
        lifespan=_lifespan,
        docs_url=None if is_production else "/docs",
        redoc_url=None if is_production else "/redoc",
        openapi_url=None if is_production else "/openapi.json",
    )
    _register_error_handlers(app)

    allow_origins = [settings.frontend_origin]
    allow_origin_regex = None
    if not is_production:
        # Any localhost port, so the student portal dev server works out of the box.
        allow_origin_regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_origin_regex=allow_origin_regex,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health() -> dict:
        # Never fails; reports whether the database answers.
        try:
            with ENGINE.connect() as conn:
                conn.execute(text("SELECT 1"))
            database = "ok"
        except SAOperationalError:
            database = "down"
        return {"app": "ok", "database": database, "overfill_policy": settings.overfill_policy}

    app.include_router(api_router, prefix="/api")
    return app


app = create_app()
