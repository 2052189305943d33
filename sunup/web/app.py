"""FastAPI application factory."""

from __future__ import annotations

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sunup.config.logging import setup_logging
from sunup.config.settings import get_settings
from sunup.events.handlers import build_default_registry
from sunup.exceptions import (
    Forbidden,
    NotFound,
    PrincipalNotFound,
    StageInUse,
    SunupError,
    Unauthenticated,
)
from sunup.storage.database import new_session
from sunup.web.health import check_health
from sunup.web.middleware import RequestIDMiddleware
from sunup.web.routes.organizations import router as organizations_router
from sunup.web.routes.persons import router as persons_router
from sunup.web.routes.pipeline import router as pipeline_router
from sunup.web.routes.users import roles_router
from sunup.web.routes.users import router as users_router

logger = structlog.get_logger(__name__)

# Checked in order; first match wins.
_STATUS_BY_ERROR: list[tuple[type[SunupError], int]] = [
    (Unauthenticated, 401),
    (PrincipalNotFound, 401),
    (Forbidden, 403),
    (NotFound, 404),
    (StageInUse, 409),
]


def status_for(exc: SunupError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 422


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    setup_logging(log_level=settings.log_level, json_output=not settings.debug)

    app = FastAPI(
        title="Sunup",
        description="Multi-tenant solar sales CRM",
        version="0.1.0",
    )
    app.state.event_registry = build_default_registry(new_session)

    @app.exception_handler(SunupError)
    async def sunup_error_handler(request: Request, exc: SunupError) -> JSONResponse:
        status = status_for(exc)
        if status >= 403:
            logger.info(
                "request_rejected",
                path=request.url.path,
                status=status,
                error=type(exc).__name__,
            )
        return JSONResponse(status_code=status, content={"detail": str(exc)})

    # last added runs first
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    )
    app.add_middleware(RequestIDMiddleware)

    @app.get("/api/health")
    async def health_check() -> dict[str, object]:
        return await check_health()

    for router in (persons_router, pipeline_router, users_router, roles_router, organizations_router):
        app.include_router(router)

    logger.info("app_created")
    return app
