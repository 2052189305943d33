"""Health check endpoint logic."""

from __future__ import annotations

import structlog
from sqlalchemy import text

from sunup.config.settings import get_settings
from sunup.storage.database import get_engine

logger = structlog.get_logger(__name__)


async def check_health() -> dict[str, object]:
    """Report service status with a database connectivity check."""
    result: dict[str, object] = {
        "status": "healthy",
        "version": "0.1.0",
        "auth_mode": get_settings().auth_mode,
        "database": "connected",
    }
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning("health_check_db_failed", error=str(exc))
        result["database"] = "unavailable"
        result["status"] = "degraded"
    return result
