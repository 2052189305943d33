"""Audit logger: insert-only audit trail.

Uses its own DB session so audit entries survive transaction rollbacks.
Details JSON is sanitized (sensitive fields stripped, 10KB max).
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import structlog
from sqlmodel.ext.asyncio.session import AsyncSession

from sunup.models.database import AuditLog

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)

_SENSITIVE_FIELDS = frozenset(
    {
        "password",
        "secret",
        "token",
        "api_key",
        "authorization",
        "cookie",
        "session",
        "ssn",
    }
)

_MAX_DETAILS_BYTES = 10_240  # 10KB


def _sanitize_details(details: dict[str, Any]) -> str:
    sanitized = {k: v for k, v in details.items() if k.lower() not in _SENSITIVE_FIELDS}
    encoded = json.dumps(sanitized, default=str)
    if len(encoded) > _MAX_DETAILS_BYTES:
        encoded = encoded[:_MAX_DETAILS_BYTES]
    return encoded


class AuditLogger:
    """Insert-only audit logger with its own DB session."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def log(
        self,
        *,
        tenant_id: str,
        user_id: str,
        action: str,
        resource_type: str = "",
        resource_id: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        """Write an audit log entry. Failures are logged, never raised."""
        request_id = structlog.contextvars.get_contextvars().get("request_id", "")
        entry = AuditLog(
            tenant_id=tenant_id,
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details_json=_sanitize_details(details or {}),
            request_id=str(request_id),
        )
        try:
            async with AsyncSession(self._engine) as session:
                session.add(entry)
                await session.commit()
        except Exception:
            # Audit must never break the request
            logger.exception("audit_log_failed", action=action, tenant_id=tenant_id)
