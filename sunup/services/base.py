"""Shared plumbing for request-scoped services."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from sunup.auth.context import GlobalScope
from sunup.auth.guard import AuthorizationGuard
from sunup.exceptions import NotFound, ValidationError
from sunup.tenancy import T, verify_tenant_ownership

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

    from sunup.audit.logger import AuditLogger
    from sunup.auth.context import CallerContext, CallerIdentity

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class Service:
    """A unit of work for one inbound request.

    The session is the transaction: mutations commit at the end, and any
    error raised before that leaves nothing written.
    """

    def __init__(
        self,
        session: AsyncSession,
        identity: CallerIdentity | None,
        *,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._session = session
        self._identity = identity
        self._guard = AuthorizationGuard(session, audit_logger=audit_logger)

    async def _ensure_admin_writable(
        self, record: T | None, caller: CallerContext, resource: str, operation: str
    ) -> T:
        """Like ensure_writable, but System Administrators may cross tenants (audited)."""
        if record is None:
            raise NotFound(resource)
        if record.tenant_id != caller.tenant_id:
            scope = await self._guard.access_scope(caller, operation=operation, cross_tenant=True)
            if not isinstance(scope, GlobalScope):
                verify_tenant_ownership(record, caller.tenant_id, resource)
        return record


def require_text(value: str | None, label: str) -> str:
    """Return the stripped value or raise if it is empty."""
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationError(f"{label} is required")
    return cleaned


def normalize_email(value: str | None) -> str:
    email = require_text(value, "Email").lower()
    if not _EMAIL_RE.match(email):
        raise ValidationError("Invalid email format")
    return email


def clamp_limit(limit: int | None, default: int, maximum: int) -> int:
    if limit is None or limit <= 0:
        return default
    return min(limit, maximum)
