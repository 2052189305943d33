"""Tenant isolation checks shared by every service.

Reads of a record owned by another tenant report "not found" so existence
does not leak; writes fail with CrossTenantAccess and mutate nothing.
"""

from __future__ import annotations

from typing import Any, Protocol, TypeVar

import structlog
from sqlmodel import col

from sunup.auth.context import AccessScope, CallerContext, GlobalScope, TenantScoped
from sunup.exceptions import CrossTenantAccess, NotFound

logger = structlog.get_logger(__name__)


class TenantOwned(Protocol):
    id: Any
    tenant_id: str


T = TypeVar("T", bound=TenantOwned)
S = TypeVar("S")


def ensure_readable(record: T | None, caller: CallerContext, resource: str) -> T:
    """Return ``record`` if it exists in the caller's tenant, else raise NotFound."""
    if record is None:
        raise NotFound(resource)
    if record.tenant_id != caller.tenant_id:
        logger.info(
            "cross_tenant_read_hidden",
            resource=resource,
            record_id=str(record.id),
            tenant_id=caller.tenant_id,
        )
        raise NotFound(resource)
    return record


def ensure_writable(record: T | None, caller: CallerContext, resource: str) -> T:
    """Return ``record`` if the caller may modify it.

    Missing records raise NotFound; records of another tenant raise
    CrossTenantAccess.
    """
    if record is None:
        raise NotFound(resource)
    verify_tenant_ownership(record, caller.tenant_id, resource)
    return record


def verify_tenant_ownership(record: TenantOwned, tenant_id: str, resource: str) -> None:
    if record.tenant_id != tenant_id:
        logger.warning(
            "cross_tenant_access_denied",
            resource=resource,
            record_id=str(record.id),
            tenant_id=tenant_id,
        )
        raise CrossTenantAccess(resource)


def apply_scope(statement: S, model: type[TenantOwned], scope: AccessScope) -> S:
    """Filter a select statement to the scope's tenant.

    GlobalScope is the single place tenant filtering is skipped.
    """
    match scope:
        case TenantScoped(tenant_id=tenant_id):
            return statement.where(col(model.tenant_id) == tenant_id)  # type: ignore[attr-defined]
        case GlobalScope():
            return statement
    msg = f"Unknown access scope: {scope!r}"
    raise TypeError(msg)
