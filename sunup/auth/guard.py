"""Authorization guard: the mandatory entry gate for tenant data.

Resolves the caller identity to a provisioned user, loads active roles,
checks roles or permissions and computes the access scope. Every failure
blocks the operation; there is no partial authorization.
"""

from __future__ import annotations

from collections.abc import Iterable

import structlog
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from sunup.audit.logger import AuditLogger
from sunup.auth.context import (
    AccessScope,
    Anonymous,
    Authenticated,
    CallerContext,
    CallerIdentity,
    GlobalScope,
    MaybeCaller,
    TenantScoped,
)
from sunup.auth.roles import Resource, Role, has_permission, parse_role, parse_roles
from sunup.exceptions import Forbidden, PrincipalNotFound, Unauthenticated
from sunup.models.database import Tenant, User, UserRole

logger = structlog.get_logger(__name__)


class AuthorizationGuard:
    """Produces authenticated, tenant-scoped, permission-checked caller contexts."""

    def __init__(self, session: AsyncSession, audit_logger: AuditLogger | None = None) -> None:
        self._session = session
        self._audit = audit_logger

    async def resolve_caller(self, identity: CallerIdentity | None) -> CallerContext:
        if identity is None or not identity.subject:
            raise Unauthenticated()

        stmt = select(User).where(col(User.auth_subject) == identity.subject)
        result = await self._session.execute(stmt)
        user = result.scalars().first()
        # Provisioning is an explicit step; unknown subjects are never auto-registered
        if user is None or not user.is_active:
            logger.info("principal_not_found", subject=identity.subject)
            raise PrincipalNotFound("User not found or inactive")

        tenant = await self._session.get(Tenant, user.tenant_id)
        if tenant is None or not tenant.is_active:
            logger.warning("tenant_inactive", tenant_id=user.tenant_id, user_id=user.id)
            raise Forbidden("Forbidden: tenant is inactive")

        return CallerContext(user=user, tenant_id=user.tenant_id)

    async def resolve_caller_with_roles(self, identity: CallerIdentity | None) -> CallerContext:
        caller = await self.resolve_caller(identity)
        stmt = select(UserRole).where(
            col(UserRole.user_id) == caller.user_id,
            col(UserRole.tenant_id) == caller.tenant_id,
            col(UserRole.is_active).is_(True),
        )
        result = await self._session.execute(stmt)
        rows = result.scalars().all()

        primary = next((parse_role(r.role) for r in rows if r.is_primary), None)
        return CallerContext(
            user=caller.user,
            tenant_id=caller.tenant_id,
            roles=parse_roles(r.role for r in rows),
            primary_role=primary,
        )

    async def require_role(
        self, identity: CallerIdentity | None, allowed_roles: Iterable[Role | str]
    ) -> CallerContext:
        caller = await self.resolve_caller_with_roles(identity)
        allowed = parse_roles(str(role) for role in allowed_roles)
        if caller.roles.isdisjoint(allowed):
            logger.info(
                "role_check_denied",
                user_id=caller.user_id,
                allowed=sorted(allowed),
            )
            raise Forbidden(f"Forbidden: requires one of the roles: {', '.join(sorted(allowed))}")
        return caller

    async def require_permission(
        self, identity: CallerIdentity | None, resource: Resource | str, action: str
    ) -> CallerContext:
        caller = await self.resolve_caller_with_roles(identity)
        if not has_permission(caller.roles, resource, action):
            logger.info(
                "permission_denied",
                user_id=caller.user_id,
                resource=str(resource),
                action=action,
            )
            raise Forbidden(f"Forbidden: You don't have permission to {action} {resource}")
        return caller

    async def require_primary_role(
        self, identity: CallerIdentity | None, role: Role | str
    ) -> CallerContext:
        caller = await self.resolve_caller_with_roles(identity)
        wanted = parse_role(str(role))
        if wanted is None or wanted not in caller.roles or caller.primary_role != wanted:
            raise Forbidden(f"Forbidden: requires primary role {role}")
        return caller

    async def try_resolve_caller(self, identity: CallerIdentity | None) -> MaybeCaller:
        """Resolve the caller for optional-auth paths without raising on anonymity."""
        try:
            return Authenticated(await self.resolve_caller(identity))
        except Unauthenticated:
            return Anonymous(reason="unauthenticated")
        except PrincipalNotFound:
            return Anonymous(reason="principal_not_found")

    async def access_scope(
        self, caller: CallerContext, *, operation: str, cross_tenant: bool = False
    ) -> AccessScope:
        """Compute the query scope for ``operation``.

        Only an operation that asks for ``cross_tenant`` and a caller holding
        System Administrator get GlobalScope; each grant is audited.
        """
        if not (cross_tenant and caller.is_system_admin):
            return TenantScoped(caller.tenant_id)

        logger.info("global_scope_granted", user_id=caller.user_id, operation=operation)
        audit = self._audit or AuditLogger(self._session.bind)  # type: ignore[arg-type]
        await audit.log(
            tenant_id=caller.tenant_id,
            user_id=caller.user_id,
            action="global_scope_access",
            resource_type=operation,
        )
        return GlobalScope()
