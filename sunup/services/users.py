"""User provisioning and role assignment."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Literal

import structlog
from sqlmodel import col, select

from sunup.auth.roles import Resource, Role, parse_role
from sunup.config.settings import get_settings
from sunup.exceptions import Forbidden, NotFound, ValidationError
from sunup.models.database import Tenant, User, UserRole, _utc_now
from sunup.services.base import Service, clamp_limit, normalize_email, require_text
from sunup.tenancy import apply_scope, ensure_writable

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class CreatedUser:
    user: User
    tenant: Tenant
    roles: list[Role]


@dataclass(frozen=True, slots=True)
class CurrentUser:
    user: User
    roles: list[Role]
    primary_role: Role | None


def _valid_role(name: str | Role) -> Role:
    role = parse_role(str(name))
    if role is None:
        raise ValidationError(f"Invalid role: {name}")
    return role


class UserService(Service):
    async def _roles_of(self, user_id: str) -> list[UserRole]:
        stmt = select(UserRole).where(col(UserRole.user_id) == user_id)
        result = await self._session.execute(stmt.order_by(col(UserRole.created_at)))
        return list(result.scalars().all())

    async def _role_row(self, user_id: str, role: Role) -> UserRole | None:
        stmt = select(UserRole).where(
            col(UserRole.user_id) == user_id, col(UserRole.role) == role.value
        )
        return (await self._session.execute(stmt)).scalars().first()

    async def create_user(
        self,
        email: str,
        first_name: str,
        last_name: str,
        tenant_id: str | None = None,
        roles: list[str] | None = None,
        auth_subject: str | None = None,
    ) -> CreatedUser:
        """Provision a user into a tenant.

        Non-administrators can only provision into their own tenant and
        cannot choose roles. The first role is primary; roles default to
        Setter. Without an ``auth_subject`` the user stays pending until the
        identity provider subject is linked.
        """
        caller = await self._guard.require_permission(self._identity, Resource.USER, "create")

        target_tenant_id = tenant_id or caller.tenant_id
        if target_tenant_id != caller.tenant_id:
            if not caller.is_system_admin:
                raise Forbidden("Forbidden: Cannot create users for other tenants")
            await self._guard.access_scope(caller, operation="create_user", cross_tenant=True)

        tenant = await self._session.get(Tenant, target_tenant_id)
        if tenant is None:
            raise NotFound("tenant", f"Tenant not found: {target_tenant_id}")

        email = normalize_email(email)
        first_name = require_text(first_name, "First name")
        last_name = require_text(last_name, "Last name")
        if roles and not caller.is_system_admin:
            raise Forbidden("Forbidden: only System Administrators can assign roles")
        role_list = [_valid_role(r) for r in (roles or [Role.SETTER])]
        role_list = list(dict.fromkeys(role_list))

        existing = await self._session.execute(select(User).where(col(User.email) == email))
        if existing.scalars().first() is not None:
            raise ValidationError(f"User with email {email} already exists in the system")

        user = User(
            auth_subject=auth_subject or f"pending_{uuid.uuid4().hex}",
            email=email,
            first_name=first_name,
            last_name=last_name,
            tenant_id=tenant.id,
        )
        self._session.add(user)
        await self._session.flush()
        self._session.add_all(
            UserRole(
                user_id=user.id,
                role=role.value,
                is_primary=index == 0,
                tenant_id=tenant.id,
            )
            for index, role in enumerate(role_list)
        )
        await self._session.commit()
        logger.info(
            "user_created",
            user_id=user.id,
            tenant_id=tenant.id,
            roles=[r.value for r in role_list],
            created_by=caller.user_id,
        )
        return CreatedUser(user=user, tenant=tenant, roles=role_list)

    async def list_users(self, limit: int | None = None) -> list[User]:
        """Users of the caller's tenant; System Administrators see every tenant."""
        caller = await self._guard.require_permission(self._identity, Resource.USER, "read")
        scope = await self._guard.access_scope(caller, operation="list_users", cross_tenant=True)
        settings = get_settings()
        limit = clamp_limit(
            limit, settings.user_list_default_limit, settings.user_list_max_limit
        )
        stmt = apply_scope(select(User), User, scope).order_by(col(User.created_at)).limit(limit)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def set_user_active_status(self, user_id: str, is_active: bool) -> User:
        caller = await self._guard.require_permission(self._identity, Resource.USER, "update")
        user = await self._ensure_admin_writable(
            await self._session.get(User, user_id), caller, "user", "set_user_active_status"
        )
        user.is_active = is_active
        user.updated_at = _utc_now()
        self._session.add(user)
        await self._session.commit()
        logger.info("user_active_status_set", user_id=user.id, is_active=is_active)
        return user

    async def update_user_role(
        self, user_id: str, role: str, action: Literal["add", "remove"]
    ) -> str:
        caller = await self._guard.require_role(self._identity, [Role.SYSTEM_ADMINISTRATOR])
        user = await self._ensure_admin_writable(
            await self._session.get(User, user_id), caller, "user", "update_user_role"
        )
        parsed = _valid_role(role)
        existing = await self._role_row(user.id, parsed)

        if action == "add":
            if existing is not None:
                raise ValidationError(f"User already has role: {parsed}")
            self._session.add(UserRole(user_id=user.id, role=parsed.value, tenant_id=user.tenant_id))
            message = f'Role "{parsed}" added to user {user.email}'
        elif action == "remove":
            if existing is None:
                raise ValidationError(f"User doesn't have role: {parsed}")
            await self._session.delete(existing)
            message = f'Role "{parsed}" removed from user {user.email}'
        else:
            raise ValidationError(f"Invalid action: {action}")

        await self._session.commit()
        logger.info("user_role_updated", user_id=user.id, role=parsed.value, action=action)
        return message

    async def assign_role(self, user_id: str, role: str, is_primary: bool = False) -> UserRole:
        caller = await self._guard.require_role(self._identity, [Role.SYSTEM_ADMINISTRATOR])
        user = ensure_writable(await self._session.get(User, user_id), caller, "user")
        parsed = _valid_role(role)
        if await self._role_row(user.id, parsed) is not None:
            raise ValidationError("Role already assigned to this user")

        if is_primary:
            for row in await self._roles_of(user.id):
                if row.is_primary:
                    row.is_primary = False
                    self._session.add(row)

        row = UserRole(
            user_id=user.id, role=parsed.value, is_primary=is_primary, tenant_id=user.tenant_id
        )
        self._session.add(row)
        await self._session.commit()
        logger.info("role_assigned", user_id=user.id, role=parsed.value, is_primary=is_primary)
        return row

    async def deactivate_role(self, user_role_id: str) -> UserRole:
        """Soft-delete a role assignment; the last active role cannot go."""
        caller = await self._guard.require_role(self._identity, [Role.SYSTEM_ADMINISTRATOR])
        target = ensure_writable(await self._session.get(UserRole, user_role_id), caller, "user role")

        others = [r for r in await self._roles_of(target.user_id) if r.is_active and r.id != target.id]
        if target.is_active and not others:
            raise ValidationError("Cannot deactivate last active role")

        if target.is_primary and others:
            others[0].is_primary = True
            self._session.add(others[0])

        target.is_active = False
        target.is_primary = False
        self._session.add(target)
        await self._session.commit()
        logger.info("role_deactivated", user_id=target.user_id, role=target.role)
        return target

    async def set_primary_role(self, user_id: str, user_role_id: str) -> UserRole:
        caller = await self._guard.require_role(self._identity, [Role.SYSTEM_ADMINISTRATOR])
        target = ensure_writable(await self._session.get(UserRole, user_role_id), caller, "user role")
        if target.user_id != user_id:
            raise ValidationError("Role does not belong to user")
        if not target.is_active:
            raise ValidationError("Role is not active")

        for row in await self._roles_of(user_id):
            if row.is_primary and row.id != target.id:
                row.is_primary = False
                self._session.add(row)
        target.is_primary = True
        self._session.add(target)
        await self._session.commit()
        logger.info("primary_role_set", user_id=user_id, role=target.role)
        return target

    async def list_user_roles(self, user_id: str) -> list[UserRole]:
        """All role rows (active and inactive); others' roles need System Administrator."""
        caller = await self._guard.resolve_caller_with_roles(self._identity)
        if user_id != caller.user_id and not caller.is_system_admin:
            raise Forbidden("Forbidden: cannot view roles of another user")
        stmt = select(UserRole).where(
            col(UserRole.user_id) == user_id, col(UserRole.tenant_id) == caller.tenant_id
        )
        result = await self._session.execute(stmt.order_by(col(UserRole.created_at)))
        return list(result.scalars().all())

    async def get_my_roles(self) -> list[UserRole]:
        caller = await self._guard.resolve_caller(self._identity)
        return [r for r in await self._roles_of(caller.user_id) if r.is_active]

    async def get_current_user(self) -> CurrentUser:
        caller = await self._guard.resolve_caller_with_roles(self._identity)
        return CurrentUser(
            user=caller.user, roles=sorted(caller.roles), primary_role=caller.primary_role
        )
