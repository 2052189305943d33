"""Caller context and access scope carried through each request."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sunup.auth.roles import Role

if TYPE_CHECKING:
    from sunup.models.database import User


@dataclass(frozen=True, slots=True)
class CallerIdentity:
    """Already-verified identity handed over by the identity provider."""

    subject: str


@dataclass(frozen=True, slots=True)
class CallerContext:
    """Immutable resolved principal: user, tenant and active roles."""

    user: User
    tenant_id: str
    roles: frozenset[Role] = field(default_factory=frozenset)
    primary_role: Role | None = None

    @property
    def user_id(self) -> str:
        return self.user.id

    @property
    def is_system_admin(self) -> bool:
        return Role.SYSTEM_ADMINISTRATOR in self.roles


@dataclass(frozen=True, slots=True)
class TenantScoped:
    tenant_id: str


@dataclass(frozen=True, slots=True)
class GlobalScope:
    """Cross-tenant scope; only granted to System Administrators, and audited."""


AccessScope = TenantScoped | GlobalScope


@dataclass(frozen=True, slots=True)
class Authenticated:
    context: CallerContext


@dataclass(frozen=True, slots=True)
class Anonymous:
    reason: str  # "unauthenticated" | "principal_not_found"


MaybeCaller = Authenticated | Anonymous
