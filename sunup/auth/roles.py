"""Static permission model: roles, resources, actions and role grants.

Permissions are the literal union of the grants of every role a caller
holds. There is no role hierarchy. Unknown role names grant nothing.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import StrEnum

import structlog

from sunup.exceptions import ConfigError

logger = structlog.get_logger(__name__)


class Role(StrEnum):
    SETTER = "Setter"
    SETTER_TRAINEE = "Setter Trainee"
    SETTER_MANAGER = "Setter Manager"
    CONSULTANT = "Consultant"
    SALES_MANAGER = "Sales Manager"
    LEAD_MANAGER = "Lead Manager"
    PROJECT_MANAGER = "Project Manager"
    INSTALLER = "Installer"
    SUPPORT_STAFF = "Support Staff"
    RECRUITER = "Recruiter"
    TRAINER = "Trainer"
    SYSTEM_ADMINISTRATOR = "System Administrator"
    EXECUTIVE = "Executive"
    FINANCE = "Finance"
    OPERATIONS = "Operations"


class Resource(StrEnum):
    PERSON = "person"
    ORGANIZATION = "organization"
    CAMPAIGN = "campaign"
    CALL = "call"
    APPOINTMENT = "appointment"
    MEETING = "meeting"
    COMMISSION = "commission"
    COMMISSION_RULE = "commissionRule"
    USER = "user"
    TENANT = "tenant"
    ANALYTICS = "analytics"
    LEADERBOARD = "leaderboard"
    SETTINGS = "settings"
    AUDIT = "audit"


R = Resource

RESOURCE_ACTIONS: dict[Resource, frozenset[str]] = {
    R.PERSON: frozenset({"create", "read", "update", "delete", "assign"}),
    R.ORGANIZATION: frozenset({"create", "read", "update", "delete"}),
    R.CAMPAIGN: frozenset({"create", "read", "update", "delete", "activate"}),
    R.CALL: frozenset({"initiate", "answer", "transfer", "record"}),
    R.APPOINTMENT: frozenset({"create", "read", "update", "cancel", "reassign"}),
    R.MEETING: frozenset({"create", "join", "end", "record", "read"}),
    R.COMMISSION: frozenset({"create", "read", "approve", "dispute", "pay"}),
    R.COMMISSION_RULE: frozenset({"create", "read", "update", "delete"}),
    R.USER: frozenset({"create", "read", "update", "delete", "ban", "impersonate"}),
    R.TENANT: frozenset({"create", "read", "update", "delete"}),
    R.ANALYTICS: frozenset({"view", "export"}),
    R.LEADERBOARD: frozenset({"view", "manage"}),
    R.SETTINGS: frozenset({"read", "update"}),
    R.AUDIT: frozenset({"read"}),
}

Grants = Mapping[Resource, frozenset[str]]


def _grants(**by_resource: Iterable[str]) -> dict[Resource, frozenset[str]]:
    return {Resource(name): frozenset(actions) for name, actions in by_resource.items()}


# Keyword names are Resource values; commissionRule has no snake_case alias.
# Setter Trainee, Lead Manager and Support Staff hold no permissions yet.
ROLE_GRANTS: dict[Role, Grants] = {
    Role.SETTER: _grants(
        person=["read", "update", "assign"],
        call=["initiate", "answer"],
        appointment=["create"],
        commission=["read"],
        leaderboard=["view"],
    ),
    Role.SETTER_TRAINEE: {},
    Role.SETTER_MANAGER: _grants(
        person=["read", "assign"],
        campaign=["create", "read", "update", "delete", "activate"],
        call=["transfer"],
        user=["create", "read"],
        commission=["read", "approve"],
        analytics=["view", "export"],
        leaderboard=["view", "manage"],
    ),
    Role.CONSULTANT: _grants(
        person=["read", "update"],
        appointment=["read", "update"],
        meeting=["create", "join", "end"],
        organization=["read", "update"],
        commission=["read"],
        leaderboard=["view"],
    ),
    Role.SALES_MANAGER: _grants(
        person=["create", "read", "update", "delete"],
        organization=["create", "read", "update", "delete"],
        appointment=["create", "read", "update", "cancel", "reassign"],
        meeting=["read"],
        commission=["read", "approve"],
        analytics=["view", "export"],
        leaderboard=["view", "manage"],
        user=["read"],
    ),
    Role.LEAD_MANAGER: {},
    Role.PROJECT_MANAGER: _grants(
        person=["read", "update"],
        organization=["read"],
        appointment=["read"],
        analytics=["view"],
    ),
    Role.INSTALLER: _grants(
        person=["read"],
        organization=["read"],
        appointment=["read"],
    ),
    Role.SUPPORT_STAFF: {},
    Role.RECRUITER: _grants(
        user=["create", "read", "update"],
        analytics=["view"],
    ),
    Role.TRAINER: _grants(
        user=["read"],
        leaderboard=["view"],
        analytics=["view"],
    ),
    Role.SYSTEM_ADMINISTRATOR: {resource: actions for resource, actions in RESOURCE_ACTIONS.items()},
    Role.EXECUTIVE: _grants(
        person=["read"],
        organization=["read"],
        analytics=["view", "export"],
        leaderboard=["view"],
        audit=["read"],
    ),
    Role.FINANCE: _grants(
        person=["read"],
        commission=["read", "approve", "dispute", "pay"],
        commissionRule=["read"],
        analytics=["view", "export"],
        audit=["read"],
    ),
    Role.OPERATIONS: _grants(
        person=["read", "update"],
        organization=["read", "update"],
        appointment=["read", "update"],
        analytics=["view", "export"],
        settings=["read"],
    ),
}

MANAGEMENT_ROLES = frozenset(
    {
        Role.SALES_MANAGER,
        Role.SETTER_MANAGER,
        Role.PROJECT_MANAGER,
        Role.SYSTEM_ADMINISTRATOR,
        Role.EXECUTIVE,
        Role.OPERATIONS,
    }
)


def validate_grants(grants: Mapping[Role, Grants] = ROLE_GRANTS) -> None:
    """Check the grant table covers every role and only declared actions."""
    missing = [role.value for role in Role if role not in grants]
    if missing:
        msg = f"Roles without a grant entry: {', '.join(missing)}"
        raise ConfigError(msg)
    for role, by_resource in grants.items():
        for resource, actions in by_resource.items():
            undeclared = actions - RESOURCE_ACTIONS[resource]
            if undeclared:
                msg = f"{role.value} grants undeclared {resource.value} actions: {sorted(undeclared)}"
                raise ConfigError(msg)


validate_grants()


def parse_role(name: str) -> Role | None:
    """Return the Role for a persisted name, or None if it is not recognized."""
    try:
        return Role(name)
    except ValueError:
        logger.warning("unknown_role_ignored", role=name)
        return None


def parse_roles(names: Iterable[str]) -> frozenset[Role]:
    return frozenset(role for role in map(parse_role, names) if role is not None)


def has_permission(roles: Iterable[Role | str], resource: Resource | str, action: str) -> bool:
    """True iff any of ``roles`` grants ``action`` on ``resource``."""
    try:
        resource = Resource(resource)
    except ValueError:
        return False
    for name in roles:
        role = name if isinstance(name, Role) else parse_role(name)
        if role is None:
            continue
        if action in ROLE_GRANTS[role].get(resource, frozenset()):
            return True
    return False


def has_any_role(roles: Iterable[Role | str], allowed: Iterable[Role | str]) -> bool:
    return not set(map(str, roles)).isdisjoint(map(str, allowed))


def has_all_roles(roles: Iterable[Role | str], required: Iterable[Role | str]) -> bool:
    return set(map(str, required)) <= set(map(str, roles))


def can_manage_users(roles: Iterable[Role]) -> bool:
    roles = frozenset(roles)
    return any(has_permission(roles, R.USER, action) for action in ("create", "update", "delete"))


def can_view_analytics(roles: Iterable[Role]) -> bool:
    return has_permission(roles, R.ANALYTICS, "view")


def can_manage_campaigns(roles: Iterable[Role]) -> bool:
    roles = frozenset(roles)
    return any(
        has_permission(roles, R.CAMPAIGN, action) for action in ("create", "update", "delete")
    )


def can_approve_commissions(roles: Iterable[Role]) -> bool:
    return has_permission(roles, R.COMMISSION, "approve")


def can_manage_tenants(roles: Iterable[Role]) -> bool:
    roles = frozenset(roles)
    return any(has_permission(roles, R.TENANT, action) for action in ("create", "update", "delete"))


def is_system_admin(roles: Iterable[Role]) -> bool:
    return Role.SYSTEM_ADMINISTRATOR in frozenset(roles)


def is_management(roles: Iterable[Role]) -> bool:
    return has_any_role(roles, MANAGEMENT_ROLES)
