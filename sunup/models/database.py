"""SQLModel database table models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import Column, Index, UniqueConstraint
from sqlalchemy.types import JSON
from sqlmodel import Field, SQLModel


def _utc_now() -> datetime:
    """Return current UTC time as naive datetime for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


def _new_uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Tenancy and principals
# ---------------------------------------------------------------------------


class Tenant(SQLModel, table=True):
    __tablename__ = "tenants"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    name: str
    domain: str | None = Field(default=None, index=True)
    is_active: bool = Field(default=True)
    # pipeline stage config, commission rules, ...
    settings: dict | None = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=_utc_now)


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    auth_subject: str = Field(unique=True, index=True)
    email: str = Field(index=True)
    first_name: str
    last_name: str
    is_active: bool = Field(default=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class UserRole(SQLModel, table=True):
    __tablename__ = "user_roles"
    __table_args__ = (
        Index("ix_user_roles_user_role", "user_id", "role"),
        Index("ix_user_roles_tenant_role", "tenant_id", "role"),
    )

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    role: str
    is_active: bool = Field(default=True)
    is_primary: bool = Field(default=False)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    created_at: datetime = Field(default_factory=_utc_now)


# ---------------------------------------------------------------------------
# CRM records
# ---------------------------------------------------------------------------


class Organization(SQLModel, table=True):
    """A customer's company or household (not a tenant)."""

    __tablename__ = "organizations"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    name: str
    type: str  # Residential | Commercial | Nonprofit | Government | Educational
    tax_id: str | None = None
    billing_street: str
    billing_city: str
    billing_state: str
    billing_zip_code: str
    billing_country: str
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    created_at: datetime = Field(default_factory=_utc_now)


class Person(SQLModel, table=True):
    __tablename__ = "people"
    __table_args__ = (
        UniqueConstraint("tenant_id", "email", name="uq_people_tenant_email"),
        Index("ix_people_tenant_stage", "tenant_id", "current_pipeline_stage"),
    )

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    first_name: str
    last_name: str
    email: str
    phone: str | None = None
    organization_id: str | None = Field(default=None, foreign_key="organizations.id", index=True)
    current_pipeline_stage: str | None = None
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class PipelineStage(SQLModel, table=True):
    __tablename__ = "pipeline_stages"
    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_pipeline_stages_tenant_name"),
        # order uniqueness is checked by the service so reorders can swap values
        Index("ix_pipeline_stages_tenant_order", "tenant_id", "order"),
    )

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    name: str
    order: int
    category: str  # sales | installation | completed
    description: str | None = None
    is_active: bool = Field(default=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    created_at: datetime = Field(default_factory=_utc_now)


class PipelineHistory(SQLModel, table=True):
    """Append-only log of stage transitions."""

    __tablename__ = "pipeline_history"

    id: int | None = Field(default=None, primary_key=True)
    person_id: str = Field(index=True)
    from_stage: str | None = None
    to_stage: str
    changed_by_user_id: str = Field(foreign_key="users.id")
    change_reason: str | None = None
    timestamp: datetime = Field(default_factory=_utc_now, index=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)


class PipelineEvent(SQLModel, table=True):
    __tablename__ = "pipeline_events"

    id: int | None = Field(default=None, primary_key=True)
    event_type: str = Field(index=True)
    person_id: str = Field(index=True)
    from_stage: str | None = None
    to_stage: str
    user_id: str = Field(foreign_key="users.id")
    metadata_json: str | None = None
    timestamp: datetime = Field(default_factory=_utc_now)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    tenant_id: str = Field(index=True)
    user_id: str = Field(index=True)
    action: str = Field(index=True)
    resource_type: str = ""
    resource_id: str = ""
    details_json: str = "{}"
    request_id: str = ""
    created_at: datetime = Field(default_factory=_utc_now)
