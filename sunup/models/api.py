"""API request/response schemas for FastAPI endpoints."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class _FromORM(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# --- persons ---


class PersonCreate(BaseModel):
    first_name: str
    last_name: str
    email: str
    phone: str | None = None
    current_pipeline_stage: str | None = None
    organization_id: str | None = None


class PersonUpdate(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    organization_id: str | None = None


class PersonResponse(_FromORM):
    id: str
    first_name: str
    last_name: str
    email: str
    phone: str | None
    organization_id: str | None
    current_pipeline_stage: str | None
    created_at: datetime


# --- organizations ---


class BillingAddressBody(BaseModel):
    street: str
    city: str
    state: str
    zip_code: str = Field(alias="zipCode")
    country: str

    model_config = ConfigDict(populate_by_name=True)


class OrganizationCreate(BaseModel):
    name: str
    type: Literal["Residential", "Commercial", "Nonprofit", "Government", "Educational"]
    billing_address: BillingAddressBody
    tax_id: str | None = None


class OrganizationResponse(_FromORM):
    id: str
    name: str
    type: str
    tax_id: str | None
    billing_street: str
    billing_city: str
    billing_state: str
    billing_zip_code: str
    billing_country: str


# --- pipeline ---


class StageCreate(BaseModel):
    name: str
    order: int
    category: Literal["sales", "installation", "completed"]
    description: str | None = None


class StageReorder(BaseModel):
    stage_orders: dict[str, int] = Field(min_length=1)


class StageResponse(_FromORM):
    id: str
    name: str
    order: int
    category: str
    description: str | None
    is_active: bool


class MoveRequest(BaseModel):
    to_stage: str = Field(min_length=1)
    reason: str | None = None


class TransitionResponse(BaseModel):
    success: bool = True
    person_id: str
    from_stage: str | None
    to_stage: str


class ChangedByResponse(_FromORM):
    id: str
    first_name: str
    last_name: str
    email: str


class HistoryResponse(BaseModel):
    id: int
    person_id: str
    from_stage: str | None
    to_stage: str
    change_reason: str | None
    timestamp: datetime
    changed_by_user_id: str
    changed_by: ChangedByResponse | None


class StageCountResponse(_FromORM):
    stage_name: str
    stage_order: int
    stage_category: str
    count: int


class StatisticsResponse(_FromORM):
    stages: list[StageCountResponse]
    no_stage_assigned: int
    total_persons: int


# --- users & roles ---


class UserCreate(BaseModel):
    email: str
    first_name: str
    last_name: str
    tenant_id: str | None = None
    roles: list[str] | None = None
    auth_subject: str | None = None


class UserResponse(_FromORM):
    id: str
    email: str
    first_name: str
    last_name: str
    is_active: bool
    tenant_id: str


class CreatedUserResponse(BaseModel):
    user: UserResponse
    tenant_name: str
    roles: list[str]


class CurrentUserResponse(UserResponse):
    roles: list[str]
    primary_role: str | None


class ActiveStatusUpdate(BaseModel):
    is_active: bool


class UserRoleUpdate(BaseModel):
    role: str
    action: Literal["add", "remove"]


class RoleAssign(BaseModel):
    user_id: str
    role: str
    is_primary: bool = False


class PrimaryRoleSet(BaseModel):
    user_id: str
    user_role_id: str


class UserRoleResponse(_FromORM):
    id: str
    user_id: str
    role: str
    is_active: bool
    is_primary: bool


class MessageResponse(BaseModel):
    success: bool = True
    message: str
