"""User provisioning and role assignment API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from sunup.models.api import (
    ActiveStatusUpdate,
    CreatedUserResponse,
    CurrentUserResponse,
    MessageResponse,
    PrimaryRoleSet,
    RoleAssign,
    UserCreate,
    UserResponse,
    UserRoleResponse,
    UserRoleUpdate,
)
from sunup.models.database import User, UserRole
from sunup.services.users import UserService
from sunup.web.dependencies import get_user_service

router = APIRouter(prefix="/api/users", tags=["users"])
roles_router = APIRouter(prefix="/api/roles", tags=["roles"])


@router.post("", status_code=201, response_model=CreatedUserResponse)
async def create_user(
    body: UserCreate,
    service: UserService = Depends(get_user_service),
) -> CreatedUserResponse:
    created = await service.create_user(**body.model_dump())
    return CreatedUserResponse(
        user=UserResponse.model_validate(created.user),
        tenant_name=created.tenant.name,
        roles=[r.value for r in created.roles],
    )


@router.get("", response_model=list[UserResponse])
async def list_users(
    limit: int | None = Query(default=None, ge=1),
    service: UserService = Depends(get_user_service),
) -> list[User]:
    return await service.list_users(limit=limit)


@router.get("/me", response_model=CurrentUserResponse)
async def current_user(service: UserService = Depends(get_user_service)) -> CurrentUserResponse:
    me = await service.get_current_user()
    return CurrentUserResponse(
        **UserResponse.model_validate(me.user).model_dump(),
        roles=[r.value for r in me.roles],
        primary_role=me.primary_role.value if me.primary_role else None,
    )


@router.put("/{user_id}/active", response_model=UserResponse)
async def set_active(
    user_id: str,
    body: ActiveStatusUpdate,
    service: UserService = Depends(get_user_service),
) -> User:
    return await service.set_user_active_status(user_id, body.is_active)


@router.put("/{user_id}/roles", response_model=MessageResponse)
async def update_role(
    user_id: str,
    body: UserRoleUpdate,
    service: UserService = Depends(get_user_service),
) -> MessageResponse:
    message = await service.update_user_role(user_id, body.role, body.action)
    return MessageResponse(message=message)


@router.get("/{user_id}/roles", response_model=list[UserRoleResponse])
async def user_roles(
    user_id: str,
    service: UserService = Depends(get_user_service),
) -> list[UserRole]:
    return await service.list_user_roles(user_id)


@roles_router.get("/me", response_model=list[UserRoleResponse])
async def my_roles(service: UserService = Depends(get_user_service)) -> list[UserRole]:
    return await service.get_my_roles()


@roles_router.post("", status_code=201, response_model=UserRoleResponse)
async def assign_role(
    body: RoleAssign,
    service: UserService = Depends(get_user_service),
) -> UserRole:
    return await service.assign_role(body.user_id, body.role, body.is_primary)


@roles_router.put("/primary", response_model=UserRoleResponse)
async def set_primary(
    body: PrimaryRoleSet,
    service: UserService = Depends(get_user_service),
) -> UserRole:
    return await service.set_primary_role(body.user_id, body.user_role_id)


@roles_router.post("/{user_role_id}/deactivate", response_model=UserRoleResponse)
async def deactivate_role(
    user_role_id: str,
    service: UserService = Depends(get_user_service),
) -> UserRole:
    return await service.deactivate_role(user_role_id)
