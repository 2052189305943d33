"""FastAPI dependency injection: caller identity, session and services."""

from __future__ import annotations

from fastapi import Depends, Request
from sqlmodel.ext.asyncio.session import AsyncSession

from sunup.auth.clerk import identity_from_bearer
from sunup.auth.context import CallerIdentity
from sunup.config.settings import get_settings
from sunup.events.handlers import EventHandlerRegistry
from sunup.services.organizations import OrganizationService
from sunup.services.persons import PersonService
from sunup.services.pipeline import PipelineService
from sunup.services.users import UserService
from sunup.storage.database import get_session


async def get_caller_identity(request: Request) -> CallerIdentity | None:
    """Extract the caller identity; None means anonymous.

    In clerk mode the Bearer token is verified against Clerk's JWKS.
    In header mode an upstream gateway has already verified the caller
    and forwards the subject in a trusted header.
    """
    settings = get_settings()

    if settings.auth_mode == "header":
        subject = request.headers.get(settings.trusted_subject_header, "").strip()
        return CallerIdentity(subject=subject) if subject else None

    auth_header = request.headers.get("authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    return await identity_from_bearer(auth_header[7:])


def get_event_registry(request: Request) -> EventHandlerRegistry:
    return request.app.state.event_registry


def get_person_service(
    session: AsyncSession = Depends(get_session),
    identity: CallerIdentity | None = Depends(get_caller_identity),
) -> PersonService:
    return PersonService(session, identity)


def get_pipeline_service(
    session: AsyncSession = Depends(get_session),
    identity: CallerIdentity | None = Depends(get_caller_identity),
    registry: EventHandlerRegistry = Depends(get_event_registry),
) -> PipelineService:
    return PipelineService(session, identity, registry=registry)


def get_user_service(
    session: AsyncSession = Depends(get_session),
    identity: CallerIdentity | None = Depends(get_caller_identity),
) -> UserService:
    return UserService(session, identity)


def get_organization_service(
    session: AsyncSession = Depends(get_session),
    identity: CallerIdentity | None = Depends(get_caller_identity),
) -> OrganizationService:
    return OrganizationService(session, identity)
