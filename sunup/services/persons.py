"""Person management: CRUD with per-tenant validation."""

from __future__ import annotations

import structlog
from sqlmodel import col, or_, select

from sunup.auth.roles import Resource
from sunup.config.settings import get_settings
from sunup.exceptions import InvalidStage, NotFound, ValidationError
from sunup.models.database import Organization, Person, PipelineHistory, PipelineStage, _utc_now
from sunup.services.base import Service, clamp_limit, normalize_email, require_text
from sunup.tenancy import ensure_readable, ensure_writable

logger = structlog.get_logger(__name__)

INITIAL_ASSIGNMENT_REASON = "Initial person creation"


class PersonService(Service):
    async def _email_taken(self, tenant_id: str, email: str, exclude_id: str | None = None) -> bool:
        stmt = select(Person).where(col(Person.tenant_id) == tenant_id, col(Person.email) == email)
        result = await self._session.execute(stmt)
        existing = result.scalars().first()
        return existing is not None and existing.id != exclude_id

    async def _check_organization(self, tenant_id: str, organization_id: str) -> None:
        org = await self._session.get(Organization, organization_id)
        if org is None or org.tenant_id != tenant_id:
            raise ValidationError("Invalid organization")

    async def create_person(
        self,
        first_name: str,
        last_name: str,
        email: str,
        phone: str | None = None,
        current_pipeline_stage: str | None = None,
        organization_id: str | None = None,
    ) -> Person:
        caller = await self._guard.require_permission(self._identity, Resource.PERSON, "create")

        first_name = require_text(first_name, "First name")
        last_name = require_text(last_name, "Last name")
        email = normalize_email(email)
        if await self._email_taken(caller.tenant_id, email):
            raise ValidationError(f'A person with email "{email}" already exists')
        if organization_id:
            await self._check_organization(caller.tenant_id, organization_id)

        if current_pipeline_stage:
            # initial assignment may target any active stage
            stmt = select(PipelineStage).where(
                col(PipelineStage.tenant_id) == caller.tenant_id,
                col(PipelineStage.name) == current_pipeline_stage,
                col(PipelineStage.is_active).is_(True),
            )
            if (await self._session.execute(stmt)).scalars().first() is None:
                raise InvalidStage(current_pipeline_stage)

        person = Person(
            first_name=first_name,
            last_name=last_name,
            email=email,
            phone=(phone or "").strip() or None,
            organization_id=organization_id or None,
            current_pipeline_stage=current_pipeline_stage or None,
            tenant_id=caller.tenant_id,
        )
        self._session.add(person)
        await self._session.flush()

        if person.current_pipeline_stage:
            self._session.add(
                PipelineHistory(
                    person_id=person.id,
                    from_stage=None,
                    to_stage=person.current_pipeline_stage,
                    changed_by_user_id=caller.user_id,
                    change_reason=INITIAL_ASSIGNMENT_REASON,
                    tenant_id=caller.tenant_id,
                )
            )
        await self._session.commit()
        logger.info("person_created", person_id=person.id, tenant_id=caller.tenant_id)
        return person

    async def update_person(
        self,
        person_id: str,
        *,
        first_name: str | None = None,
        last_name: str | None = None,
        email: str | None = None,
        phone: str | None = None,
        organization_id: str | None = None,
    ) -> Person:
        """Patch the given fields. Stage changes go through move_person_to_stage."""
        caller = await self._guard.require_permission(self._identity, Resource.PERSON, "update")
        person = ensure_writable(await self._session.get(Person, person_id), caller, "person")

        if first_name is not None:
            person.first_name = require_text(first_name, "First name")
        if last_name is not None:
            person.last_name = require_text(last_name, "Last name")
        if email is not None:
            new_email = normalize_email(email)
            if new_email != person.email and await self._email_taken(
                caller.tenant_id, new_email, exclude_id=person.id
            ):
                raise ValidationError(f'A person with email "{new_email}" already exists')
            person.email = new_email
        if phone is not None:
            person.phone = phone.strip() or None
        if organization_id is not None:
            await self._check_organization(caller.tenant_id, organization_id)
            person.organization_id = organization_id

        person.updated_at = _utc_now()
        self._session.add(person)
        await self._session.commit()
        logger.info("person_updated", person_id=person.id)
        return person

    async def delete_person(self, person_id: str) -> str:
        caller = await self._guard.require_permission(self._identity, Resource.PERSON, "delete")
        person = ensure_writable(await self._session.get(Person, person_id), caller, "person")
        await self._session.delete(person)
        await self._session.commit()
        logger.info("person_deleted", person_id=person_id, tenant_id=caller.tenant_id)
        return person_id

    async def get_person_by_id(self, person_id: str) -> Person | None:
        """Return the person, or None when missing or owned by another tenant."""
        caller = await self._guard.require_permission(self._identity, Resource.PERSON, "read")
        try:
            return ensure_readable(await self._session.get(Person, person_id), caller, "person")
        except NotFound:
            return None

    async def list_persons_by_tenant(
        self, pipeline_stage: str | None = None, limit: int | None = None
    ) -> list[Person]:
        caller = await self._guard.require_permission(self._identity, Resource.PERSON, "read")
        settings = get_settings()
        limit = clamp_limit(limit, settings.person_list_default_limit, settings.person_list_max_limit)

        stmt = select(Person).where(col(Person.tenant_id) == caller.tenant_id)
        if pipeline_stage:
            stmt = stmt.where(col(Person.current_pipeline_stage) == pipeline_stage)
        result = await self._session.execute(stmt.order_by(col(Person.created_at)).limit(limit))
        return list(result.scalars().all())

    async def search_persons(self, search_term: str, limit: int | None = None) -> list[Person]:
        """Case-insensitive substring match on first name, last name or email."""
        caller = await self._guard.require_permission(self._identity, Resource.PERSON, "read")
        settings = get_settings()
        limit = clamp_limit(
            limit, settings.person_search_default_limit, settings.person_search_max_limit
        )

        pattern = f"%{search_term.strip().lower()}%"
        stmt = (
            select(Person)
            .where(
                col(Person.tenant_id) == caller.tenant_id,
                or_(
                    col(Person.first_name).ilike(pattern),
                    col(Person.last_name).ilike(pattern),
                    col(Person.email).ilike(pattern),
                ),
            )
            .order_by(col(Person.last_name), col(Person.first_name))
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def get_persons_by_organization(self, organization_id: str) -> list[Person]:
        caller = await self._guard.require_permission(self._identity, Resource.PERSON, "read")
        ensure_readable(
            await self._session.get(Organization, organization_id), caller, "organization"
        )
        stmt = select(Person).where(
            col(Person.tenant_id) == caller.tenant_id,
            col(Person.organization_id) == organization_id,
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())
