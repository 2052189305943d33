"""Customer organizations (households, companies) referenced by people."""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from sqlmodel import col, select

from sunup.auth.roles import Resource
from sunup.exceptions import NotFound, ValidationError
from sunup.models.database import Organization
from sunup.services.base import Service, clamp_limit, require_text
from sunup.tenancy import ensure_readable

logger = structlog.get_logger(__name__)

ORGANIZATION_TYPES = frozenset({"Residential", "Commercial", "Nonprofit", "Government", "Educational"})


@dataclass(frozen=True, slots=True)
class BillingAddress:
    street: str
    city: str
    state: str
    zip_code: str
    country: str


class OrganizationService(Service):
    async def create_organization(
        self,
        name: str,
        type: str,
        billing_address: BillingAddress,
        tax_id: str | None = None,
    ) -> Organization:
        caller = await self._guard.require_permission(
            self._identity, Resource.ORGANIZATION, "create"
        )
        name = require_text(name, "Organization name")
        if type not in ORGANIZATION_TYPES:
            raise ValidationError(f"Invalid organization type: {type}")
        parts = [
            (billing_address.street or "").strip(),
            (billing_address.city or "").strip(),
            (billing_address.state or "").strip(),
            (billing_address.zip_code or "").strip(),
            (billing_address.country or "").strip(),
        ]
        if not all(parts):
            raise ValidationError(
                "Billing address must include street, city, state, zipCode, and country"
            )
        street, city, state, zip_code, country = parts

        org = Organization(
            name=name,
            type=type,
            tax_id=(tax_id or "").strip() or None,
            billing_street=street,
            billing_city=city,
            billing_state=state,
            billing_zip_code=zip_code,
            billing_country=country,
            tenant_id=caller.tenant_id,
        )
        self._session.add(org)
        await self._session.commit()
        logger.info("organization_created", organization_id=org.id, tenant_id=caller.tenant_id)
        return org

    async def get_organization(self, organization_id: str) -> Organization | None:
        caller = await self._guard.require_permission(self._identity, Resource.ORGANIZATION, "read")
        try:
            return ensure_readable(
                await self._session.get(Organization, organization_id), caller, "organization"
            )
        except NotFound:
            return None

    async def list_organizations(self, limit: int | None = None) -> list[Organization]:
        caller = await self._guard.require_permission(self._identity, Resource.ORGANIZATION, "read")
        stmt = (
            select(Organization)
            .where(col(Organization.tenant_id) == caller.tenant_id)
            .order_by(col(Organization.name))
            .limit(clamp_limit(limit, 50, 100))
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())
