"""Organization API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from sunup.models.api import OrganizationCreate, OrganizationResponse
from sunup.models.database import Organization
from sunup.services.organizations import BillingAddress, OrganizationService
from sunup.web.dependencies import get_organization_service

router = APIRouter(prefix="/api/organizations", tags=["organizations"])


@router.post("", status_code=201, response_model=OrganizationResponse)
async def create_organization(
    body: OrganizationCreate,
    service: OrganizationService = Depends(get_organization_service),
) -> Organization:
    return await service.create_organization(
        name=body.name,
        type=body.type,
        billing_address=BillingAddress(**body.billing_address.model_dump()),
        tax_id=body.tax_id,
    )


@router.get("", response_model=list[OrganizationResponse])
async def list_organizations(
    limit: int | None = Query(default=None, ge=1),
    service: OrganizationService = Depends(get_organization_service),
) -> list[Organization]:
    return await service.list_organizations(limit=limit)


@router.get("/{organization_id}", response_model=OrganizationResponse)
async def get_organization(
    organization_id: str,
    service: OrganizationService = Depends(get_organization_service),
) -> Organization:
    org = await service.get_organization(organization_id)
    if org is None:
        raise HTTPException(status_code=404, detail="Organization not found")
    return org
