"""Person CRUD API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response

from sunup.models.api import PersonCreate, PersonResponse, PersonUpdate
from sunup.models.database import Person
from sunup.services.persons import PersonService
from sunup.web.dependencies import get_person_service

router = APIRouter(prefix="/api/persons", tags=["persons"])


@router.post("", status_code=201, response_model=PersonResponse)
async def create_person(
    body: PersonCreate,
    service: PersonService = Depends(get_person_service),
) -> Person:
    return await service.create_person(**body.model_dump())


@router.get("", response_model=list[PersonResponse])
async def list_persons(
    pipeline_stage: str | None = None,
    limit: int | None = Query(default=None, ge=1),
    service: PersonService = Depends(get_person_service),
) -> list[Person]:
    return await service.list_persons_by_tenant(pipeline_stage=pipeline_stage, limit=limit)


@router.get("/search", response_model=list[PersonResponse])
async def search_persons(
    q: str = Query(min_length=1),
    limit: int | None = Query(default=None, ge=1),
    service: PersonService = Depends(get_person_service),
) -> list[Person]:
    return await service.search_persons(q, limit=limit)


@router.get("/by-organization/{organization_id}", response_model=list[PersonResponse])
async def persons_by_organization(
    organization_id: str,
    service: PersonService = Depends(get_person_service),
) -> list[Person]:
    return await service.get_persons_by_organization(organization_id)


@router.get("/{person_id}", response_model=PersonResponse)
async def get_person(
    person_id: str,
    service: PersonService = Depends(get_person_service),
) -> Person:
    person = await service.get_person_by_id(person_id)
    if person is None:
        raise HTTPException(status_code=404, detail="Person not found")
    return person


@router.patch("/{person_id}", response_model=PersonResponse)
async def update_person(
    person_id: str,
    body: PersonUpdate,
    service: PersonService = Depends(get_person_service),
) -> Person:
    return await service.update_person(person_id, **body.model_dump(exclude_unset=True))


@router.delete("/{person_id}")
async def delete_person(
    person_id: str,
    service: PersonService = Depends(get_person_service),
) -> Response:
    await service.delete_person(person_id)
    return Response(status_code=204)
