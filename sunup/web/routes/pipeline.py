"""Pipeline stage API routes: transitions, stage configuration, reporting."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from sunup.models.api import (
    ChangedByResponse,
    HistoryResponse,
    MessageResponse,
    MoveRequest,
    StageCreate,
    StageReorder,
    StageResponse,
    StatisticsResponse,
    TransitionResponse,
)
from sunup.models.database import PipelineStage
from sunup.services.pipeline import PipelineService
from sunup.web.dependencies import get_pipeline_service

router = APIRouter(prefix="/api/pipeline", tags=["pipeline"])


@router.post("/persons/{person_id}/move", response_model=TransitionResponse)
async def move_person(
    person_id: str,
    body: MoveRequest,
    service: PipelineService = Depends(get_pipeline_service),
) -> TransitionResponse:
    transition = await service.move_person_to_stage(person_id, body.to_stage, body.reason)
    return TransitionResponse(
        person_id=transition.person.id,
        from_stage=transition.from_stage,
        to_stage=transition.to_stage,
    )


@router.get("/persons/{person_id}/history", response_model=list[HistoryResponse])
async def person_history(
    person_id: str,
    limit: int | None = Query(default=None, ge=1),
    service: PipelineService = Depends(get_pipeline_service),
) -> list[HistoryResponse]:
    entries = await service.get_person_pipeline_history(person_id, limit=limit)
    return [
        HistoryResponse(
            id=e.entry.id,
            person_id=e.entry.person_id,
            from_stage=e.entry.from_stage,
            to_stage=e.entry.to_stage,
            change_reason=e.entry.change_reason,
            timestamp=e.entry.timestamp,
            changed_by_user_id=e.entry.changed_by_user_id,
            changed_by=ChangedByResponse.model_validate(e.changed_by) if e.changed_by else None,
        )
        for e in entries
    ]


@router.get("/stages", response_model=list[StageResponse])
async def list_stages(
    include_inactive: bool = False,
    service: PipelineService = Depends(get_pipeline_service),
) -> list[PipelineStage]:
    return await service.get_pipeline_stage_order(include_inactive=include_inactive)


@router.post("/stages", status_code=201, response_model=StageResponse)
async def add_stage(
    body: StageCreate,
    service: PipelineService = Depends(get_pipeline_service),
) -> PipelineStage:
    return await service.add_pipeline_stage(
        body.name, body.order, body.category, body.description
    )


@router.post("/stages/initialize", status_code=201, response_model=list[StageResponse])
async def initialize_stages(
    service: PipelineService = Depends(get_pipeline_service),
) -> list[PipelineStage]:
    return await service.initialize_default_pipeline_stages()


@router.put("/stages/order", response_model=MessageResponse)
async def reorder_stages(
    body: StageReorder,
    service: PipelineService = Depends(get_pipeline_service),
) -> MessageResponse:
    count = await service.reorder_pipeline_stages(body.stage_orders)
    return MessageResponse(message=f"Reordered {count} stages")


@router.get("/stages/by-name/{stage_name}", response_model=StageResponse)
async def stage_by_name(
    stage_name: str,
    service: PipelineService = Depends(get_pipeline_service),
) -> PipelineStage:
    stage = await service.get_pipeline_stage_by_name(stage_name)
    if stage is None:
        raise HTTPException(status_code=404, detail="Pipeline stage not found")
    return stage


@router.post("/stages/{stage_id}/deactivate", response_model=StageResponse)
async def deactivate_stage(
    stage_id: str,
    service: PipelineService = Depends(get_pipeline_service),
) -> PipelineStage:
    return await service.deactivate_pipeline_stage(stage_id)


@router.get("/statistics", response_model=StatisticsResponse)
async def statistics(
    service: PipelineService = Depends(get_pipeline_service),
) -> StatisticsResponse:
    return StatisticsResponse.model_validate(await service.get_pipeline_statistics())
