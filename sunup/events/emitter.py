"""Pipeline event emitter.

Inserts one immutable ``pipeline_events`` row inside the caller's
transaction. Callers wrap emission so a failure never fails the triggering
mutation.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from sunup.exceptions import EventEmissionFailure
from sunup.models.database import PipelineEvent

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

    from sunup.auth.context import CallerContext

logger = structlog.get_logger(__name__)

STAGE_CHANGED = "pipeline.stage_changed"


@dataclass(frozen=True, slots=True)
class PipelineEventPayload:
    person_id: str
    from_stage: str | None
    to_stage: str
    reason: str | None = None


async def emit_pipeline_event(
    session: AsyncSession, caller: CallerContext, payload: PipelineEventPayload
) -> PipelineEvent:
    """Record a stage-changed event stamped with the caller's tenant and user."""
    if not payload.person_id:
        raise EventEmissionFailure("emit_pipeline_event: person_id is required")
    if not payload.to_stage:
        raise EventEmissionFailure("emit_pipeline_event: to_stage is required")

    event = PipelineEvent(
        event_type=STAGE_CHANGED,
        person_id=payload.person_id,
        from_stage=payload.from_stage,
        to_stage=payload.to_stage,
        user_id=caller.user_id,
        metadata_json=json.dumps({"reason": payload.reason}) if payload.reason else None,
        tenant_id=caller.tenant_id,
    )
    session.add(event)
    await session.flush()
    logger.debug("pipeline_event_emitted", event_id=event.id, person_id=payload.person_id)
    return event
