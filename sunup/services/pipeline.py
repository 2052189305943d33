"""Pipeline stage machine.

Stages are an ordered, tenant-configurable list. A person holds at most one
stage. Forward moves may advance one active stage at a time; backward and
same-stage moves are always allowed. Every successful move appends exactly
one history row and emits a best-effort stage-changed event.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import func
from sqlmodel import col, select

from sunup.auth.roles import Resource, Role
from sunup.events.emitter import PipelineEventPayload, emit_pipeline_event
from sunup.exceptions import (
    InvalidStage,
    StageInUse,
    StageSkipped,
    ValidationError,
)
from sunup.models.database import (
    Person,
    PipelineEvent,
    PipelineHistory,
    PipelineStage,
    User,
    _utc_now,
)
from sunup.services.base import Service, require_text
from sunup.tenancy import ensure_readable, ensure_writable

if TYPE_CHECKING:
    from collections.abc import Mapping

    from sqlmodel.ext.asyncio.session import AsyncSession

    from sunup.audit.logger import AuditLogger
    from sunup.auth.context import CallerContext, CallerIdentity
    from sunup.events.handlers import EventHandlerRegistry

logger = structlog.get_logger(__name__)

STAGE_CATEGORIES = frozenset({"sales", "installation", "completed"})

DEFAULT_STAGES: list[tuple[str, str, str]] = [
    ("Lead", "sales", "Initial contact, not yet qualified"),
    ("Set", "sales", "Appointment set with consultant"),
    ("Met", "sales", "Consultation completed"),
    ("QMet", "sales", "Qualified meeting (customer interested)"),
    ("Sale", "sales", "Contract signed, sale closed"),
    ("Installation", "installation", "Installation in progress or completed"),
]


@dataclass(frozen=True, slots=True)
class StageTransition:
    person: Person
    from_stage: str | None
    to_stage: str
    history: PipelineHistory
    event: PipelineEvent | None


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    entry: PipelineHistory
    changed_by: User | None


@dataclass(frozen=True, slots=True)
class StageCount:
    stage_name: str
    stage_order: int
    stage_category: str
    count: int


@dataclass(frozen=True, slots=True)
class PipelineStatistics:
    stages: list[StageCount]
    no_stage_assigned: int
    total_persons: int


def find_skipped_stages(
    ordered_names: list[str], current: str | None, target: str
) -> list[str]:
    """Return the active stages a move from ``current`` to ``target`` would bypass.

    Raises InvalidStage when ``target`` is not in ``ordered_names``. An
    unassigned or unknown current stage skips nothing.
    """
    if target not in ordered_names:
        raise InvalidStage(target)
    target_index = ordered_names.index(target)
    current_index = ordered_names.index(current) if current in ordered_names else -1
    if current_index >= 0 and target_index - current_index > 1:
        return ordered_names[current_index + 1 : target_index]
    return []


class PipelineService(Service):
    def __init__(
        self,
        session: AsyncSession,
        identity: CallerIdentity | None,
        *,
        registry: EventHandlerRegistry | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        super().__init__(session, identity, audit_logger=audit_logger)
        self._registry = registry

    async def _stages(self, tenant_id: str, *, include_inactive: bool = False) -> list[PipelineStage]:
        stmt = select(PipelineStage).where(col(PipelineStage.tenant_id) == tenant_id)
        if not include_inactive:
            stmt = stmt.where(col(PipelineStage.is_active).is_(True))
        result = await self._session.execute(stmt.order_by(col(PipelineStage.order)))
        return list(result.scalars().all())

    async def _count_in_stage(self, tenant_id: str, stage_name: str | None) -> int:
        stage_col = col(Person.current_pipeline_stage)
        stmt = (
            select(func.count())
            .select_from(Person)
            .where(
                col(Person.tenant_id) == tenant_id,
                stage_col.is_(None) if stage_name is None else stage_col == stage_name,
            )
        )
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

    # ----------------------------------------------------------------- reads

    async def get_pipeline_stage_order(self, include_inactive: bool = False) -> list[PipelineStage]:
        caller = await self._guard.resolve_caller(self._identity)
        return await self._stages(caller.tenant_id, include_inactive=include_inactive)

    async def get_pipeline_stage_by_name(self, stage_name: str) -> PipelineStage | None:
        caller = await self._guard.resolve_caller(self._identity)
        stmt = select(PipelineStage).where(
            col(PipelineStage.tenant_id) == caller.tenant_id,
            col(PipelineStage.name) == stage_name,
        )
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def get_person_pipeline_history(
        self, person_id: str, limit: int | None = None
    ) -> list[HistoryEntry]:
        """Stage changes for a person, newest first."""
        caller = await self._guard.require_permission(self._identity, Resource.PERSON, "read")
        ensure_readable(await self._session.get(Person, person_id), caller, "person")

        stmt = (
            select(PipelineHistory)
            .where(
                col(PipelineHistory.person_id) == person_id,
                col(PipelineHistory.tenant_id) == caller.tenant_id,
            )
            .order_by(col(PipelineHistory.timestamp).desc(), col(PipelineHistory.id).desc())
        )
        if limit:
            stmt = stmt.limit(limit)
        rows = (await self._session.execute(stmt)).scalars().all()

        users: dict[str, User | None] = {}
        entries = []
        for row in rows:
            if row.changed_by_user_id not in users:
                users[row.changed_by_user_id] = await self._session.get(User, row.changed_by_user_id)
            entries.append(HistoryEntry(entry=row, changed_by=users[row.changed_by_user_id]))
        return entries

    async def get_pipeline_statistics(self) -> PipelineStatistics:
        caller = await self._guard.require_permission(self._identity, Resource.PERSON, "read")
        counts = [
            StageCount(
                stage_name=stage.name,
                stage_order=stage.order,
                stage_category=stage.category,
                count=await self._count_in_stage(caller.tenant_id, stage.name),
            )
            for stage in await self._stages(caller.tenant_id)
        ]
        no_stage = await self._count_in_stage(caller.tenant_id, None)
        return PipelineStatistics(
            stages=counts,
            no_stage_assigned=no_stage,
            total_persons=sum(c.count for c in counts) + no_stage,
        )

    # ------------------------------------------------------------ transitions

    async def move_person_to_stage(
        self, person_id: str, to_stage: str, reason: str | None = None
    ) -> StageTransition:
        caller = await self._guard.require_permission(self._identity, Resource.PERSON, "update")
        person = ensure_writable(await self._session.get(Person, person_id), caller, "person")

        stages = await self._stages(caller.tenant_id)
        from_stage = person.current_pipeline_stage
        skipped = find_skipped_stages([s.name for s in stages], from_stage, to_stage)
        if skipped:
            logger.info(
                "stage_skip_rejected",
                person_id=person_id,
                from_stage=from_stage,
                to_stage=to_stage,
                skipped=skipped,
            )
            raise StageSkipped(to_stage, skipped)

        person.current_pipeline_stage = to_stage
        person.updated_at = _utc_now()
        self._session.add(person)

        history = PipelineHistory(
            person_id=person.id,
            from_stage=from_stage,
            to_stage=to_stage,
            changed_by_user_id=caller.user_id,
            change_reason=reason,
            tenant_id=caller.tenant_id,
        )
        self._session.add(history)

        event = await self._emit(
            caller,
            PipelineEventPayload(
                person_id=person.id, from_stage=from_stage, to_stage=to_stage, reason=reason
            ),
        )
        await self._session.commit()
        logger.info(
            "stage_transition",
            person_id=person.id,
            from_stage=from_stage,
            to_stage=to_stage,
            user_id=caller.user_id,
            tenant_id=caller.tenant_id,
        )

        if event is not None and self._registry is not None:
            await self._registry.process_event(event)

        return StageTransition(
            person=person, from_stage=from_stage, to_stage=to_stage, history=history, event=event
        )

    async def _emit(self, caller: CallerContext, payload: PipelineEventPayload) -> PipelineEvent | None:
        """Emit inside a savepoint; a failure rolls back only the event row."""
        await self._session.flush()
        try:
            async with self._session.begin_nested():
                return await emit_pipeline_event(self._session, caller, payload)
        except Exception:
            logger.exception(
                "pipeline_event_emit_failed",
                person_id=payload.person_id,
                to_stage=payload.to_stage,
            )
            return None

    # ---------------------------------------------------------- administration

    async def initialize_default_pipeline_stages(self) -> list[PipelineStage]:
        caller = await self._guard.require_role(self._identity, [Role.SYSTEM_ADMINISTRATOR])
        if await self._stages(caller.tenant_id, include_inactive=True):
            raise ValidationError("Pipeline stages already initialized for this tenant")

        stages = [
            PipelineStage(
                name=name,
                order=order,
                category=category,
                description=description,
                tenant_id=caller.tenant_id,
            )
            for order, (name, category, description) in enumerate(DEFAULT_STAGES, start=1)
        ]
        self._session.add_all(stages)
        await self._session.commit()
        logger.info("default_stages_initialized", tenant_id=caller.tenant_id, count=len(stages))
        return stages

    async def add_pipeline_stage(
        self, name: str, order: int, category: str, description: str | None = None
    ) -> PipelineStage:
        caller = await self._guard.require_role(self._identity, [Role.SYSTEM_ADMINISTRATOR])
        name = require_text(name, "Stage name")
        if category not in STAGE_CATEGORIES:
            raise ValidationError(f"Invalid stage category: {category}")
        if order < 1:
            raise ValidationError("Stage order must be a positive integer")

        existing = await self._stages(caller.tenant_id, include_inactive=True)
        if any(s.name == name for s in existing):
            raise ValidationError(f'Pipeline stage "{name}" already exists')
        if any(s.order == order for s in existing):
            raise ValidationError(
                f"A stage with order {order} already exists. Please choose a different order."
            )

        stage = PipelineStage(
            name=name,
            order=order,
            category=category,
            description=description,
            tenant_id=caller.tenant_id,
        )
        self._session.add(stage)
        await self._session.commit()
        logger.info("stage_added", tenant_id=caller.tenant_id, stage=name, order=order)
        return stage

    async def reorder_pipeline_stages(self, stage_orders: Mapping[str, int]) -> int:
        """Apply ``{stage_id: new_order}``; resulting orders must stay unique."""
        caller = await self._guard.require_role(self._identity, [Role.SYSTEM_ADMINISTRATOR])

        if any(order < 1 for order in stage_orders.values()):
            raise ValidationError("Stage order must be a positive integer")
        stages = {s.id: s for s in await self._stages(caller.tenant_id, include_inactive=True)}
        for stage_id in stage_orders:
            if stage_id not in stages:
                ensure_writable(
                    await self._session.get(PipelineStage, stage_id), caller, "pipeline stage"
                )

        final = {stage_id: stage_orders.get(stage_id, s.order) for stage_id, s in stages.items()}
        if len(set(final.values())) != len(final):
            raise ValidationError("Stage orders must be unique within the tenant")

        for stage_id, new_order in stage_orders.items():
            stages[stage_id].order = new_order
            self._session.add(stages[stage_id])
        await self._session.commit()
        logger.info("stages_reordered", tenant_id=caller.tenant_id, count=len(stage_orders))
        return len(stage_orders)

    async def deactivate_pipeline_stage(self, stage_id: str) -> PipelineStage:
        caller = await self._guard.require_role(self._identity, [Role.SYSTEM_ADMINISTRATOR])
        stage = ensure_writable(
            await self._session.get(PipelineStage, stage_id), caller, "pipeline stage"
        )
        if await self._count_in_stage(caller.tenant_id, stage.name):
            raise StageInUse(stage.name)

        stage.is_active = False
        self._session.add(stage)
        await self._session.commit()
        logger.info("stage_deactivated", tenant_id=caller.tenant_id, stage=stage.name)
        return stage

