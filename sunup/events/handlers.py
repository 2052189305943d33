"""Event handler registry.

The registry is built explicitly at application start and handed to the
services that process events. Handlers run concurrently, each with its own
session, and one handler's failure never affects the others.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

import structlog

from sunup.events.emitter import STAGE_CHANGED
from sunup.models.database import Person, User

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

    from sunup.models.database import PipelineEvent

logger = structlog.get_logger(__name__)

EventHandler = Callable[["AsyncSession", "PipelineEvent"], Awaitable[None]]
SessionFactory = Callable[[], "AsyncSession"]


class EventHandlerRegistry:
    """Ordered mapping of event type to independently registered handlers."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory
        self._handlers: dict[str, list[EventHandler]] = {}

    def register(self, event_type: str, handler: EventHandler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    def get_handlers(self, event_type: str) -> list[EventHandler]:
        return list(self._handlers.get(event_type, []))

    async def process_event(self, event: PipelineEvent) -> None:
        """Run every handler registered for the event's type."""
        handlers = self.get_handlers(event.event_type)
        if handlers:
            await asyncio.gather(*(self._run(handler, event) for handler in handlers))

    async def _run(self, handler: EventHandler, event: PipelineEvent) -> None:
        try:
            async with self._session_factory() as session:
                await handler(session, event)
        except Exception:
            logger.exception(
                "event_handler_failed",
                event_type=event.event_type,
                event_id=event.id,
                handler=getattr(handler, "__name__", repr(handler)),
            )


async def log_pipeline_change(session: AsyncSession, event: PipelineEvent) -> None:
    """Log a stage transition with the person's and actor's names."""
    person = await session.get(Person, event.person_id)
    if person is None:
        logger.warning("pipeline_event_person_missing", event_id=event.id)
        return

    user = await session.get(User, event.user_id)
    changed_by = f"{user.first_name} {user.last_name}" if user else "Unknown User"

    reason = None
    if event.metadata_json:
        try:
            reason = json.loads(event.metadata_json).get("reason")
        except (ValueError, AttributeError):
            logger.warning("pipeline_event_metadata_unreadable", event_id=event.id)

    logger.info(
        "pipeline_stage_changed",
        event_id=event.id,
        person=f"{person.first_name} {person.last_name}",
        person_id=event.person_id,
        transition=f"{event.from_stage or '(initial)'} -> {event.to_stage}",
        changed_by=changed_by,
        user_id=event.user_id,
        tenant_id=event.tenant_id,
        reason=reason or "(not specified)",
        timestamp=event.timestamp.isoformat(),
    )


def build_default_registry(session_factory: SessionFactory) -> EventHandlerRegistry:
    registry = EventHandlerRegistry(session_factory)
    registry.register(STAGE_CHANGED, log_pipeline_change)
    return registry
