"""
Event emitter: durable write, then live fan-out.
"""

from __future__ import annotations

import logging
from typing import Any

from .bus import EventBus
from .store import EventStore
from .types import EventType, PipelineEvent

logger = logging.getLogger(__name__)


class EventEmitter:
    """Records every pipeline transition.

    The event is appended to the store first; only a durably recorded
    event is pushed to live observers. A failing bus never fails the
    pipeline step that emitted the event.
    """

    def __init__(self, store: EventStore, bus: EventBus | None = None) -> None:
        self._store = store
        self._bus = bus

    @property
    def store(self) -> EventStore:
        return self._store

    @property
    def bus(self) -> EventBus | None:
        return self._bus

    async def emit(
        self,
        type: EventType,
        *,
        tenant_id: str,
        submission_id: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> PipelineEvent:
        event = PipelineEvent(
            type=type,
            tenant_id=tenant_id,
            submission_id=submission_id,
            data=dict(data or {}),
        )
        await self._store.append(event)

        if self._bus is not None:
            try:
                await self._bus.publish(event)
            except Exception:
                logger.exception("Live publish failed for event %s (%s)", event.event_id, event.type.value)

        return event


__all__ = ["EventEmitter"]
