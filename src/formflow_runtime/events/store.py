"""
Durable event store implementations.

This module provides the EventStore interface and the in-memory
implementation. Events are written once and read many times.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass

from .types import EventType, PipelineEvent


@dataclass
class EventFilter:
    """Filter criteria for listing events."""

    tenant_id: str | None = None
    submission_id: str | None = None
    types: set[EventType] | None = None
    after_ts: float | None = None
    limit: int = 500

    def matches(self, event: PipelineEvent) -> bool:
        if self.tenant_id and event.tenant_id != self.tenant_id:
            return False
        if self.submission_id and event.submission_id != self.submission_id:
            return False
        if self.types and event.type not in self.types:
            return False
        if self.after_ts is not None and event.timestamp <= self.after_ts:
            return False
        return True


class EventStore(ABC):
    """Abstract interface for durable event persistence."""

    @abstractmethod
    async def append(self, event: PipelineEvent) -> None:
        """Persist one event. Events are never updated."""
        ...

    @abstractmethod
    async def list(self, filter: EventFilter | None = None) -> list[PipelineEvent]:
        """List events in write order."""
        ...


class InMemoryEventStore(EventStore):
    """In-memory event store. Suitable for testing and single-process use."""

    def __init__(self) -> None:
        self._events: list[PipelineEvent] = []
        self._lock = asyncio.Lock()

    async def append(self, event: PipelineEvent) -> None:
        async with self._lock:
            self._events.append(event)

    async def list(self, filter: EventFilter | None = None) -> list[PipelineEvent]:
        async with self._lock:
            if filter is None:
                return list(self._events)
            matched = [e for e in self._events if filter.matches(e)]
            return matched[: filter.limit]


__all__ = [
    "EventFilter",
    "EventStore",
    "InMemoryEventStore",
]
