"""
Event bus for live pipeline event fan-out.

This module provides the EventBus abstraction and an in-memory
implementation for publishing events to connected observers.
"""

from __future__ import annotations

import asyncio
import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from .types import EventType, PipelineEvent


@dataclass
class EventSubscription:
    """Subscription to events from the event bus."""

    subscription_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    tenant_id: str | None = None
    submission_id: str | None = None
    event_types: set[EventType] | None = None  # None = all types

    def matches(self, event: PipelineEvent) -> bool:
        """Check if an event matches this subscription."""
        if self.tenant_id and event.tenant_id != self.tenant_id:
            return False
        if self.submission_id and event.submission_id != self.submission_id:
            return False
        if self.event_types and event.type not in self.event_types:
            return False
        return True


class EventBus(ABC):
    """Abstract event bus for pipeline events.

    Implementations must provide:
    - publish: Send an event to all matching subscribers
    - subscribe: Create a subscription for events
    - events: Iterate over a subscription
    - unsubscribe: Remove a subscription
    """

    @abstractmethod
    async def publish(self, event: PipelineEvent) -> None:
        """Publish an event to all matching subscribers."""
        ...

    @abstractmethod
    def subscribe(
        self,
        tenant_id: str | None = None,
        submission_id: str | None = None,
        event_types: set[EventType] | None = None,
    ) -> EventSubscription:
        """Create a subscription and return it."""
        ...

    @abstractmethod
    def events(self, subscription: EventSubscription) -> AsyncIterator[PipelineEvent]:
        """Iterate over events for a subscription."""
        ...

    @abstractmethod
    def unsubscribe(self, subscription: EventSubscription) -> None:
        """Remove a subscription."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the event bus and clean up resources."""
        ...


class InMemoryEventBus(EventBus):
    """In-memory event bus implementation.

    Uses one bounded asyncio.Queue per subscription. A slow observer
    never blocks publishers: when its queue is full the oldest (or the
    newest) event is dropped according to ``drop_policy``.
    """

    def __init__(
        self,
        max_queue_size: int = 1000,
        drop_policy: str = "oldest",  # "oldest" or "newest"
    ):
        self._queues: dict[str, asyncio.Queue[PipelineEvent | None]] = {}
        self._subscriptions: dict[str, EventSubscription] = {}
        self._max_queue_size = max_queue_size
        self._drop_policy = drop_policy
        self._closed = False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def publish(self, event: PipelineEvent) -> None:
        if self._closed:
            return

        for sub_id, subscription in list(self._subscriptions.items()):
            if not subscription.matches(event):
                continue
            queue = self._queues.get(sub_id)
            if queue is None:
                continue
            if queue.full():
                if self._drop_policy != "oldest":
                    continue
                try:
                    queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass
            queue.put_nowait(event)

    def subscribe(
        self,
        tenant_id: str | None = None,
        submission_id: str | None = None,
        event_types: set[EventType] | None = None,
    ) -> EventSubscription:
        subscription = EventSubscription(
            tenant_id=tenant_id,
            submission_id=submission_id,
            event_types=event_types,
        )
        self._subscriptions[subscription.subscription_id] = subscription
        # One extra slot so the close sentinel always fits.
        self._queues[subscription.subscription_id] = asyncio.Queue(maxsize=self._max_queue_size + 1)
        return subscription

    async def events(self, subscription: EventSubscription) -> AsyncIterator[PipelineEvent]:
        """Yield events until the subscription is closed (receives None)."""
        queue = self._queues.get(subscription.subscription_id)
        if queue is None:
            return

        while True:
            event = await queue.get()
            if event is None:
                break
            yield event

    async def wait_for_event(
        self,
        subscription: EventSubscription,
        timeout: float | None = None,
    ) -> PipelineEvent | None:
        """Wait for a single event with optional timeout."""
        queue = self._queues.get(subscription.subscription_id)
        if queue is None:
            return None
        try:
            if timeout:
                return await asyncio.wait_for(queue.get(), timeout=timeout)
            return await queue.get()
        except asyncio.TimeoutError:
            return None

    def unsubscribe(self, subscription: EventSubscription) -> None:
        sub_id = subscription.subscription_id
        self._subscriptions.pop(sub_id, None)
        queue = self._queues.pop(sub_id, None)
        if queue is not None:
            try:
                queue.put_nowait(None)
            except asyncio.QueueFull:
                pass

    async def close(self) -> None:
        self._closed = True
        for queue in self._queues.values():
            try:
                queue.put_nowait(None)
            except asyncio.QueueFull:
                pass
        self._queues.clear()
        self._subscriptions.clear()


__all__ = [
    "EventBus",
    "InMemoryEventBus",
    "EventSubscription",
]
