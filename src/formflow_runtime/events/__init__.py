"""
Event system for formflow.

Every pipeline transition produces one immutable PipelineEvent that is
durably recorded and pushed live to connected observers.
"""

from .types import EventType, PipelineEvent
from .bus import EventBus, InMemoryEventBus, EventSubscription
from .store import EventFilter, EventStore, InMemoryEventStore
from .emitter import EventEmitter

__all__ = [
    "EventType",
    "PipelineEvent",
    "EventBus",
    "InMemoryEventBus",
    "EventSubscription",
    "EventFilter",
    "EventStore",
    "InMemoryEventStore",
    "EventEmitter",
]
