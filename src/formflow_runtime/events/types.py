"""
Pipeline event types.

This module defines the PipelineEvent schema - one immutable record per
pipeline transition. The set of event types is closed; observers
(dashboards, analytics read-models) depend on it.

Event Categories:
- submission_received / spam_blocked: intake gate outcomes
- contact_*: identity resolution
- handler_assigned: routing
- agent_*: decision loop, actions, drafts, retries, escalation
- human_*: human decisions on drafts and reviews
- experiment_variant: A/B assignment
"""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventType(str, Enum):
    """Closed set of pipeline event types."""

    # Intake
    SUBMISSION_RECEIVED = "submission_received"
    SPAM_BLOCKED = "spam_blocked"

    # Identity
    CONTACT_MATCHED = "contact_matched"
    CONTACT_CREATED = "contact_created"

    # Routing
    HANDLER_ASSIGNED = "handler_assigned"

    # Agent loop
    AGENT_PROCESSING = "agent_processing"
    AGENT_ACTION = "agent_action"
    AGENT_ACTION_BLOCKED = "agent_action_blocked"
    AGENT_DRAFT = "agent_draft"
    AGENT_COMPLETED = "agent_completed"
    AGENT_ERROR = "agent_error"
    AGENT_RETRY = "agent_retry"
    AGENT_ESCALATED = "agent_escalated"

    # Human decisions
    HUMAN_APPROVED = "human_approved"
    HUMAN_REJECTED = "human_rejected"
    HUMAN_OVERRIDE = "human_override"

    # Experiments
    EXPERIMENT_VARIANT = "experiment_variant"


@dataclass(frozen=True)
class PipelineEvent:
    """Immutable pipeline event.

    Every event carries the tenant it belongs to and, where one exists,
    the submission it describes. Events are:
    - Serializable to JSON
    - Streamable via SSE
    - Persistable for replay and analytics
    """

    type: EventType
    tenant_id: str
    submission_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: float = field(default_factory=time.time)
    schema_version: int = 1

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "event_id": self.event_id,
            "type": self.type.value,
            "tenant_id": self.tenant_id,
            "submission_id": self.submission_id,
            "data": dict(self.data),
            "timestamp": self.timestamp,
            "schema_version": self.schema_version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PipelineEvent:
        """Deserialize from dictionary."""
        return cls(
            event_id=data.get("event_id", str(uuid.uuid4())),
            type=EventType(data["type"]),
            tenant_id=data["tenant_id"],
            submission_id=data.get("submission_id"),
            data=dict(data.get("data", {})),
            timestamp=data.get("timestamp", time.time()),
            schema_version=data.get("schema_version", 1),
        )

    def to_sse(self) -> str:
        """Format as Server-Sent Event."""
        data_json = json.dumps(self.to_dict(), default=str)
        return f"id: {self.event_id}\nevent: {self.type.value}\ndata: {data_json}\n\n"


__all__ = [
    "EventType",
    "PipelineEvent",
]
