"""
Submission types.

A Submission is created by the intake gate and then only advanced by the
pipeline. Its step log and error records are append-only: the ``with_*``
methods return a new record and never touch the existing entries.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from ..errors import InvalidTransitionError
from ..routing.types import HandlerRef


class SubmissionStatus(str, Enum):
    """Submission lifecycle states.

    State transitions:
    - RECEIVED -> PROCESSED (deterministic flow finished)
    - RECEIVED -> PROCESSING (handed to the agent loop)
    - PROCESSING -> PENDING_APPROVAL (draft awaiting a human)
    - PROCESSING -> PROCESSED | NEEDS_HUMAN_REVIEW | FAILED
    - PENDING_APPROVAL -> PROCESSED (approved or rejected)
    - NEEDS_HUMAN_REVIEW | FAILED -> PROCESSED (human override)
    - * -> ARCHIVED
    """

    RECEIVED = "received"
    PROCESSING = "processing"
    PENDING_APPROVAL = "pending_approval"
    PROCESSED = "processed"
    NEEDS_HUMAN_REVIEW = "needs_human_review"
    FAILED = "failed"
    ARCHIVED = "archived"

    @property
    def needs_attention(self) -> bool:
        return self in {
            SubmissionStatus.PENDING_APPROVAL,
            SubmissionStatus.NEEDS_HUMAN_REVIEW,
            SubmissionStatus.FAILED,
        }


VALID_TRANSITIONS: dict[SubmissionStatus, set[SubmissionStatus]] = {
    SubmissionStatus.RECEIVED: {
        SubmissionStatus.PROCESSING,
        SubmissionStatus.PROCESSED,
        SubmissionStatus.FAILED,
        SubmissionStatus.ARCHIVED,
    },
    SubmissionStatus.PROCESSING: {
        SubmissionStatus.PENDING_APPROVAL,
        SubmissionStatus.PROCESSED,
        SubmissionStatus.NEEDS_HUMAN_REVIEW,
        SubmissionStatus.FAILED,
    },
    SubmissionStatus.PENDING_APPROVAL: {
        SubmissionStatus.PROCESSED,
        SubmissionStatus.ARCHIVED,
    },
    SubmissionStatus.NEEDS_HUMAN_REVIEW: {
        SubmissionStatus.PROCESSED,
        SubmissionStatus.ARCHIVED,
    },
    SubmissionStatus.FAILED: {
        SubmissionStatus.PROCESSED,
        SubmissionStatus.ARCHIVED,
    },
    SubmissionStatus.PROCESSED: {SubmissionStatus.ARCHIVED},
    SubmissionStatus.ARCHIVED: set(),
}


class StepOutcome(str, Enum):
    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"
    UNASSIGNED = "unassigned"
    HANDED_OFF = "handed_off"


class ErrorType(str, Enum):
    DECISION_TIMEOUT = "decision_timeout"
    DECISION_ERROR = "decision_error"
    UNPARSABLE_PLAN = "unparsable_plan"
    ACTION_FAILED = "action_failed"
    STEP_FAILED = "step_failed"
    STALE_WORK = "stale_work"


UTM_KEYS = ("utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content")


@dataclass(frozen=True)
class ClientMetadata:
    """Request metadata captured at intake."""

    ip: str | None = None
    user_agent: str | None = None
    referrer: str | None = None
    origin: str | None = None
    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None
    utm_term: str | None = None
    utm_content: str | None = None
    variant_id: str | None = None

    @property
    def campaign(self) -> dict[str, str]:
        """Campaign tags that are set."""
        tags = {k: getattr(self, k) for k in UTM_KEYS}
        return {k: v for k, v in tags.items() if v}

    def with_variant(self, variant_id: str | None) -> ClientMetadata:
        return replace(self, variant_id=variant_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ip": self.ip,
            "user_agent": self.user_agent,
            "referrer": self.referrer,
            "origin": self.origin,
            **{k: getattr(self, k) for k in UTM_KEYS},
            "variant_id": self.variant_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClientMetadata:
        return cls(
            ip=data.get("ip"),
            user_agent=data.get("user_agent"),
            referrer=data.get("referrer"),
            origin=data.get("origin"),
            variant_id=data.get("variant_id"),
            **{k: data.get(k) for k in UTM_KEYS},
        )


@dataclass(frozen=True)
class StepLogEntry:
    step: str
    outcome: StepOutcome
    timestamp: float = field(default_factory=time.time)
    entity_ref: str | None = None
    detail: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step,
            "outcome": self.outcome.value,
            "timestamp": self.timestamp,
            "entity_ref": self.entity_ref,
            "detail": self.detail,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StepLogEntry:
        return cls(
            step=data["step"],
            outcome=StepOutcome(data["outcome"]),
            timestamp=data.get("timestamp", time.time()),
            entity_ref=data.get("entity_ref"),
            detail=data.get("detail"),
        )


@dataclass(frozen=True)
class ErrorRecord:
    """One failed attempt and what was done about it."""

    error_type: ErrorType
    attempt: int = 1
    resolution: str = ""
    resolved: bool = False
    detail: str | None = None
    occurred_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": self.error_type.value,
            "attempt": self.attempt,
            "resolution": self.resolution,
            "resolved": self.resolved,
            "detail": self.detail,
            "occurred_at": self.occurred_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ErrorRecord:
        return cls(
            error_type=ErrorType(data["error_type"]),
            attempt=int(data.get("attempt", 1)),
            resolution=data.get("resolution", ""),
            resolved=bool(data.get("resolved", False)),
            detail=data.get("detail"),
            occurred_at=data.get("occurred_at", time.time()),
        )


@dataclass(frozen=True)
class Submission:
    """One inbound form submission."""

    # Identity
    submission_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    tenant_id: str = ""
    form_id: str = ""

    # Payload
    fields: dict[str, Any] = field(default_factory=dict)
    metadata: ClientMetadata = field(default_factory=ClientMetadata)
    telemetry: dict[str, Any] = field(default_factory=dict)
    # Normalized email taken from the form's email field, if any.
    email: str | None = None

    # Resolution
    contact_id: str | None = None
    company_id: str | None = None
    handler: HandlerRef | None = None

    # Lifecycle
    status: SubmissionStatus = SubmissionStatus.RECEIVED
    step_log: tuple[StepLogEntry, ...] = ()
    errors: tuple[ErrorRecord, ...] = ()
    agent_summary: str | None = None
    review_due_at: float | None = None

    # Timing
    received_at: float = field(default_factory=time.time)
    processing_started_at: float | None = None
    processed_at: float | None = None

    # Bumped by the store on every write.
    version: int = 0

    def can_transition_to(self, new_status: SubmissionStatus) -> bool:
        return new_status in VALID_TRANSITIONS.get(self.status, set())

    def transition_to(self, new_status: SubmissionStatus, *, now: float | None = None) -> Submission:
        """Return a copy in ``new_status``.

        Raises:
            InvalidTransitionError: If the transition is not allowed
        """
        if not self.can_transition_to(new_status):
            raise InvalidTransitionError(
                f"Invalid transition: {self.status.value} -> {new_status.value}",
                details={"submission_id": self.submission_id},
            )

        now = time.time() if now is None else now
        updates: dict[str, Any] = {"status": new_status}
        if new_status == SubmissionStatus.PROCESSING:
            updates["processing_started_at"] = now
        if new_status == SubmissionStatus.PROCESSED:
            updates["processed_at"] = now
        return replace(self, **updates)

    def with_step(self, entry: StepLogEntry) -> Submission:
        return replace(self, step_log=self.step_log + (entry,))

    def with_error(self, record: ErrorRecord) -> Submission:
        return replace(self, errors=self.errors + (record,))

    def with_updates(self, **kwargs: Any) -> Submission:
        """Copy with non-lifecycle attributes changed."""
        for protected in ("status", "step_log", "errors", "submission_id", "version"):
            if protected in kwargs:
                raise ValueError(f"{protected} cannot be set through with_updates")
        return replace(self, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        return {
            "submission_id": self.submission_id,
            "tenant_id": self.tenant_id,
            "form_id": self.form_id,
            "fields": dict(self.fields),
            "metadata": self.metadata.to_dict(),
            "telemetry": dict(self.telemetry),
            "email": self.email,
            "contact_id": self.contact_id,
            "company_id": self.company_id,
            "handler": self.handler.to_dict() if self.handler else None,
            "status": self.status.value,
            "step_log": [s.to_dict() for s in self.step_log],
            "errors": [e.to_dict() for e in self.errors],
            "agent_summary": self.agent_summary,
            "review_due_at": self.review_due_at,
            "received_at": self.received_at,
            "processing_started_at": self.processing_started_at,
            "processed_at": self.processed_at,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Submission:
        handler = data.get("handler")
        return cls(
            submission_id=data["submission_id"],
            tenant_id=data.get("tenant_id", ""),
            form_id=data.get("form_id", ""),
            fields=dict(data.get("fields") or {}),
            metadata=ClientMetadata.from_dict(data.get("metadata") or {}),
            telemetry=dict(data.get("telemetry") or {}),
            email=data.get("email"),
            contact_id=data.get("contact_id"),
            company_id=data.get("company_id"),
            handler=HandlerRef.from_dict(handler) if handler else None,
            status=SubmissionStatus(data.get("status", "received")),
            step_log=tuple(StepLogEntry.from_dict(s) for s in data.get("step_log") or ()),
            errors=tuple(ErrorRecord.from_dict(e) for e in data.get("errors") or ()),
            agent_summary=data.get("agent_summary"),
            review_due_at=data.get("review_due_at"),
            received_at=data.get("received_at", time.time()),
            processing_started_at=data.get("processing_started_at"),
            processed_at=data.get("processed_at"),
            version=int(data.get("version", 0)),
        )


__all__ = [
    "SubmissionStatus",
    "VALID_TRANSITIONS",
    "StepOutcome",
    "ErrorType",
    "UTM_KEYS",
    "ClientMetadata",
    "StepLogEntry",
    "ErrorRecord",
    "Submission",
]
