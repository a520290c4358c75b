"""
Agent loop types: plans, drafts, action results and outcomes.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from ..errors import DraftStateError
from ..submissions.types import Submission, SubmissionStatus


@dataclass(frozen=True)
class ProposedAction:
    """One action the decision service proposes. ``name`` is unchecked."""

    name: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "details": dict(self.details)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProposedAction:
        return cls(name=data["name"], details=dict(data.get("details") or {}))


@dataclass(frozen=True)
class ContactUpdates:
    tags_to_add: tuple[str, ...] = ()
    note: str | None = None

    @property
    def empty(self) -> bool:
        return not self.tags_to_add and not self.note

    def to_dict(self) -> dict[str, Any]:
        return {"tagsToAdd": list(self.tags_to_add), "note": self.note}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ContactUpdates:
        if not data:
            return cls()
        tags = data.get("tagsToAdd", data.get("tags_to_add")) or ()
        return cls(tags_to_add=tuple(str(t) for t in tags), note=data.get("note"))


@dataclass(frozen=True)
class Plan:
    rationale: str
    actions: tuple[ProposedAction, ...] = ()
    contact_updates: ContactUpdates = field(default_factory=ContactUpdates)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rationale": self.rationale,
            "actions": [a.to_dict() for a in self.actions],
            "contactUpdates": self.contact_updates.to_dict(),
        }


class DraftStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(frozen=True)
class Draft:
    """A validated plan awaiting a human decision.

    A draft changes state exactly once: pending to approved or rejected.
    """

    submission_id: str
    tenant_id: str
    actions: tuple[ProposedAction, ...] = ()
    contact_updates: ContactUpdates = field(default_factory=ContactUpdates)
    rationale: str = ""
    draft_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: DraftStatus = DraftStatus.PENDING
    created_at: float = field(default_factory=time.time)
    decided_by: str | None = None
    decided_at: float | None = None
    decision_note: str | None = None

    def resolve(
        self,
        status: DraftStatus,
        *,
        actor: str,
        note: str | None = None,
        now: float | None = None,
    ) -> Draft:
        if self.status != DraftStatus.PENDING:
            raise DraftStateError(
                f"Draft {self.draft_id} is already {self.status.value}",
                details={"draft_id": self.draft_id, "status": self.status.value},
            )
        if status == DraftStatus.PENDING:
            raise DraftStateError("A draft cannot be resolved back to pending")
        return replace(
            self,
            status=status,
            decided_by=actor,
            decided_at=time.time() if now is None else now,
            decision_note=note,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "draft_id": self.draft_id,
            "submission_id": self.submission_id,
            "tenant_id": self.tenant_id,
            "actions": [a.to_dict() for a in self.actions],
            "contact_updates": self.contact_updates.to_dict(),
            "rationale": self.rationale,
            "status": self.status.value,
            "created_at": self.created_at,
            "decided_by": self.decided_by,
            "decided_at": self.decided_at,
            "decision_note": self.decision_note,
        }


@dataclass(frozen=True)
class ActionResult:
    action: str
    success: bool
    entity_ref: str | None = None
    error: str | None = None
    attempts: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "success": self.success,
            "entity_ref": self.entity_ref,
            "error": self.error,
            "attempts": self.attempts,
        }


@dataclass(frozen=True)
class AgentOutcome:
    submission: Submission
    executed: tuple[ActionResult, ...] = ()
    blocked: tuple[str, ...] = ()
    draft_id: str | None = None
    elapsed_ms: float = 0.0

    @property
    def status(self) -> SubmissionStatus:
        return self.submission.status

    @property
    def action_count(self) -> int:
        return len(self.executed)

    @property
    def failed_actions(self) -> list[str]:
        return [r.action for r in self.executed if not r.success]


__all__ = [
    "ProposedAction",
    "ContactUpdates",
    "Plan",
    "DraftStatus",
    "Draft",
    "ActionResult",
    "AgentOutcome",
]
