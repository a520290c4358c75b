"""
Decision-service contract.

The decision service is an external capability. It receives a system and
a user message and answers with a JSON plan:

    {"rationale": str,
     "actions": [{"name": str, "details": {...}}],
     "contactUpdates": {"tagsToAdd": [str], "note": str}}

``parse_plan`` turns that text into a Plan or raises PlanParseError.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from jsonschema import Draft202012Validator

from ..errors import PlanParseError
from .types import ContactUpdates, Plan, ProposedAction

PLAN_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "rationale": {"type": "string"},
        "actions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string", "minLength": 1},
                    "details": {"type": "object"},
                },
                "required": ["name"],
            },
        },
        "contactUpdates": {
            "type": ["object", "null"],
            "properties": {
                "tagsToAdd": {"type": "array", "items": {"type": "string"}},
                "note": {"type": ["string", "null"]},
            },
        },
    },
    "required": ["rationale", "actions"],
}

_validator = Draft202012Validator(PLAN_SCHEMA)


@dataclass(frozen=True)
class DecisionRequest:
    tenant_id: str
    submission_id: str
    system_prompt: str
    user_prompt: str
    strict: bool = False

    @property
    def messages(self) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": self.user_prompt},
        ]


class DecisionService(ABC):
    """Produces a plan for a submission."""

    @abstractmethod
    async def decide(self, request: DecisionRequest) -> str:
        """Return the raw plan text.

        Raises:
            DecisionTimeoutError: The call did not finish in time
            DecisionServiceError: Any other failure; ``retryable`` says
                whether another attempt may succeed
        """
        ...


def _strip_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()


def parse_plan(raw: str | dict[str, Any]) -> Plan:
    """Parse and validate a plan.

    Raises:
        PlanParseError: Not JSON, or not shaped like a plan
    """
    if isinstance(raw, dict):
        data = raw
    else:
        try:
            data = json.loads(_strip_fences(raw or ""))
        except json.JSONDecodeError as exc:
            raise PlanParseError(f"Plan is not valid JSON: {exc.msg}", cause=exc) from exc

    errors = sorted(_validator.iter_errors(data), key=lambda e: list(e.path))
    if errors:
        first = errors[0]
        where = "/".join(str(p) for p in first.path) or "<root>"
        raise PlanParseError(
            f"Plan does not match schema at {where}: {first.message}",
            details={"errors": [e.message for e in errors[:5]]},
        )

    return Plan(
        rationale=data["rationale"],
        actions=tuple(ProposedAction.from_dict(a) for a in data["actions"]),
        contact_updates=ContactUpdates.from_dict(data.get("contactUpdates")),
    )


__all__ = [
    "PLAN_SCHEMA",
    "DecisionRequest",
    "DecisionService",
    "parse_plan",
]
