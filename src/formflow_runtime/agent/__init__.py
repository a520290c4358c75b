"""
The agent loop: plans from the decision service, executed under a trust level.
"""

from .types import (
    ActionResult,
    AgentOutcome,
    ContactUpdates,
    Draft,
    DraftStatus,
    Plan,
    ProposedAction,
)
from .decision import PLAN_SCHEMA, DecisionRequest, DecisionService, parse_plan
from .prompt import PromptBuilder
from .actions import ACTION_HANDLERS, ActionContext, ActionError, ActionExecutor
from .drafts import DraftManager, DraftStore, InMemoryDraftStore
from .loop import AgentExecutionLoop

__all__ = [
    "ActionResult",
    "AgentOutcome",
    "ContactUpdates",
    "Draft",
    "DraftStatus",
    "Plan",
    "ProposedAction",
    "PLAN_SCHEMA",
    "DecisionRequest",
    "DecisionService",
    "parse_plan",
    "PromptBuilder",
    "ACTION_HANDLERS",
    "ActionContext",
    "ActionError",
    "ActionExecutor",
    "DraftManager",
    "DraftStore",
    "InMemoryDraftStore",
    "AgentExecutionLoop",
]
