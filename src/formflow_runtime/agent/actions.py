"""
Action handlers for the agent loop.

Each ActionName maps to one small handler coroutine. The table is checked
against the enum at import time, so a new action type cannot ship without
a handler. A failing action is retried (once by default) and then
recorded as ``action_failed``; it never aborts the remaining actions.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from ..events import EventEmitter, EventType
from ..forms.types import ActionName, FormDefinition
from ..identity.types import Contact
from ..integrations import Integrations
from ..submissions.types import ErrorRecord, ErrorType, Submission
from .types import ActionResult, ProposedAction

logger = logging.getLogger(__name__)


class ActionError(Exception):
    """An action cannot run with the data it was given."""


@dataclass(frozen=True)
class ActionContext:
    submission: Submission
    contact: Contact | None
    form: FormDefinition
    integrations: Integrations


ActionHandler = Callable[[ActionContext, dict[str, Any]], Awaitable[str]]


def _recipient(ctx: ActionContext, details: dict[str, Any]) -> str:
    to = details.get("to") or (ctx.contact.email if ctx.contact else None) or ctx.submission.email
    if not to:
        raise ActionError("No recipient for message")
    return str(to)


async def score_lead(ctx: ActionContext, details: dict[str, Any]) -> str:
    try:
        score = float(details.get("score", 0))
    except (TypeError, ValueError):
        raise ActionError(f"Invalid score {details.get('score')!r}") from None
    return await ctx.integrations.crm.score_contact(ctx.contact, score, details.get("reason"))


async def send_message(ctx: ActionContext, details: dict[str, Any]) -> str:
    body = details.get("body") or details.get("message")
    if not body:
        raise ActionError("Message body is empty")
    subject = details.get("subject") or f"Re: {ctx.form.name or ctx.form.form_id}"
    return await ctx.integrations.notifier.send_message(_recipient(ctx, details), subject, str(body))


async def create_deal(ctx: ActionContext, details: dict[str, Any]) -> str:
    return await ctx.integrations.crm.create_deal(ctx.submission, ctx.contact, details)


async def create_ticket(ctx: ActionContext, details: dict[str, Any]) -> str:
    return await ctx.integrations.crm.create_ticket(ctx.submission, ctx.contact, details)


async def create_booking(ctx: ActionContext, details: dict[str, Any]) -> str:
    return await ctx.integrations.crm.create_booking(ctx.submission, ctx.contact, details)


async def enroll_sequence(ctx: ActionContext, details: dict[str, Any]) -> str:
    if ctx.contact is None:
        raise ActionError("Cannot enroll without a contact")
    sequence_id = details.get("sequence_id") or ctx.form.sequence_id
    if not sequence_id:
        raise ActionError("No sequence to enroll in")
    return await ctx.integrations.sequences.enroll(ctx.contact, str(sequence_id))


async def escalate(ctx: ActionContext, details: dict[str, Any]) -> str:
    handler = ctx.submission.handler
    if handler is None:
        raise ActionError("No handler to escalate to")
    reason = details.get("reason") or "Escalated by agent"
    return await ctx.integrations.notifier.notify_handler(handler, ctx.submission, str(reason))


async def respond_directly(ctx: ActionContext, details: dict[str, Any]) -> str:
    body = details.get("message") or details.get("body")
    if not body:
        raise ActionError("Response is empty")
    subject = details.get("subject") or f"About your {ctx.form.name or 'submission'}"
    to = ctx.submission.email or (ctx.contact.email if ctx.contact else None)
    if not to:
        raise ActionError("Submitter left no email")
    return await ctx.integrations.notifier.send_message(to, subject, str(body))


ACTION_HANDLERS: dict[ActionName, ActionHandler] = {
    ActionName.SCORE_LEAD: score_lead,
    ActionName.SEND_MESSAGE: send_message,
    ActionName.CREATE_DEAL: create_deal,
    ActionName.CREATE_TICKET: create_ticket,
    ActionName.CREATE_BOOKING: create_booking,
    ActionName.ENROLL_SEQUENCE: enroll_sequence,
    ActionName.ESCALATE: escalate,
    ActionName.RESPOND_DIRECTLY: respond_directly,
}

_missing = set(ActionName) - set(ACTION_HANDLERS)
if _missing:
    raise RuntimeError(f"Actions without a handler: {sorted(a.value for a in _missing)}")


class ActionExecutor:
    """Runs validated actions with per-action retry and event emission."""

    def __init__(
        self,
        integrations: Integrations,
        emitter: EventEmitter,
        *,
        retries: int = 1,
        handlers: dict[ActionName, ActionHandler] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._integrations = integrations
        self._emitter = emitter
        self._retries = max(0, retries)
        self._handlers = dict(handlers or ACTION_HANDLERS)
        self._clock = clock

    async def execute(self, action: ProposedAction, ctx: ActionContext) -> ActionResult:
        handler = self._handlers[ActionName(action.name)]
        last_error: Exception | None = None
        attempts = 0
        for attempts in range(1, self._retries + 2):
            try:
                ref = await handler(ctx, action.details)
                return ActionResult(action.name, True, entity_ref=ref, attempts=attempts)
            except Exception as exc:
                last_error = exc
                logger.info(
                    "Action %s failed on attempt %d for submission %s: %s",
                    action.name,
                    attempts,
                    ctx.submission.submission_id,
                    exc,
                )
        return ActionResult(action.name, False, error=str(last_error), attempts=attempts)

    async def run_all(
        self,
        submission: Submission,
        contact: Contact | None,
        form: FormDefinition,
        actions: tuple[ProposedAction, ...],
    ) -> tuple[Submission, tuple[ActionResult, ...]]:
        """Execute actions in order. Failures are recorded, never raised."""
        ctx = ActionContext(submission, contact, form, self._integrations)
        results: list[ActionResult] = []
        for action in actions:
            result = await self.execute(action, ctx)
            results.append(result)
            if not result.success:
                submission = submission.with_error(
                    ErrorRecord(
                        error_type=ErrorType.ACTION_FAILED,
                        attempt=result.attempts,
                        resolution="continued",
                        detail=f"{action.name}: {result.error}",
                        occurred_at=self._clock(),
                    )
                )
            await self._emitter.emit(
                EventType.AGENT_ACTION,
                tenant_id=submission.tenant_id,
                submission_id=submission.submission_id,
                data=result.to_dict(),
            )
        return submission, tuple(results)


__all__ = [
    "ActionError",
    "ActionContext",
    "ActionHandler",
    "ACTION_HANDLERS",
    "ActionExecutor",
]
