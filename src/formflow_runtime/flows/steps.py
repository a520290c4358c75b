"""
Shared step library for processing flows.

Each step receives the flow context, does one thing, and reports a
StepResult. Steps may replace ``ctx.submission`` with an updated copy;
the dispatcher appends the log entry and persists it.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from ..events import EventEmitter, EventType
from ..forms.types import FormDefinition
from ..identity.types import Company, Contact
from ..integrations import Integrations
from ..routing.router import HandlerRouter
from ..routing.types import RouteResult
from ..submissions.types import StepOutcome, Submission, SubmissionStatus


class StepName(str, Enum):
    SEND_CONFIRMATION = "send_confirmation"
    LOG_CRM_ACTIVITY = "log_crm_activity"
    CREATE_TICKET = "create_ticket"
    CREATE_TASK = "create_task"
    ENROLL_CAMPAIGN = "enroll_campaign"
    ROUTE_TO_HANDLER = "route_to_handler"
    NOTIFY_HANDLER = "notify_handler"
    AGENT_HANDOFF = "agent_handoff"


@dataclass
class FlowContext:
    submission: Submission
    form: FormDefinition
    contact: Contact | None
    company: Company | None
    router: HandlerRouter
    integrations: Integrations
    emitter: EventEmitter
    clock: Callable[[], float]
    route: RouteResult | None = None
    handed_off: bool = False


@dataclass(frozen=True)
class StepResult:
    outcome: StepOutcome
    entity_ref: str | None = None
    detail: str | None = None

    @property
    def halts(self) -> bool:
        return self.outcome == StepOutcome.UNASSIGNED


Step = Callable[[FlowContext], Awaitable[StepResult]]


def _skip(reason: str) -> StepResult:
    return StepResult(StepOutcome.SKIPPED, detail=reason)


def _details(ctx: FlowContext) -> dict:
    return {
        "form_id": ctx.form.form_id,
        "form_name": ctx.form.name,
        "fields": dict(ctx.submission.fields),
    }


async def send_confirmation(ctx: FlowContext) -> StepResult:
    if not ctx.form.send_confirmation:
        return _skip("confirmation disabled")
    if not ctx.submission.email:
        return _skip("no email")
    ref = await ctx.integrations.notifier.send_confirmation(
        ctx.submission, ctx.submission.email, ctx.form.success_message
    )
    return StepResult(StepOutcome.OK, entity_ref=ref)


async def log_crm_activity(ctx: FlowContext) -> StepResult:
    ref = await ctx.integrations.crm.log_activity(ctx.submission, ctx.contact)
    return StepResult(StepOutcome.OK, entity_ref=ref)


async def create_ticket(ctx: FlowContext) -> StepResult:
    ref = await ctx.integrations.crm.create_ticket(ctx.submission, ctx.contact, _details(ctx))
    return StepResult(StepOutcome.OK, entity_ref=ref)


async def create_task(ctx: FlowContext) -> StepResult:
    ref = await ctx.integrations.crm.create_task(ctx.submission, ctx.contact, _details(ctx))
    return StepResult(StepOutcome.OK, entity_ref=ref)


async def enroll_campaign(ctx: FlowContext) -> StepResult:
    if ctx.contact is None:
        return _skip("no contact")
    if not ctx.form.sequence_id:
        return _skip("no sequence configured")
    ref = await ctx.integrations.sequences.enroll(ctx.contact, ctx.form.sequence_id)
    return StepResult(StepOutcome.OK, entity_ref=ref)


async def route_to_handler(ctx: FlowContext) -> StepResult:
    sub = ctx.submission
    route = await ctx.router.route(sub.tenant_id, ctx.form.handler_group_id)
    ctx.route = route
    if route.is_unassigned:
        return StepResult(StepOutcome.UNASSIGNED, detail="no handler available")

    ctx.submission = sub.with_updates(handler=route.primary)
    await ctx.emitter.emit(
        EventType.HANDLER_ASSIGNED,
        tenant_id=sub.tenant_id,
        submission_id=sub.submission_id,
        data={
            "route": route.kind.value,
            "group_id": route.group_id,
            "handlers": [h.handler_id for h in route.handlers],
        },
    )
    return StepResult(
        StepOutcome.OK,
        entity_ref=",".join(h.handler_id for h in route.handlers),
        detail=route.kind.value,
    )


def _handler_message(ctx: FlowContext) -> str:
    who = ctx.contact.display_name if ctx.contact else "an anonymous visitor"
    return f"New submission on {ctx.form.name or ctx.form.form_id} from {who}"


async def notify_handler(ctx: FlowContext) -> StepResult:
    if ctx.route is None or not ctx.route.handlers:
        return _skip("no handler")
    message = _handler_message(ctx)
    refs = [
        await ctx.integrations.notifier.notify_handler(handler, ctx.submission, message)
        for handler in ctx.route.handlers
    ]
    return StepResult(StepOutcome.OK, entity_ref=",".join(refs), detail=f"notified {len(refs)}")


async def agent_handoff(ctx: FlowContext) -> StepResult:
    """Hand the rest of the work to the agent loop, or to a human handler."""
    handler = ctx.submission.handler
    if handler is None:
        return _skip("no handler")

    if not handler.is_agent:
        ref = await ctx.integrations.notifier.notify_handler(handler, ctx.submission, _handler_message(ctx))
        return StepResult(StepOutcome.OK, entity_ref=ref, detail="human handler")

    ctx.submission = ctx.submission.transition_to(SubmissionStatus.PROCESSING, now=ctx.clock())
    ctx.handed_off = True
    await ctx.emitter.emit(
        EventType.AGENT_PROCESSING,
        tenant_id=ctx.submission.tenant_id,
        submission_id=ctx.submission.submission_id,
        data={"handler_id": handler.handler_id, "trust_level": ctx.form.trust_level.value},
    )
    return StepResult(StepOutcome.HANDED_OFF, entity_ref=handler.handler_id)


STEP_LIBRARY: dict[StepName, Step] = {
    StepName.SEND_CONFIRMATION: send_confirmation,
    StepName.LOG_CRM_ACTIVITY: log_crm_activity,
    StepName.CREATE_TICKET: create_ticket,
    StepName.CREATE_TASK: create_task,
    StepName.ENROLL_CAMPAIGN: enroll_campaign,
    StepName.ROUTE_TO_HANDLER: route_to_handler,
    StepName.NOTIFY_HANDLER: notify_handler,
    StepName.AGENT_HANDOFF: agent_handoff,
}


__all__ = [
    "StepName",
    "FlowContext",
    "StepResult",
    "Step",
    "STEP_LIBRARY",
]
