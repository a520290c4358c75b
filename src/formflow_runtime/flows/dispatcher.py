"""
Flow dispatcher.

Runs one of six named flows over a submission. Every step appends exactly
one log entry, which is persisted before the next step starts. A failing
step is recorded and the flow continues; an unassigned route halts it and
leaves the submission ``received``.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

from ..events import EventEmitter
from ..forms.types import FlowId, FormDefinition
from ..identity.types import Company, Contact
from ..integrations import Integrations
from ..logging import get_logger
from ..routing.router import HandlerRouter
from ..submissions.store import SubmissionStore
from ..submissions.types import (
    ErrorRecord,
    ErrorType,
    StepLogEntry,
    StepOutcome,
    Submission,
    SubmissionStatus,
)
from .steps import STEP_LIBRARY, FlowContext, StepName, StepResult

log = get_logger("formflow_runtime.flows")

S = StepName

FLOWS: dict[FlowId, tuple[StepName, ...]] = {
    FlowId.NOTIFY_ONLY: (
        S.SEND_CONFIRMATION,
        S.LOG_CRM_ACTIVITY,
        S.ROUTE_TO_HANDLER,
        S.NOTIFY_HANDLER,
    ),
    FlowId.LEAD_NURTURE: (
        S.SEND_CONFIRMATION,
        S.LOG_CRM_ACTIVITY,
        S.ROUTE_TO_HANDLER,
        S.NOTIFY_HANDLER,
        S.ENROLL_CAMPAIGN,
    ),
    FlowId.SUPPORT_TICKET: (
        S.SEND_CONFIRMATION,
        S.CREATE_TICKET,
        S.ROUTE_TO_HANDLER,
        S.NOTIFY_HANDLER,
    ),
    FlowId.TASK_REQUEST: (
        S.SEND_CONFIRMATION,
        S.LOG_CRM_ACTIVITY,
        S.CREATE_TASK,
        S.ROUTE_TO_HANDLER,
        S.NOTIFY_HANDLER,
    ),
    FlowId.AGENT_SALES: (
        S.SEND_CONFIRMATION,
        S.LOG_CRM_ACTIVITY,
        S.ROUTE_TO_HANDLER,
        S.AGENT_HANDOFF,
    ),
    FlowId.AGENT_SUPPORT: (
        S.SEND_CONFIRMATION,
        S.CREATE_TICKET,
        S.ROUTE_TO_HANDLER,
        S.AGENT_HANDOFF,
    ),
}


def _validate_flows() -> None:
    missing = set(FlowId) - set(FLOWS)
    if missing:
        raise RuntimeError(f"Flows without a step list: {sorted(f.value for f in missing)}")
    unbound = set(StepName) - set(STEP_LIBRARY)
    if unbound:
        raise RuntimeError(f"Steps without an implementation: {sorted(s.value for s in unbound)}")
    for flow_id, steps in FLOWS.items():
        if S.ROUTE_TO_HANDLER not in steps:
            raise RuntimeError(f"Flow {flow_id.value} never routes")
        ends_in_handoff = steps[-1] == S.AGENT_HANDOFF
        if ends_in_handoff != flow_id.agent_guided:
            raise RuntimeError(f"Flow {flow_id.value} handoff does not match its kind")


_validate_flows()


@dataclass(frozen=True)
class FlowOutcome:
    submission: Submission
    handed_off: bool = False
    unassigned: bool = False


class FlowDispatcher:
    def __init__(
        self,
        submissions: SubmissionStore,
        router: HandlerRouter,
        integrations: Integrations,
        emitter: EventEmitter,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._submissions = submissions
        self._router = router
        self._integrations = integrations
        self._emitter = emitter
        self._clock = clock

    async def execute(
        self,
        flow_id: FlowId,
        submission: Submission,
        contact: Contact | None,
        company: Company | None,
        form: FormDefinition,
    ) -> FlowOutcome:
        ctx = FlowContext(
            submission=submission,
            form=form,
            contact=contact,
            company=company,
            router=self._router,
            integrations=self._integrations,
            emitter=self._emitter,
            clock=self._clock,
        )
        flog = log.bind(
            tenant_id=submission.tenant_id,
            submission_id=submission.submission_id,
            form_id=form.form_id,
        )

        for step in FLOWS[flow_id]:
            result = await self._run_step(ctx, step, flog)
            ctx.submission = await self._submissions.update(
                ctx.submission.with_step(
                    StepLogEntry(
                        step=step.value,
                        outcome=result.outcome,
                        timestamp=self._clock(),
                        entity_ref=result.entity_ref,
                        detail=result.detail,
                    )
                )
            )
            if result.halts:
                flog.warning("Submission left unassigned", flow=flow_id.value)
                return FlowOutcome(ctx.submission, unassigned=True)

        if ctx.handed_off:
            return FlowOutcome(ctx.submission, handed_off=True)

        ctx.submission = await self._submissions.update(
            ctx.submission.transition_to(SubmissionStatus.PROCESSED, now=self._clock())
        )
        flog.info("Flow completed", flow=flow_id.value)
        return FlowOutcome(ctx.submission)

    async def _run_step(self, ctx: FlowContext, step: StepName, flog) -> StepResult:
        try:
            return await STEP_LIBRARY[step](ctx)
        except Exception as exc:
            flog.log_error(exc, f"Step {step.value} failed", step=step.value)
            ctx.submission = ctx.submission.with_error(
                ErrorRecord(
                    error_type=ErrorType.STEP_FAILED,
                    resolution="continued",
                    detail=f"{step.value}: {exc}",
                    occurred_at=self._clock(),
                )
            )
            return StepResult(StepOutcome.FAILED, detail=str(exc))


__all__ = [
    "FLOWS",
    "FlowOutcome",
    "FlowDispatcher",
]
