"""
SubmissionEngine: the composition root.

Wires the stores, event emitter, worker pool and pipeline components
together and exposes the operations the API serves:

- submit / fetch_schema (public)
- get_submission / unassigned / experiment_result (operators)
- approve_draft / reject_draft / override (human decisions)
- start / stop / drain / sweep (lifecycle)

Intake runs on the caller's task. Identity resolution and flow dispatch
run as one background unit of work; the agent loop, for agent-guided
flows, runs as a second one.
"""

from __future__ import annotations

import asyncio
import random
import time
from collections.abc import Awaitable, Callable
from typing import Any

from .agent.actions import ActionExecutor
from .agent.decision import DecisionRequest, DecisionService
from .agent.drafts import DraftManager, DraftStore, InMemoryDraftStore
from .agent.loop import AgentExecutionLoop
from .agent.prompt import PromptBuilder
from .agent.types import AgentOutcome, Draft
from .errors import (
    DecisionServiceError,
    FormNotFoundError,
    InvalidTransitionError,
    NotFoundError,
)
from .events import (
    EventBus,
    EventEmitter,
    EventStore,
    EventType,
    InMemoryEventBus,
    InMemoryEventStore,
)
from .flows.dispatcher import FlowDispatcher, FlowOutcome
from .forms.experiments import ExperimentResult
from .forms.schema import ResolvedSchema, resolve_schema
from .forms.store import FormStore, InMemoryFormStore
from .forms.types import FormDefinition
from .identity.resolver import IdentityResolver
from .identity.store import IdentityStore, InMemoryIdentityStore
from .intake.abuse import AbuseLogStore, InMemoryAbuseLogStore
from .intake.gate import IntakeGate, IntakeResult
from .integrations import Integrations
from .logging import get_logger
from .recovery.policy import RecoveryManager, RetryPolicy
from .recovery.sweeper import StaleWorkSweeper
from .routing.router import HandlerRouter
from .routing.store import InMemoryRoutingStore, RoutingStore
from .settings import Settings
from .submissions.store import InMemorySubmissionStore, SubmissionStore
from .submissions.types import ClientMetadata, Submission, SubmissionStatus
from .workers import WorkerPool

log = get_logger("formflow_runtime.engine")


class _UnconfiguredDecisionService(DecisionService):
    async def decide(self, request: DecisionRequest) -> str:
        raise DecisionServiceError("No decision service configured", retryable=False)


class SubmissionEngine:
    """Owns every pipeline component and the background work they run on."""

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        forms: FormStore | None = None,
        submissions: SubmissionStore | None = None,
        identity_store: IdentityStore | None = None,
        routing_store: RoutingStore | None = None,
        abuse_log: AbuseLogStore | None = None,
        drafts: DraftStore | None = None,
        event_store: EventStore | None = None,
        event_bus: EventBus | None = None,
        integrations: Integrations | None = None,
        decision: DecisionService | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.settings = settings or Settings()
        s = self.settings
        self._clock = clock
        self._rng = rng

        self.forms = forms or InMemoryFormStore()
        self.submissions = submissions or InMemorySubmissionStore()
        self.abuse_log = abuse_log or InMemoryAbuseLogStore()
        self.integrations = integrations or Integrations()
        self.emitter = EventEmitter(
            event_store or InMemoryEventStore(),
            event_bus or InMemoryEventBus(max_queue_size=s.event_queue_size),
        )

        self.router = HandlerRouter(routing_store or InMemoryRoutingStore())
        self.identity = IdentityResolver(identity_store or InMemoryIdentityStore(), self.emitter, clock=clock)
        self.gate = IntakeGate(
            self.forms,
            self.submissions,
            self.abuse_log,
            self.emitter,
            clock=clock,
            rng=rng,
        )
        self.dispatcher = FlowDispatcher(
            self.submissions,
            self.router,
            self.integrations,
            self.emitter,
            clock=clock,
        )
        self.recovery = RecoveryManager(
            self.submissions,
            self.emitter,
            self.router,
            self.integrations.notifier,
            policy=RetryPolicy(attempts=s.decision_attempts, backoff=s.decision_backoff_seconds),
            sleep=sleep,
            clock=clock,
        )
        self.executor = ActionExecutor(
            self.integrations,
            self.emitter,
            retries=s.action_retries,
            clock=clock,
        )
        self.drafts = DraftManager(
            drafts or InMemoryDraftStore(),
            self.submissions,
            self.forms,
            self.identity,
            self.executor,
            self.emitter,
            clock=clock,
        )
        self.agent = AgentExecutionLoop(
            decision or _UnconfiguredDecisionService(),
            PromptBuilder(history_touchpoints=s.history_touchpoints),
            self.recovery,
            self.executor,
            self.drafts,
            self.identity,
            self.submissions,
            self.integrations.notifier,
            self.emitter,
            review_window_seconds=s.review_window_seconds,
            clock=clock,
        )
        self.sweeper = StaleWorkSweeper(
            self.submissions,
            self.forms,
            self.recovery,
            self.emitter,
            stale_after_seconds=s.stale_after_seconds,
            clock=clock,
        )
        self.pool = WorkerPool(s.worker_concurrency, s.per_tenant_concurrency)
        self._sweep_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, *, sweep: bool = True) -> None:
        self.pool.start()
        if sweep and self._sweep_task is None:
            self._sweep_task = asyncio.create_task(
                self.sweeper.run_forever(self.settings.sweep_interval_seconds),
                name="formflow-sweeper",
            )
        log.info("Engine started", workers=self.pool.concurrency)

    async def stop(self) -> None:
        if self._sweep_task is not None:
            self.sweeper.stop()
            await self._sweep_task
            self._sweep_task = None
            self.sweeper.reset()
        await self.pool.stop(drain=True)
        if self.emitter.bus is not None:
            await self.emitter.bus.close()
        log.info("Engine stopped")

    async def drain(self) -> None:
        """Wait for all queued background work, including work it queues."""
        await self.pool.drain()

    async def sweep(self) -> list[str]:
        return await self.sweeper.sweep()

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    async def register_form(self, form: FormDefinition | dict[str, Any]) -> FormDefinition:
        if isinstance(form, dict):
            form = FormDefinition.from_dict(form)
        await self.forms.save(form)
        return form

    async def fetch_schema(self, form_id: str, variant_id: str | None = None) -> ResolvedSchema:
        form = await self.forms.get(form_id)
        if form is None or not form.active:
            raise FormNotFoundError(form_id)
        schema = resolve_schema(form, variant_id, self._rng)
        if schema.variant_id:
            await self.forms.record_view(form_id, schema.variant_id)
        return schema

    async def submit(
        self,
        form_id: str,
        fields: dict[str, Any],
        metadata: ClientMetadata | None = None,
        telemetry: dict[str, Any] | None = None,
    ) -> IntakeResult:
        """Run intake and queue the background work. Never waits on it."""
        result = await self.gate.accept(form_id, fields, metadata, telemetry)
        if result.submission is not None:
            submission_id = result.submission.submission_id
            self.pool.submit(
                result.submission.tenant_id,
                lambda: self.process(submission_id),
                name=f"process:{submission_id}",
            )
        return result

    # ------------------------------------------------------------------
    # Background units of work
    # ------------------------------------------------------------------

    async def process(self, submission_id: str) -> FlowOutcome:
        """Resolve identity and run the form's flow."""
        submission, form = await self._load(submission_id)

        resolution = await self.identity.resolve(submission, form)
        if resolution.resolved:
            # The company named on this submission, not the contact's first link.
            company_id = (
                resolution.company.company_id
                if resolution.company is not None
                else resolution.contact.company_id
            )
            submission = await self.submissions.update(
                submission.with_updates(
                    contact_id=resolution.contact.contact_id,
                    company_id=company_id,
                )
            )

        outcome = await self.dispatcher.execute(
            form.flow,
            submission,
            resolution.contact,
            resolution.company,
            form,
        )
        if outcome.handed_off:
            self.pool.submit(
                submission.tenant_id,
                lambda: self.run_agent(submission_id),
                name=f"agent:{submission_id}",
            )
        return outcome

    async def run_agent(self, submission_id: str) -> AgentOutcome:
        submission, form = await self._load(submission_id)
        contact = company = None
        if submission.contact_id:
            contact = await self.identity.store.get_contact(submission.tenant_id, submission.contact_id)
        if submission.company_id:
            company = await self.identity.store.get_company(submission.tenant_id, submission.company_id)
        return await self.agent.run(submission, contact, form, company=company)

    async def _load(self, submission_id: str) -> tuple[Submission, FormDefinition]:
        submission = await self.submissions.get(submission_id)
        if submission is None:
            raise NotFoundError(f"Submission {submission_id} not found")
        form = await self.forms.get(submission.form_id)
        if form is None:
            raise NotFoundError(f"Form {submission.form_id} not found")
        return submission, form

    # ------------------------------------------------------------------
    # Operator surface (tenant-scoped)
    # ------------------------------------------------------------------

    async def get_submission(self, tenant_id: str, submission_id: str) -> Submission:
        submission = await self.submissions.get(submission_id)
        if submission is None or submission.tenant_id != tenant_id:
            raise NotFoundError(f"Submission {submission_id} not found")
        return submission

    async def unassigned(self, tenant_id: str, limit: int = 100) -> list[Submission]:
        return await self.submissions.unassigned(tenant_id, limit)

    async def experiment_result(self, tenant_id: str, form_id: str) -> ExperimentResult:
        form = await self.forms.get(form_id)
        if form is None or form.tenant_id != tenant_id or form.experiment is None:
            raise NotFoundError(f"No experiment for form {form_id}")
        return form.experiment.evaluate(await self.forms.variant_counts(form_id))

    async def approve_draft(self, tenant_id: str, draft_id: str, actor: str) -> Draft:
        return await self.drafts.approve(tenant_id, draft_id, actor)

    async def reject_draft(self, tenant_id: str, draft_id: str, actor: str, reason: str | None = None) -> Draft:
        return await self.drafts.reject(tenant_id, draft_id, actor, reason)

    async def override(self, tenant_id: str, submission_id: str, actor: str, note: str | None = None) -> Submission:
        """Close a submission that needs review (or failed) by hand."""
        submission = await self.get_submission(tenant_id, submission_id)
        if submission.status not in {SubmissionStatus.NEEDS_HUMAN_REVIEW, SubmissionStatus.FAILED}:
            raise InvalidTransitionError(
                f"Cannot override a submission in status {submission.status.value}",
                details={"submission_id": submission_id},
            )
        submission = await self.submissions.update(
            submission.transition_to(SubmissionStatus.PROCESSED, now=self._clock())
        )
        await self.emitter.emit(
            EventType.HUMAN_OVERRIDE,
            tenant_id=tenant_id,
            submission_id=submission_id,
            data={"actor": actor, "note": note},
        )
        log.bind(tenant_id=tenant_id, submission_id=submission_id).info("Submission overridden", actor=actor)
        return submission


__all__ = ["SubmissionEngine"]
