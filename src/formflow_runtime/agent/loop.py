"""
Agent execution loop.

Runs one submission from ``processing`` to a resting state:

1. build a bounded prompt
2. ask the decision service (under the retry policy)
3. parse the plan, re-asking once with stricter instructions
4. drop actions outside the form's allowed set
5. act according to the form's trust level
6. apply contact updates
7. mark the submission processed
"""

from __future__ import annotations

import time
from collections.abc import Callable

from ..errors import PlanParseError, StaleWriteError
from ..events import EventEmitter, EventType
from ..forms.types import FormDefinition, TrustLevel
from ..identity.resolver import IdentityResolver
from ..identity.types import Company, Contact
from ..integrations import Notifier
from ..logging import StructuredLogger, Timer, get_logger
from ..recovery.policy import RecoveryManager
from ..submissions.store import SubmissionStore
from ..submissions.types import ErrorRecord, ErrorType, Submission, SubmissionStatus
from .actions import ActionExecutor
from .decision import DecisionService, parse_plan
from .drafts import DraftManager
from .prompt import PromptBuilder
from .types import ActionResult, AgentOutcome, Draft, Plan, ProposedAction

log = get_logger("formflow_runtime.agent")


class AgentExecutionLoop:
    def __init__(
        self,
        decision: DecisionService,
        prompts: PromptBuilder,
        recovery: RecoveryManager,
        executor: ActionExecutor,
        drafts: DraftManager,
        identity: IdentityResolver,
        submissions: SubmissionStore,
        notifier: Notifier,
        emitter: EventEmitter,
        *,
        review_window_seconds: float = 3600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._decision = decision
        self._prompts = prompts
        self._recovery = recovery
        self._executor = executor
        self._drafts = drafts
        self._identity = identity
        self._submissions = submissions
        self._notifier = notifier
        self._emitter = emitter
        self.review_window_seconds = review_window_seconds
        self._clock = clock

    async def run(
        self,
        submission: Submission,
        contact: Contact | None,
        form: FormDefinition,
        *,
        company: Company | None = None,
    ) -> AgentOutcome:
        """Run one submission. Stops without acting once another writer
        (the stale-work sweep, a human) has moved it out of ``processing``."""
        timer = Timer()
        slog = log.bind(
            tenant_id=submission.tenant_id,
            submission_id=submission.submission_id,
            form_id=form.form_id,
        )
        try:
            return await self._run(submission, contact, form, company, slog, timer)
        except StaleWriteError as exc:
            current = await self._submissions.get(submission.submission_id) or submission
            slog.warning(
                "Agent run stopped: submission changed underneath it",
                status=current.status.value,
                error=exc.message,
            )
            return AgentOutcome(current, elapsed_ms=timer.stop())

    async def _run(
        self,
        submission: Submission,
        contact: Contact | None,
        form: FormDefinition,
        company: Company | None,
        slog: StructuredLogger,
        timer: Timer,
    ) -> AgentOutcome:
        submission = await self._ensure_owned(submission)
        plan, submission = await self._obtain_plan(submission, contact, company, form, slog)
        if plan is None:
            return AgentOutcome(submission, elapsed_ms=timer.stop())

        # The decision call can outlive the stale-work window.
        submission = await self._ensure_owned(submission)
        valid, blocked = await self._screen_actions(submission, form, plan, slog)

        if form.trust_level == TrustLevel.DRAFT:
            return await self._save_draft(submission, form, plan, valid, blocked, timer)

        results: tuple[ActionResult, ...] = ()
        review_due_at = None

        if form.trust_level == TrustLevel.OBSERVE_ONLY:
            await self._notify_handler(submission, plan.rationale, slog)
        else:
            submission, results = await self._executor.run_all(submission, contact, form, valid)
            if form.trust_level == TrustLevel.EXECUTE_WITH_WINDOW:
                review_due_at = self._clock() + self.review_window_seconds
            if contact is not None and not plan.contact_updates.empty:
                await self._identity.update_contact(
                    submission.tenant_id,
                    contact.contact_id,
                    tags=list(plan.contact_updates.tags_to_add),
                    note=plan.contact_updates.note,
                )

        submission = await self._submissions.update(
            submission.with_updates(agent_summary=plan.rationale, review_due_at=review_due_at).transition_to(
                SubmissionStatus.PROCESSED, now=self._clock()
            )
        )
        elapsed_ms = timer.stop()
        await self._emitter.emit(
            EventType.AGENT_COMPLETED,
            tenant_id=submission.tenant_id,
            submission_id=submission.submission_id,
            data={
                "action_count": len(results),
                "elapsed_ms": round(elapsed_ms, 1),
                "trust_level": form.trust_level.value,
                "blocked": list(blocked),
                "review_due_at": review_due_at,
            },
        )
        slog.info("Agent run completed", action_count=len(results), elapsed_ms=round(elapsed_ms, 1))
        return AgentOutcome(submission, executed=results, blocked=blocked, elapsed_ms=elapsed_ms)

    async def _ensure_owned(self, submission: Submission) -> Submission:
        """Re-read the submission and check this run may still write it.

        Raises:
            StaleWriteError: It left ``processing`` or was written by someone else
        """
        stored = await self._submissions.get(submission.submission_id)
        if stored is None or stored.version != submission.version or stored.status != SubmissionStatus.PROCESSING:
            raise StaleWriteError(
                f"Submission {submission.submission_id} is no longer owned by this run",
                details={
                    "submission_id": submission.submission_id,
                    "stored_status": stored.status.value if stored else None,
                },
            )
        return stored

    async def _obtain_plan(
        self,
        submission: Submission,
        contact: Contact | None,
        company: Company | None,
        form: FormDefinition,
        slog: StructuredLogger,
    ) -> tuple[Plan | None, Submission]:
        """Decide and parse, with one strict re-request on a parse failure."""
        for strict in (False, True):
            request = self._prompts.build(submission, contact, company, form, strict=strict)
            submission, raw = await self._recovery.decide(self._decision, request, submission, form)
            if raw is None:
                return None, submission
            try:
                return parse_plan(raw), submission
            except PlanParseError as exc:
                error = exc
                slog.warning("Plan could not be parsed", strict=strict, error=exc.message)

        submission = await self._submissions.update(
            submission.with_error(
                ErrorRecord(
                    error_type=ErrorType.UNPARSABLE_PLAN,
                    attempt=2,
                    resolution="needs_human_review",
                    detail=error.message,
                    occurred_at=self._clock(),
                )
            ).transition_to(SubmissionStatus.NEEDS_HUMAN_REVIEW, now=self._clock())
        )
        await self._emitter.emit(
            EventType.AGENT_ERROR,
            tenant_id=submission.tenant_id,
            submission_id=submission.submission_id,
            data={"error_type": ErrorType.UNPARSABLE_PLAN.value, "message": error.message},
        )
        return None, submission

    async def _screen_actions(
        self,
        submission: Submission,
        form: FormDefinition,
        plan: Plan,
        slog: StructuredLogger,
    ) -> tuple[tuple[ProposedAction, ...], tuple[str, ...]]:
        allowed = sorted(a.value for a in form.allowed_actions)
        valid: list[ProposedAction] = []
        blocked: list[str] = []
        for action in plan.actions:
            if action.name in allowed:
                valid.append(action)
                continue
            blocked.append(action.name)
            slog.log_blocked_action(action.name, allowed)
            await self._emitter.emit(
                EventType.AGENT_ACTION_BLOCKED,
                tenant_id=submission.tenant_id,
                submission_id=submission.submission_id,
                data={"action": action.name, "allowed": allowed},
            )
        return tuple(valid), tuple(blocked)

    async def _save_draft(
        self,
        submission: Submission,
        form: FormDefinition,
        plan: Plan,
        valid: tuple[ProposedAction, ...],
        blocked: tuple[str, ...],
        timer: Timer,
    ) -> AgentOutcome:
        draft = await self._drafts.create(
            Draft(
                submission_id=submission.submission_id,
                tenant_id=submission.tenant_id,
                actions=valid,
                contact_updates=plan.contact_updates,
                rationale=plan.rationale,
                created_at=self._clock(),
            )
        )
        submission = await self._submissions.update(
            submission.with_updates(agent_summary=plan.rationale).transition_to(
                SubmissionStatus.PENDING_APPROVAL, now=self._clock()
            )
        )
        await self._emitter.emit(
            EventType.AGENT_DRAFT,
            tenant_id=submission.tenant_id,
            submission_id=submission.submission_id,
            data={"draft_id": draft.draft_id, "action_count": len(valid)},
        )
        await self._notify_handler(
            submission,
            f"Draft {draft.draft_id} awaits approval: {plan.rationale}",
            log.bind(tenant_id=submission.tenant_id, submission_id=submission.submission_id),
        )
        return AgentOutcome(submission, blocked=blocked, draft_id=draft.draft_id, elapsed_ms=timer.stop())

    async def _notify_handler(self, submission: Submission, message: str, slog: StructuredLogger) -> None:
        if submission.handler is None:
            return
        try:
            await self._notifier.notify_handler(submission.handler, submission, message)
        except Exception as exc:
            slog.log_error(exc, "Handler notification failed", handler_id=submission.handler.handler_id)


__all__ = ["AgentExecutionLoop"]
