"""
Retry policy and escalation for the agent loop.

Decision-service failures are retried on a fixed schedule. Every failed
attempt appends one ErrorRecord and emits ``agent_error``; every retry
emits ``agent_retry`` with its delay. When attempts run out, or the
failure is not retryable, the submission is escalated: it moves to
``needs_human_review``, the fallback handler is notified, and one
``agent_escalated`` event is emitted.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..errors import DecisionServiceError, DecisionTimeoutError
from ..events import EventEmitter, EventType
from ..forms.types import FormDefinition
from ..integrations import Notifier
from ..logging import get_logger
from ..routing.router import HandlerRouter
from ..submissions.store import SubmissionStore
from ..submissions.types import ErrorRecord, ErrorType, Submission, SubmissionStatus

if TYPE_CHECKING:
    from ..agent.decision import DecisionRequest, DecisionService

log = get_logger("formflow_runtime.recovery")


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed backoff schedule. Waits are taken from ``backoff`` in order."""

    attempts: int = 3
    backoff: tuple[float, ...] = (2.0, 4.0, 8.0)

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")
        if not self.backoff:
            raise ValueError("backoff must not be empty")

    def delay_after(self, attempt: int) -> float:
        """Wait before the attempt following ``attempt`` (1-based)."""
        return self.backoff[min(attempt - 1, len(self.backoff) - 1)]


class RecoveryManager:
    def __init__(
        self,
        submissions: SubmissionStore,
        emitter: EventEmitter,
        router: HandlerRouter,
        notifier: Notifier,
        *,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._submissions = submissions
        self._emitter = emitter
        self._router = router
        self._notifier = notifier
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._clock = clock

    async def decide(
        self,
        service: DecisionService,
        request: DecisionRequest,
        submission: Submission,
        form: FormDefinition,
    ) -> tuple[Submission, str | None]:
        """Call the decision service under the retry policy.

        Returns the updated submission and the raw plan, or ``None`` as
        the plan when the submission was escalated.
        """
        slog = log.bind(tenant_id=submission.tenant_id, submission_id=submission.submission_id)

        for attempt in range(1, self.policy.attempts + 1):
            try:
                return submission, await service.decide(request)
            except DecisionServiceError as exc:
                error: DecisionServiceError = exc
            except Exception as exc:
                error = DecisionServiceError(f"Unexpected decision failure: {exc}", cause=exc)

            will_retry = error.retryable and attempt < self.policy.attempts
            submission = await self._submissions.update(
                submission.with_error(
                    ErrorRecord(
                        error_type=(
                            ErrorType.DECISION_TIMEOUT
                            if isinstance(error, DecisionTimeoutError)
                            else ErrorType.DECISION_ERROR
                        ),
                        attempt=attempt,
                        resolution="retry" if will_retry else "escalated",
                        detail=error.message,
                        occurred_at=self._clock(),
                    )
                )
            )
            await self._emitter.emit(
                EventType.AGENT_ERROR,
                tenant_id=submission.tenant_id,
                submission_id=submission.submission_id,
                data={
                    "attempt": attempt,
                    "code": error.code.value,
                    "message": error.message,
                    "retryable": error.retryable,
                },
            )
            if not will_retry:
                break

            delay = self.policy.delay_after(attempt)
            slog.info("Retrying decision service", attempt=attempt + 1, delay=delay)
            await self._emitter.emit(
                EventType.AGENT_RETRY,
                tenant_id=submission.tenant_id,
                submission_id=submission.submission_id,
                data={"attempt": attempt + 1, "delay": delay},
            )
            await self._sleep(delay)

        submission = await self.escalate(submission, form, reason="decision service failed")
        return submission, None

    async def escalate(
        self,
        submission: Submission,
        form: FormDefinition | None,
        *,
        reason: str,
        status: SubmissionStatus = SubmissionStatus.NEEDS_HUMAN_REVIEW,
    ) -> Submission:
        """Hand a submission to humans: set status, notify fallback, emit.

        Raises:
            StaleWriteError: If the submission changed since it was read.
                Nothing is notified or emitted then.
        """
        submission = await self.mark(submission, status)
        await self.announce(submission, form, reason=reason, status=status)
        return submission

    async def mark(self, submission: Submission, status: SubmissionStatus) -> Submission:
        """Persist the escalated status, if the record is still the one read."""
        return await self._submissions.update(submission.transition_to(status, now=self._clock()))

    async def announce(
        self,
        submission: Submission,
        form: FormDefinition | None,
        *,
        reason: str,
        status: SubmissionStatus,
    ) -> None:
        """Notify the fallback handler and emit ``agent_escalated``."""
        notified = await self.notify_fallback(submission, form, reason)
        await self._emitter.emit(
            EventType.AGENT_ESCALATED,
            tenant_id=submission.tenant_id,
            submission_id=submission.submission_id,
            data={"reason": reason, "status": status.value, "notified": notified},
        )
        log.bind(tenant_id=submission.tenant_id, submission_id=submission.submission_id).error(
            "Submission escalated",
            reason=reason,
            status=status.value,
        )

    async def notify_fallback(
        self,
        submission: Submission,
        form: FormDefinition | None,
        reason: str,
    ) -> str | None:
        """Notify the group's fallback handler. Returns its id, if any."""
        group_id = form.handler_group_id if form else None
        fallback = await self._router.fallback_for(submission.tenant_id, group_id)
        if fallback is None:
            log.bind(tenant_id=submission.tenant_id, submission_id=submission.submission_id).warning(
                "No fallback handler to notify",
                group_id=group_id,
            )
            return None
        await self._notifier.notify_handler(
            fallback,
            submission,
            f"Submission {submission.submission_id} needs attention: {reason}",
        )
        return fallback.handler_id


__all__ = [
    "RetryPolicy",
    "RecoveryManager",
]
