"""
Stale-work sweeper.

Catches submissions whose background unit of work died: anything still in
``processing`` after ``stale_after_seconds`` is marked ``failed``, gets a
``stale_work`` error record, and is escalated to the fallback handler.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

from ..errors import StaleWriteError
from ..events import EventEmitter, EventType
from ..forms.store import FormStore
from ..logging import get_logger
from ..submissions.store import SubmissionStore
from ..submissions.types import ErrorRecord, ErrorType, SubmissionStatus
from .policy import RecoveryManager

log = get_logger("formflow_runtime.recovery.sweeper")


class StaleWorkSweeper:
    def __init__(
        self,
        submissions: SubmissionStore,
        forms: FormStore,
        recovery: RecoveryManager,
        emitter: EventEmitter,
        *,
        stale_after_seconds: float = 900,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._submissions = submissions
        self._forms = forms
        self._recovery = recovery
        self._emitter = emitter
        self.stale_after_seconds = stale_after_seconds
        self._clock = clock
        self._stop = asyncio.Event()

    async def sweep(self) -> list[str]:
        """Fail every stale submission. Returns the ids that were failed."""
        now = self._clock()
        stale = await self._submissions.stale_processing(now - self.stale_after_seconds)
        failed: list[str] = []

        for submission in stale:
            age = now - (submission.processing_started_at or now)
            try:
                submission = await self._recovery.mark(
                    submission.with_error(
                        ErrorRecord(
                            error_type=ErrorType.STALE_WORK,
                            resolution="failed",
                            detail=f"processing for {age:.0f}s",
                            occurred_at=now,
                        )
                    ),
                    SubmissionStatus.FAILED,
                )
            except StaleWriteError:
                log.bind(tenant_id=submission.tenant_id, submission_id=submission.submission_id).info(
                    "Submission moved on during sweep; skipped"
                )
                continue

            await self._emitter.emit(
                EventType.AGENT_ERROR,
                tenant_id=submission.tenant_id,
                submission_id=submission.submission_id,
                data={"error_type": ErrorType.STALE_WORK.value, "age_seconds": round(age, 1)},
            )
            form = await self._forms.get(submission.form_id)
            await self._recovery.announce(
                submission,
                form,
                reason="stale work",
                status=SubmissionStatus.FAILED,
            )
            failed.append(submission.submission_id)

        if failed:
            log.warning("Stale submissions failed", count=len(failed))
        return failed

    async def run_forever(self, interval: float) -> None:
        """Sweep now, then every ``interval`` seconds until ``stop`` is called."""
        while True:
            try:
                await self.sweep()
            except Exception as exc:
                log.log_error(exc, "Stale-work sweep failed")
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue
            return

    def stop(self) -> None:
        self._stop.set()

    def reset(self) -> None:
        """Re-arm after ``stop`` so ``run_forever`` can run again."""
        self._stop.clear()


__all__ = ["StaleWorkSweeper"]
