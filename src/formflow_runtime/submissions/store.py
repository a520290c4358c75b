"""
Submission store implementations.

This module provides the SubmissionStore interface and the in-memory
implementation, including the window queries the abuse screen needs.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace

from ..errors import NotFoundError, StaleWriteError
from .types import StepOutcome, Submission, SubmissionStatus


@dataclass
class SubmissionFilter:
    """Filter criteria for listing submissions."""

    tenant_id: str | None = None
    form_id: str | None = None
    status: SubmissionStatus | set[SubmissionStatus] | None = None
    ip: str | None = None
    email: str | None = None
    received_after: float | None = None
    limit: int = 100

    def matches(self, submission: Submission) -> bool:
        if self.tenant_id and submission.tenant_id != self.tenant_id:
            return False
        if self.form_id and submission.form_id != self.form_id:
            return False
        if self.ip and submission.metadata.ip != self.ip:
            return False
        if self.email and submission.email != self.email:
            return False
        if self.received_after is not None and submission.received_at < self.received_after:
            return False
        if self.status:
            if isinstance(self.status, set):
                if submission.status not in self.status:
                    return False
            elif submission.status != self.status:
                return False
        return True


def is_unassigned(submission: Submission) -> bool:
    """Received, and routing found nobody to hand it to."""
    if submission.status != SubmissionStatus.RECEIVED or not submission.step_log:
        return False
    return submission.step_log[-1].outcome == StepOutcome.UNASSIGNED


class SubmissionStore(ABC):
    """Abstract interface for submission persistence."""

    @abstractmethod
    async def create(self, submission: Submission) -> Submission:
        """Create a submission.

        Raises:
            ValueError: If submission_id already exists
        """
        ...

    @abstractmethod
    async def get(self, submission_id: str) -> Submission | None:
        ...

    @abstractmethod
    async def update(self, submission: Submission) -> Submission:
        """Replace a stored submission, if it is still the version read.

        Returns the stored copy with its version bumped.

        Raises:
            NotFoundError: If the submission doesn't exist
            StaleWriteError: If another writer updated it since it was read
        """
        ...

    @abstractmethod
    async def list(self, filter: SubmissionFilter | None = None) -> list[Submission]:
        """List submissions, newest first."""
        ...

    @abstractmethod
    async def count(self, filter: SubmissionFilter | None = None) -> int:
        ...

    async def unassigned(self, tenant_id: str, limit: int = 100) -> list[Submission]:
        received = await self.list(
            SubmissionFilter(tenant_id=tenant_id, status=SubmissionStatus.RECEIVED, limit=10_000)
        )
        return [s for s in received if is_unassigned(s)][:limit]

    async def stale_processing(self, started_before: float) -> list[Submission]:
        """Submissions in ``processing`` since before the cutoff."""
        processing = await self.list(SubmissionFilter(status=SubmissionStatus.PROCESSING, limit=10_000))
        return [
            s
            for s in processing
            if s.processing_started_at is not None and s.processing_started_at < started_before
        ]


class InMemorySubmissionStore(SubmissionStore):
    """In-memory submission store. Suitable for testing and single-process use."""

    def __init__(self) -> None:
        self._submissions: dict[str, Submission] = {}
        self._lock = asyncio.Lock()

    async def create(self, submission: Submission) -> Submission:
        async with self._lock:
            if submission.submission_id in self._submissions:
                raise ValueError(f"Submission {submission.submission_id} already exists")
            self._submissions[submission.submission_id] = submission
            return submission

    async def get(self, submission_id: str) -> Submission | None:
        async with self._lock:
            return self._submissions.get(submission_id)

    async def update(self, submission: Submission) -> Submission:
        async with self._lock:
            stored = self._submissions.get(submission.submission_id)
            if stored is None:
                raise NotFoundError(f"Submission {submission.submission_id} not found")
            if stored.version != submission.version:
                raise StaleWriteError(
                    f"Submission {submission.submission_id} changed since it was read",
                    details={
                        "submission_id": submission.submission_id,
                        "expected_version": submission.version,
                        "stored_version": stored.version,
                        "stored_status": stored.status.value,
                    },
                )
            updated = replace(submission, version=stored.version + 1)
            self._submissions[submission.submission_id] = updated
            return updated

    async def list(self, filter: SubmissionFilter | None = None) -> list[Submission]:
        filter = filter or SubmissionFilter()
        async with self._lock:
            matched = [s for s in self._submissions.values() if filter.matches(s)]
        matched.sort(key=lambda s: s.received_at, reverse=True)
        return matched[: filter.limit]

    async def count(self, filter: SubmissionFilter | None = None) -> int:
        filter = filter or SubmissionFilter()
        async with self._lock:
            return sum(1 for s in self._submissions.values() if filter.matches(s))


__all__ = [
    "SubmissionFilter",
    "SubmissionStore",
    "InMemorySubmissionStore",
    "is_unassigned",
]
