"""
Drafts: agent plans awaiting a human decision.

Approving a draft executes its actions with the usual per-action retry,
applies its contact updates and closes the submission. Rejecting it
closes the submission without executing anything. Either way the draft
changes state exactly once.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Callable

from ..errors import DraftStateError, NotFoundError
from ..events import EventEmitter, EventType
from ..forms.store import FormStore
from ..identity.resolver import IdentityResolver
from ..locks import KeyedLock
from ..logging import get_logger
from ..submissions.store import SubmissionStore
from ..submissions.types import Submission, SubmissionStatus
from .actions import ActionExecutor
from .types import Draft, DraftStatus

log = get_logger("formflow_runtime.agent.drafts")


class DraftStore(ABC):
    @abstractmethod
    async def create(self, draft: Draft) -> Draft:
        ...

    @abstractmethod
    async def get(self, draft_id: str) -> Draft | None:
        ...

    @abstractmethod
    async def update(self, draft: Draft) -> Draft:
        ...

    @abstractmethod
    async def for_submission(self, submission_id: str) -> list[Draft]:
        ...


class InMemoryDraftStore(DraftStore):
    def __init__(self) -> None:
        self._drafts: dict[str, Draft] = {}
        self._lock = asyncio.Lock()

    async def create(self, draft: Draft) -> Draft:
        async with self._lock:
            if draft.draft_id in self._drafts:
                raise ValueError(f"Draft {draft.draft_id} already exists")
            self._drafts[draft.draft_id] = draft
            return draft

    async def get(self, draft_id: str) -> Draft | None:
        async with self._lock:
            return self._drafts.get(draft_id)

    async def update(self, draft: Draft) -> Draft:
        async with self._lock:
            if draft.draft_id not in self._drafts:
                raise NotFoundError(f"Draft {draft.draft_id} not found")
            self._drafts[draft.draft_id] = draft
            return draft

    async def for_submission(self, submission_id: str) -> list[Draft]:
        async with self._lock:
            return [d for d in self._drafts.values() if d.submission_id == submission_id]


class DraftManager:
    def __init__(
        self,
        drafts: DraftStore,
        submissions: SubmissionStore,
        forms: FormStore,
        identity: IdentityResolver,
        executor: ActionExecutor,
        emitter: EventEmitter,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._drafts = drafts
        self._submissions = submissions
        self._forms = forms
        self._identity = identity
        self._executor = executor
        self._emitter = emitter
        self._clock = clock
        self._locks = KeyedLock()

    @property
    def store(self) -> DraftStore:
        return self._drafts

    async def create(self, draft: Draft) -> Draft:
        return await self._drafts.create(draft)

    async def _load(self, tenant_id: str, draft_id: str) -> tuple[Draft, Submission]:
        draft = await self._drafts.get(draft_id)
        if draft is None or draft.tenant_id != tenant_id:
            raise NotFoundError(f"Draft {draft_id} not found")
        submission = await self._submissions.get(draft.submission_id)
        if submission is None:
            raise NotFoundError(f"Submission {draft.submission_id} not found")
        if draft.status == DraftStatus.PENDING and submission.status != SubmissionStatus.PENDING_APPROVAL:
            raise DraftStateError(
                f"Submission {submission.submission_id} is {submission.status.value}, not awaiting approval",
                details={"draft_id": draft_id},
            )
        return draft, submission

    async def approve(self, tenant_id: str, draft_id: str, actor: str) -> Draft:
        """Execute a pending draft.

        Raises:
            NotFoundError: Unknown draft for this tenant
            DraftStateError: Draft already decided
        """
        async with self._locks.hold(draft_id):
            draft, submission = await self._load(tenant_id, draft_id)
            draft = draft.resolve(DraftStatus.APPROVED, actor=actor, now=self._clock())

            form = await self._forms.get(submission.form_id)
            if form is None:
                raise NotFoundError(f"Form {submission.form_id} not found")
            contact = None
            if submission.contact_id:
                contact = await self._identity.store.get_contact(tenant_id, submission.contact_id)

            submission, results = await self._executor.run_all(submission, contact, form, draft.actions)
            if contact is not None and not draft.contact_updates.empty:
                await self._identity.update_contact(
                    tenant_id,
                    contact.contact_id,
                    tags=list(draft.contact_updates.tags_to_add),
                    note=draft.contact_updates.note,
                )

            await self._submissions.update(
                submission.transition_to(SubmissionStatus.PROCESSED, now=self._clock())
            )
            draft = await self._drafts.update(draft)

        await self._emitter.emit(
            EventType.HUMAN_APPROVED,
            tenant_id=tenant_id,
            submission_id=draft.submission_id,
            data={
                "draft_id": draft.draft_id,
                "actor": actor,
                "action_count": len(results),
                "failed": [r.action for r in results if not r.success],
            },
        )
        log.bind(tenant_id=tenant_id, submission_id=draft.submission_id).info(
            "Draft approved", draft_id=draft_id, actor=actor
        )
        return draft

    async def reject(self, tenant_id: str, draft_id: str, actor: str, reason: str | None = None) -> Draft:
        """Close a pending draft without executing it."""
        async with self._locks.hold(draft_id):
            draft, submission = await self._load(tenant_id, draft_id)
            draft = draft.resolve(DraftStatus.REJECTED, actor=actor, note=reason, now=self._clock())
            await self._submissions.update(
                submission.transition_to(SubmissionStatus.PROCESSED, now=self._clock())
            )
            draft = await self._drafts.update(draft)

        await self._emitter.emit(
            EventType.HUMAN_REJECTED,
            tenant_id=tenant_id,
            submission_id=draft.submission_id,
            data={"draft_id": draft.draft_id, "actor": actor, "reason": reason},
        )
        log.bind(tenant_id=tenant_id, submission_id=draft.submission_id).info(
            "Draft rejected", draft_id=draft_id, actor=actor
        )
        return draft


__all__ = [
    "DraftStore",
    "InMemoryDraftStore",
    "DraftManager",
]
