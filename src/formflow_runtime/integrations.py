"""
Downstream collaborators.

Email delivery, the CRM and the marketing-sequence scheduler live outside
this core. They are reached through the interfaces below. The in-memory
implementations record every call and hand back generated entity refs.
"""

from __future__ import annotations

import asyncio
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from .identity.types import Contact
from .routing.types import HandlerRef
from .submissions.types import Submission


class Notifier(ABC):
    @abstractmethod
    async def send_confirmation(self, submission: Submission, to_email: str, message: str) -> str:
        """Send the submitter's confirmation. Returns a message ref."""
        ...

    @abstractmethod
    async def notify_handler(self, handler: HandlerRef, submission: Submission, message: str) -> str:
        ...

    @abstractmethod
    async def send_message(self, to_email: str, subject: str, body: str) -> str:
        ...


class CrmGateway(ABC):
    @abstractmethod
    async def log_activity(self, submission: Submission, contact: Contact | None) -> str:
        ...

    @abstractmethod
    async def create_ticket(self, submission: Submission, contact: Contact | None, details: dict[str, Any]) -> str:
        ...

    @abstractmethod
    async def create_task(self, submission: Submission, contact: Contact | None, details: dict[str, Any]) -> str:
        ...

    @abstractmethod
    async def create_deal(self, submission: Submission, contact: Contact | None, details: dict[str, Any]) -> str:
        ...

    @abstractmethod
    async def create_booking(self, submission: Submission, contact: Contact | None, details: dict[str, Any]) -> str:
        ...

    @abstractmethod
    async def score_contact(self, contact: Contact | None, score: float, reason: str | None) -> str:
        ...


class SequenceEnroller(ABC):
    @abstractmethod
    async def enroll(self, contact: Contact, sequence_id: str) -> str:
        """Enroll a contact in a marketing sequence. Returns an enrollment ref."""
        ...


@dataclass
class RecordedCall:
    operation: str
    ref: str
    args: dict[str, Any] = field(default_factory=dict)


class _Recorder:
    def __init__(self, prefix: str) -> None:
        self._prefix = prefix
        self.calls: list[RecordedCall] = []
        self._lock = asyncio.Lock()

    async def _record(self, operation: str, **args: Any) -> str:
        ref = f"{self._prefix}_{uuid.uuid4().hex[:12]}"
        async with self._lock:
            self.calls.append(RecordedCall(operation=operation, ref=ref, args=args))
        return ref

    def calls_for(self, operation: str) -> list[RecordedCall]:
        return [c for c in self.calls if c.operation == operation]


class InMemoryNotifier(_Recorder, Notifier):
    def __init__(self) -> None:
        super().__init__("msg")

    async def send_confirmation(self, submission: Submission, to_email: str, message: str) -> str:
        return await self._record(
            "send_confirmation",
            submission_id=submission.submission_id,
            to=to_email,
            message=message,
        )

    async def notify_handler(self, handler: HandlerRef, submission: Submission, message: str) -> str:
        return await self._record(
            "notify_handler",
            submission_id=submission.submission_id,
            handler_id=handler.handler_id,
            message=message,
        )

    async def send_message(self, to_email: str, subject: str, body: str) -> str:
        return await self._record("send_message", to=to_email, subject=subject, body=body)


class InMemoryCrm(_Recorder, CrmGateway):
    def __init__(self) -> None:
        super().__init__("crm")

    async def log_activity(self, submission: Submission, contact: Contact | None) -> str:
        return await self._record(
            "log_activity",
            submission_id=submission.submission_id,
            contact_id=contact.contact_id if contact else None,
        )

    async def create_ticket(self, submission: Submission, contact: Contact | None, details: dict[str, Any]) -> str:
        return await self._record("create_ticket", submission_id=submission.submission_id, details=details)

    async def create_task(self, submission: Submission, contact: Contact | None, details: dict[str, Any]) -> str:
        return await self._record("create_task", submission_id=submission.submission_id, details=details)

    async def create_deal(self, submission: Submission, contact: Contact | None, details: dict[str, Any]) -> str:
        return await self._record("create_deal", submission_id=submission.submission_id, details=details)

    async def create_booking(self, submission: Submission, contact: Contact | None, details: dict[str, Any]) -> str:
        return await self._record("create_booking", submission_id=submission.submission_id, details=details)

    async def score_contact(self, contact: Contact | None, score: float, reason: str | None) -> str:
        return await self._record(
            "score_contact",
            contact_id=contact.contact_id if contact else None,
            score=score,
            reason=reason,
        )


class InMemorySequenceEnroller(_Recorder, SequenceEnroller):
    def __init__(self) -> None:
        super().__init__("enr")

    async def enroll(self, contact: Contact, sequence_id: str) -> str:
        return await self._record("enroll", contact_id=contact.contact_id, sequence_id=sequence_id)


@dataclass
class Integrations:
    notifier: Notifier = field(default_factory=InMemoryNotifier)
    crm: CrmGateway = field(default_factory=InMemoryCrm)
    sequences: SequenceEnroller = field(default_factory=InMemorySequenceEnroller)


__all__ = [
    "Notifier",
    "CrmGateway",
    "SequenceEnroller",
    "RecordedCall",
    "InMemoryNotifier",
    "InMemoryCrm",
    "InMemorySequenceEnroller",
    "Integrations",
]
