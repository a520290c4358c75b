"""
Abuse screening for accepted-looking submissions.

The honeypot is checked on its own, before anything looks at field
values. The rest is a fixed, ordered chain: per-IP rate, per-email rate,
duplicate window. The first check that trips decides the reason.
Rate windows count accepted submissions only, so rejected attempts never
extend a block.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..forms.types import FormDefinition
from ..submissions.store import SubmissionFilter, SubmissionStore


class AbuseReason(str, Enum):
    HONEYPOT = "honeypot"
    IP_RATE_LIMIT = "ip_rate_limit"
    EMAIL_RATE_LIMIT = "email_rate_limit"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class AbuseLogEntry:
    tenant_id: str
    form_id: str
    reason: AbuseReason
    ip: str | None = None
    email: str | None = None
    occurred_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "form_id": self.form_id,
            "reason": self.reason.value,
            "ip": self.ip,
            "email": self.email,
            "occurred_at": self.occurred_at,
        }


class AbuseLogStore(ABC):
    @abstractmethod
    async def append(self, entry: AbuseLogEntry) -> None:
        ...

    @abstractmethod
    async def list(
        self,
        *,
        tenant_id: str | None = None,
        form_id: str | None = None,
        reason: AbuseReason | None = None,
    ) -> list[AbuseLogEntry]:
        ...


class InMemoryAbuseLogStore(AbuseLogStore):
    def __init__(self) -> None:
        self._entries: list[AbuseLogEntry] = []
        self._lock = asyncio.Lock()

    async def append(self, entry: AbuseLogEntry) -> None:
        async with self._lock:
            self._entries.append(entry)

    async def list(
        self,
        *,
        tenant_id: str | None = None,
        form_id: str | None = None,
        reason: AbuseReason | None = None,
    ) -> list[AbuseLogEntry]:
        async with self._lock:
            return [
                e
                for e in self._entries
                if (tenant_id is None or e.tenant_id == tenant_id)
                and (form_id is None or e.form_id == form_id)
                and (reason is None or e.reason == reason)
            ]


@dataclass(frozen=True)
class ScreenInput:
    form: FormDefinition
    raw_fields: dict[str, Any]
    ip: str | None
    email: str | None


class AbuseScreen:
    """Runs the abuse checks in order; ``None`` means the submission passes.

    A ceiling of 0 (or a duplicate window of 0) disables that check.
    """

    def __init__(
        self,
        submissions: SubmissionStore,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._submissions = submissions
        self._clock = clock
        self._checks = (
            self._check_ip_rate,
            self._check_email_rate,
            self._check_duplicate,
        )

    async def screen(self, item: ScreenInput) -> AbuseReason | None:
        for check in self._checks:
            reason = await check(item)
            if reason is not None:
                return reason
        return None

    @staticmethod
    def honeypot_tripped(form: FormDefinition, raw_fields: dict[str, Any]) -> bool:
        value = raw_fields.get(form.honeypot_field)
        return value is not None and bool(str(value).strip())

    async def _check_ip_rate(self, item: ScreenInput) -> AbuseReason | None:
        form = item.form
        if not item.ip or form.max_submissions_per_ip <= 0:
            return None
        count = await self._submissions.count(
            SubmissionFilter(
                form_id=form.form_id,
                ip=item.ip,
                received_after=self._clock() - form.rate_window_seconds,
            )
        )
        return AbuseReason.IP_RATE_LIMIT if count >= form.max_submissions_per_ip else None

    async def _check_email_rate(self, item: ScreenInput) -> AbuseReason | None:
        form = item.form
        if not item.email or form.max_submissions_per_email <= 0:
            return None
        count = await self._submissions.count(
            SubmissionFilter(
                form_id=form.form_id,
                email=item.email,
                received_after=self._clock() - form.rate_window_seconds,
            )
        )
        return AbuseReason.EMAIL_RATE_LIMIT if count >= form.max_submissions_per_email else None

    async def _check_duplicate(self, item: ScreenInput) -> AbuseReason | None:
        form = item.form
        if not item.email or form.duplicate_window_seconds <= 0:
            return None
        count = await self._submissions.count(
            SubmissionFilter(
                form_id=form.form_id,
                email=item.email,
                received_after=self._clock() - form.duplicate_window_seconds,
            )
        )
        return AbuseReason.DUPLICATE if count > 0 else None


__all__ = [
    "AbuseReason",
    "AbuseLogEntry",
    "AbuseLogStore",
    "InMemoryAbuseLogStore",
    "ScreenInput",
    "AbuseScreen",
]
