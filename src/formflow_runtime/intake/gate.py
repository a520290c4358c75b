"""
Intake gate.

Everything that must finish before the submitter gets a response happens
here, in a fixed order where the first failure wins:

1. form lookup
2. origin check
3. honeypot
4. variant resolution
5. field validation
6. rate and duplicate screening
7. persist and emit ``submission_received``

The gate never waits on background work.
"""

from __future__ import annotations

import random
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

from ..errors import (
    DuplicateSubmissionError,
    FormNotFoundError,
    IntakeRejection,
    InvalidSubmissionError,
    OriginForbiddenError,
    RateLimitedError,
)
from ..events import EventEmitter, EventType
from ..forms.schema import apply_variant, resolve_variant
from ..forms.store import FormStore
from ..forms.types import FormDefinition
from ..forms.validation import contact_values, validate_fields
from ..logging import get_logger
from ..submissions.store import SubmissionStore
from ..submissions.types import ClientMetadata, Submission
from .abuse import AbuseLogEntry, AbuseLogStore, AbuseReason, AbuseScreen, ScreenInput

log = get_logger("formflow_runtime.intake")


@dataclass(frozen=True)
class IntakeResult:
    """What the submitter is told.

    ``submission`` is None for a disguised honeypot rejection: the
    response looks like an acceptance but nothing was stored.
    """

    submission_id: str
    message: str
    redirect_url: str | None = None
    status_code: int = 200
    submission: Submission | None = None

    @property
    def accepted(self) -> bool:
        return self.submission is not None

    def to_response(self) -> dict[str, Any]:
        return {
            "submission_id": self.submission_id,
            "message": self.message,
            "redirect_url": self.redirect_url,
        }


def _host(value: str) -> str:
    value = value.strip().lower()
    if "://" in value:
        return (urlparse(value).hostname or "").lower()
    return value.split("/", 1)[0].split(":", 1)[0]


def origin_allowed(form: FormDefinition, origin: str | None) -> bool:
    """Check a request origin against the form's allow-list.

    An empty list allows everything. ``*.example.com`` allows subdomains
    of example.com; any other entry must match the host exactly.
    """
    if not form.allowed_origins:
        return True
    if not origin:
        return False
    host = _host(origin)
    for entry in form.allowed_origins:
        entry = entry.strip().lower()
        if entry.startswith("*."):
            if host.endswith(entry[1:]):
                return True
        elif host == _host(entry):
            return True
    return False


_REJECTIONS: dict[AbuseReason, Callable[[], IntakeRejection]] = {
    AbuseReason.IP_RATE_LIMIT: lambda: RateLimitedError(
        "Too many submissions from this address", scope="ip"
    ),
    AbuseReason.EMAIL_RATE_LIMIT: lambda: RateLimitedError(
        "Too many submissions for this email", scope="email"
    ),
    AbuseReason.DUPLICATE: lambda: DuplicateSubmissionError(
        "This submission was already received"
    ),
}


class IntakeGate:
    def __init__(
        self,
        forms: FormStore,
        submissions: SubmissionStore,
        abuse_log: AbuseLogStore,
        emitter: EventEmitter,
        *,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
    ) -> None:
        self._forms = forms
        self._submissions = submissions
        self._abuse_log = abuse_log
        self._emitter = emitter
        self._clock = clock
        self._rng = rng
        self._screen = AbuseScreen(submissions, clock=clock)

    async def accept(
        self,
        form_id: str,
        fields: dict[str, Any],
        metadata: ClientMetadata | None = None,
        telemetry: dict[str, Any] | None = None,
    ) -> IntakeResult:
        """Run a submission attempt through the gate.

        Raises:
            IntakeRejection: Any non-disguised rejection
        """
        metadata = metadata or ClientMetadata()

        form = await self._forms.get(form_id)
        if form is None or not form.active:
            log.bind(form_id=form_id).info("Unknown or inactive form", ip=metadata.ip)
            raise FormNotFoundError(form_id)

        flog = log.bind(tenant_id=form.tenant_id, form_id=form.form_id)

        if not origin_allowed(form, metadata.origin):
            flog.info("Origin not allowed", origin=metadata.origin, ip=metadata.ip)
            raise OriginForbiddenError(metadata.origin)

        if self._screen.honeypot_tripped(form, fields):
            await self._record_abuse(form, AbuseReason.HONEYPOT, ip=metadata.ip, email=None)
            return IntakeResult(
                submission_id=str(uuid.uuid4()),
                message=form.success_message,
                redirect_url=form.redirect_url,
            )

        variant = resolve_variant(form, metadata.variant_id, self._rng)
        schema = apply_variant(form, variant)
        if variant is not None:
            metadata = metadata.with_variant(variant.variant_id)
            await self._emitter.emit(
                EventType.EXPERIMENT_VARIANT,
                tenant_id=form.tenant_id,
                data={
                    "form_id": form.form_id,
                    "experiment_id": form.experiment.experiment_id if form.experiment else None,
                    "variant_id": variant.variant_id,
                },
            )
        else:
            metadata = metadata.with_variant(None)

        clean, errors = validate_fields(schema.fields, fields)
        if errors:
            flog.info("Submission failed validation", fields=sorted(errors))
            raise InvalidSubmissionError(errors)

        email = contact_values(schema.fields, clean).get("email")
        reason = await self._screen.screen(
            ScreenInput(form=form, raw_fields=fields, ip=metadata.ip, email=email)
        )
        if reason is not None:
            await self._record_abuse(form, reason, ip=metadata.ip, email=email)
            raise _REJECTIONS[reason]()

        submission = Submission(
            tenant_id=form.tenant_id,
            form_id=form.form_id,
            fields=clean,
            metadata=metadata,
            telemetry=dict(telemetry or {}),
            email=email,
            received_at=self._clock(),
        )
        await self._submissions.create(submission)
        if metadata.variant_id:
            await self._forms.record_submission(form.form_id, metadata.variant_id)

        await self._emitter.emit(
            EventType.SUBMISSION_RECEIVED,
            tenant_id=form.tenant_id,
            submission_id=submission.submission_id,
            data={"form_id": form.form_id, "variant_id": metadata.variant_id},
        )
        flog.bind(submission_id=submission.submission_id).info("Submission accepted")

        return IntakeResult(
            submission_id=submission.submission_id,
            message=form.success_message,
            redirect_url=form.redirect_url,
            submission=submission,
        )

    async def _record_abuse(
        self,
        form: FormDefinition,
        reason: AbuseReason,
        *,
        ip: str | None,
        email: str | None,
    ) -> None:
        occurred_at = self._clock()
        await self._abuse_log.append(
            AbuseLogEntry(
                tenant_id=form.tenant_id,
                form_id=form.form_id,
                reason=reason,
                ip=ip,
                email=email,
                occurred_at=occurred_at,
            )
        )
        log.bind(tenant_id=form.tenant_id, form_id=form.form_id).log_rejection(
            reason.value, ip=ip, occurred_at=occurred_at
        )
        await self._emitter.emit(
            EventType.SPAM_BLOCKED,
            tenant_id=form.tenant_id,
            data={"form_id": form.form_id, "reason": reason.value, "ip": ip},
        )


__all__ = [
    "IntakeGate",
    "IntakeResult",
    "origin_allowed",
]
