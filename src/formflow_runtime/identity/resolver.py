"""
Identity resolver.

Matches a submission to a contact by normalized email, merging the
submitted info fill-if-empty, and to a company by case-insensitive name.
Read-modify-write of one contact is serialized per (tenant, email), and
company creation per (tenant, company name), so concurrent submissions
from one person never create two contacts.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from ..events import EventEmitter, EventType
from ..forms.schema import apply_variant
from ..forms.types import FormDefinition
from ..forms.validation import contact_values
from ..locks import KeyedLock
from ..logging import get_logger
from ..submissions.types import Submission
from .store import IdentityStore
from .types import Company, Contact, Resolution, Touchpoint, company_key

log = get_logger("formflow_runtime.identity")


class IdentityResolver:
    def __init__(
        self,
        store: IdentityStore,
        emitter: EventEmitter,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._emitter = emitter
        self._clock = clock
        self._locks = KeyedLock()

    @property
    def store(self) -> IdentityStore:
        return self._store

    async def resolve(self, submission: Submission, form: FormDefinition) -> Resolution:
        """Match or create the submitter's contact and company.

        Returns ``Resolution.empty()`` when the submission has no email.
        """
        email = submission.email
        if not email:
            return Resolution.empty()

        tenant_id = submission.tenant_id
        values = contact_values(self._schema_for(submission, form).fields, submission.fields)
        now = self._clock()
        touchpoint = Touchpoint(
            submission_id=submission.submission_id,
            form_id=submission.form_id,
            campaign=submission.metadata.campaign,
            referrer=submission.metadata.referrer,
            variant_id=submission.metadata.variant_id,
            occurred_at=now,
        )

        company = None
        company_name = values.get("company_name")
        if company_name:
            company = await self._resolve_company(tenant_id, str(company_name))

        async with self._locks.hold(("contact", tenant_id, email)):
            existing = await self._store.find_contact(tenant_id, email)
            is_new = existing is None
            contact = existing or Contact(tenant_id=tenant_id, email=email, created_at=now)
            contact = contact.merge_info(values).record_submission(touchpoint)
            if company is not None:
                contact = contact.link_company(company.company_id)
            await self._store.save_contact(contact)

        await self._emitter.emit(
            EventType.CONTACT_CREATED if is_new else EventType.CONTACT_MATCHED,
            tenant_id=tenant_id,
            submission_id=submission.submission_id,
            data={
                "contact_id": contact.contact_id,
                "company_id": contact.company_id,
                "submission_count": contact.submission_count,
            },
        )
        log.bind(tenant_id=tenant_id, submission_id=submission.submission_id).debug(
            "Contact resolved",
            contact_id=contact.contact_id,
            is_new=is_new,
        )
        return Resolution(contact=contact, is_new_contact=is_new, company=company)

    async def _resolve_company(self, tenant_id: str, name: str) -> Company:
        async with self._locks.hold(("company", tenant_id, company_key(name))):
            company = await self._store.find_company(tenant_id, name)
            if company is None:
                company = Company(tenant_id=tenant_id, name=name.strip(), created_at=self._clock())
                await self._store.save_company(company)
            return company

    @staticmethod
    def _schema_for(submission: Submission, form: FormDefinition) -> FormDefinition:
        if form.experiment is None:
            return form
        return apply_variant(form, form.experiment.get_variant(submission.metadata.variant_id))

    async def update_contact(
        self,
        tenant_id: str,
        contact_id: str,
        *,
        tags: list[str] | None = None,
        note: str | None = None,
    ) -> Contact | None:
        """Apply agent contact updates: add tags, append a note."""
        contact = await self._store.get_contact(tenant_id, contact_id)
        if contact is None:
            return None
        async with self._locks.hold(("contact", tenant_id, contact.email)):
            contact = await self._store.get_contact(tenant_id, contact_id)
            if contact is None:
                return None
            updated = contact.with_tags(tags or []).with_note(note)
            if updated is not contact:
                await self._store.save_contact(updated)
            return updated


__all__ = ["IdentityResolver"]
