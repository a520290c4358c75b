"""
Contact and company memory.

Contacts are unique per (tenant, normalized email). Their info fields are
fill-if-empty: once a value is stored it is never overwritten by a later
submission. Tags only grow; notes and touchpoints are append-only.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Any

INFO_FIELDS = ("first_name", "last_name", "phone", "job_title", "website", "company_name")


@dataclass(frozen=True)
class Touchpoint:
    """Attribution record appended on every submission."""

    submission_id: str
    form_id: str
    campaign: dict[str, str] = field(default_factory=dict)
    referrer: str | None = None
    variant_id: str | None = None
    occurred_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "submission_id": self.submission_id,
            "form_id": self.form_id,
            "campaign": dict(self.campaign),
            "referrer": self.referrer,
            "variant_id": self.variant_id,
            "occurred_at": self.occurred_at,
        }


@dataclass(frozen=True)
class Contact:
    contact_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    tenant_id: str = ""
    email: str = ""
    status: str = "lead"

    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    job_title: str | None = None
    website: str | None = None
    company_name: str | None = None
    company_id: str | None = None

    tags: frozenset[str] = frozenset()
    notes: tuple[str, ...] = ()
    touchpoints: tuple[Touchpoint, ...] = ()

    submission_count: int = 0
    created_at: float = field(default_factory=time.time)
    last_seen_at: float | None = None

    def merge_info(self, values: dict[str, Any]) -> Contact:
        """Fill info fields that are currently empty. Set values never change."""
        updates = {}
        for name in INFO_FIELDS:
            incoming = values.get(name)
            if incoming in (None, ""):
                continue
            if getattr(self, name) in (None, ""):
                updates[name] = str(incoming)
        return replace(self, **updates) if updates else self

    def record_submission(self, touchpoint: Touchpoint) -> Contact:
        return replace(
            self,
            submission_count=self.submission_count + 1,
            last_seen_at=touchpoint.occurred_at,
            touchpoints=self.touchpoints + (touchpoint,),
        )

    def link_company(self, company_id: str) -> Contact:
        if self.company_id:
            return self
        return replace(self, company_id=company_id)

    def with_tags(self, tags: list[str] | tuple[str, ...]) -> Contact:
        cleaned = {t.strip() for t in tags if t and t.strip()}
        if cleaned <= self.tags:
            return self
        return replace(self, tags=self.tags | cleaned)

    def with_note(self, note: str | None) -> Contact:
        if not note or not note.strip():
            return self
        return replace(self, notes=self.notes + (note.strip(),))

    def recent_touchpoints(self, limit: int) -> tuple[Touchpoint, ...]:
        if limit <= 0:
            return ()
        return self.touchpoints[-limit:]

    @property
    def display_name(self) -> str:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) or self.email

    def to_dict(self) -> dict[str, Any]:
        return {
            "contact_id": self.contact_id,
            "tenant_id": self.tenant_id,
            "email": self.email,
            "status": self.status,
            **{name: getattr(self, name) for name in INFO_FIELDS},
            "company_id": self.company_id,
            "tags": sorted(self.tags),
            "notes": list(self.notes),
            "touchpoints": [t.to_dict() for t in self.touchpoints],
            "submission_count": self.submission_count,
            "created_at": self.created_at,
            "last_seen_at": self.last_seen_at,
        }


def company_key(name: str) -> str:
    return " ".join(name.split()).lower()


@dataclass(frozen=True)
class Company:
    company_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    tenant_id: str = ""
    name: str = ""
    created_at: float = field(default_factory=time.time)

    @property
    def key(self) -> str:
        return company_key(self.name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "company_id": self.company_id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class Resolution:
    contact: Contact | None = None
    is_new_contact: bool = False
    company: Company | None = None

    @classmethod
    def empty(cls) -> Resolution:
        return cls()

    @property
    def resolved(self) -> bool:
        return self.contact is not None


__all__ = [
    "INFO_FIELDS",
    "Touchpoint",
    "Contact",
    "Company",
    "company_key",
    "Resolution",
]
