"""
Form storage.

Forms are addressed by id alone (the public intake resolves the tenant
from the form). The store also keeps per-form experiment counters.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod

from .experiments import ExperimentTally, VariantCounts
from .types import FormDefinition


class FormStore(ABC):
    """Abstract interface for form definitions and experiment tallies."""

    @abstractmethod
    async def get(self, form_id: str) -> FormDefinition | None:
        ...

    @abstractmethod
    async def save(self, form: FormDefinition) -> None:
        ...

    @abstractmethod
    async def record_view(self, form_id: str, variant_id: str) -> None:
        ...

    @abstractmethod
    async def record_submission(self, form_id: str, variant_id: str) -> None:
        ...

    @abstractmethod
    async def variant_counts(self, form_id: str) -> dict[str, VariantCounts]:
        ...


class InMemoryFormStore(FormStore):
    def __init__(self, forms: list[FormDefinition] | None = None) -> None:
        self._forms: dict[str, FormDefinition] = {f.form_id: f for f in forms or ()}
        self._tallies: dict[str, ExperimentTally] = {}
        self._lock = asyncio.Lock()

    async def get(self, form_id: str) -> FormDefinition | None:
        async with self._lock:
            return self._forms.get(form_id)

    async def save(self, form: FormDefinition) -> None:
        async with self._lock:
            self._forms[form.form_id] = form

    async def record_view(self, form_id: str, variant_id: str) -> None:
        async with self._lock:
            self._tallies.setdefault(form_id, ExperimentTally()).record_view(variant_id)

    async def record_submission(self, form_id: str, variant_id: str) -> None:
        async with self._lock:
            self._tallies.setdefault(form_id, ExperimentTally()).record_submission(variant_id)

    async def variant_counts(self, form_id: str) -> dict[str, VariantCounts]:
        async with self._lock:
            tally = self._tallies.get(form_id)
            return dict(tally.counts) if tally else {}


__all__ = [
    "FormStore",
    "InMemoryFormStore",
]
