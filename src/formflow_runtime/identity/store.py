"""
Contact and company storage.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod

from .types import Company, Contact, company_key


class IdentityStore(ABC):
    """Abstract interface for contacts and companies, scoped by tenant."""

    @abstractmethod
    async def get_contact(self, tenant_id: str, contact_id: str) -> Contact | None:
        ...

    @abstractmethod
    async def find_contact(self, tenant_id: str, email: str) -> Contact | None:
        """Look up by normalized email."""
        ...

    @abstractmethod
    async def save_contact(self, contact: Contact) -> None:
        ...

    @abstractmethod
    async def list_contacts(self, tenant_id: str) -> list[Contact]:
        ...

    @abstractmethod
    async def get_company(self, tenant_id: str, company_id: str) -> Company | None:
        ...

    @abstractmethod
    async def find_company(self, tenant_id: str, name: str) -> Company | None:
        """Look up by case-insensitive name."""
        ...

    @abstractmethod
    async def save_company(self, company: Company) -> None:
        ...


class InMemoryIdentityStore(IdentityStore):
    def __init__(self) -> None:
        self._contacts: dict[tuple[str, str], Contact] = {}
        self._email_index: dict[tuple[str, str], str] = {}
        self._companies: dict[tuple[str, str], Company] = {}
        self._company_index: dict[tuple[str, str], str] = {}
        self._lock = asyncio.Lock()

    async def get_contact(self, tenant_id: str, contact_id: str) -> Contact | None:
        async with self._lock:
            return self._contacts.get((tenant_id, contact_id))

    async def find_contact(self, tenant_id: str, email: str) -> Contact | None:
        async with self._lock:
            contact_id = self._email_index.get((tenant_id, email))
            return self._contacts.get((tenant_id, contact_id)) if contact_id else None

    async def save_contact(self, contact: Contact) -> None:
        async with self._lock:
            self._contacts[(contact.tenant_id, contact.contact_id)] = contact
            self._email_index[(contact.tenant_id, contact.email)] = contact.contact_id

    async def list_contacts(self, tenant_id: str) -> list[Contact]:
        async with self._lock:
            return [c for (t, _), c in self._contacts.items() if t == tenant_id]

    async def get_company(self, tenant_id: str, company_id: str) -> Company | None:
        async with self._lock:
            return self._companies.get((tenant_id, company_id))

    async def find_company(self, tenant_id: str, name: str) -> Company | None:
        async with self._lock:
            company_id = self._company_index.get((tenant_id, company_key(name)))
            return self._companies.get((tenant_id, company_id)) if company_id else None

    async def save_company(self, company: Company) -> None:
        async with self._lock:
            self._companies[(company.tenant_id, company.company_id)] = company
            self._company_index[(company.tenant_id, company.key)] = company.company_id


__all__ = [
    "IdentityStore",
    "InMemoryIdentityStore",
]
