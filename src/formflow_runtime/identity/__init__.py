"""
Contact and company resolution.
"""

from .types import INFO_FIELDS, Company, Contact, Resolution, Touchpoint, company_key
from .store import IdentityStore, InMemoryIdentityStore
from .resolver import IdentityResolver

__all__ = [
    "INFO_FIELDS",
    "Company",
    "Contact",
    "Resolution",
    "Touchpoint",
    "company_key",
    "IdentityStore",
    "InMemoryIdentityStore",
    "IdentityResolver",
]
