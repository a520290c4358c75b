"""
Submission records and their lifecycle.
"""

from .types import (
    VALID_TRANSITIONS,
    ClientMetadata,
    ErrorRecord,
    ErrorType,
    StepLogEntry,
    StepOutcome,
    Submission,
    SubmissionStatus,
)
from .store import InMemorySubmissionStore, SubmissionFilter, SubmissionStore, is_unassigned

__all__ = [
    "VALID_TRANSITIONS",
    "ClientMetadata",
    "ErrorRecord",
    "ErrorType",
    "StepLogEntry",
    "StepOutcome",
    "Submission",
    "SubmissionStatus",
    "SubmissionFilter",
    "SubmissionStore",
    "InMemorySubmissionStore",
    "is_unassigned",
]
