"""
Intake: synchronous checks that decide the submitter's response.
"""

from .abuse import (
    AbuseLogEntry,
    AbuseLogStore,
    AbuseReason,
    AbuseScreen,
    InMemoryAbuseLogStore,
    ScreenInput,
)
from .gate import IntakeGate, IntakeResult, origin_allowed

__all__ = [
    "AbuseLogEntry",
    "AbuseLogStore",
    "AbuseReason",
    "AbuseScreen",
    "InMemoryAbuseLogStore",
    "ScreenInput",
    "IntakeGate",
    "IntakeResult",
    "origin_allowed",
]
