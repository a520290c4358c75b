"""
Retry, escalation and the stale-work backstop.
"""

from .policy import RecoveryManager, RetryPolicy
from .sweeper import StaleWorkSweeper

__all__ = [
    "RecoveryManager",
    "RetryPolicy",
    "StaleWorkSweeper",
]
