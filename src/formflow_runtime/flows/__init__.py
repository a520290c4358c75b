"""
Named processing flows built from a shared step library.
"""

from .steps import STEP_LIBRARY, FlowContext, StepName, StepResult
from .dispatcher import FLOWS, FlowDispatcher, FlowOutcome

__all__ = [
    "STEP_LIBRARY",
    "FlowContext",
    "StepName",
    "StepResult",
    "FLOWS",
    "FlowDispatcher",
    "FlowOutcome",
]
