"""
Error taxonomy for formflow.

This module provides a hierarchical exception system with:
- Error codes for programmatic handling
- Retryable vs non-retryable classification
- HTTP-style statuses for rejections surfaced to submitters
- Structured details for logging and API bodies
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standardized error codes."""

    # Input errors (1xxx)
    FORM_NOT_FOUND = "ERR_1000"
    ORIGIN_FORBIDDEN = "ERR_1001"
    INVALID_SUBMISSION = "ERR_1002"

    # Abuse rejections (2xxx)
    RATE_LIMITED = "ERR_2000"
    DUPLICATE_SUBMISSION = "ERR_2001"

    # Configuration errors (3xxx)
    FORM_CONFIG = "ERR_3000"
    GROUP_CONFIG = "ERR_3001"

    # Decision service errors (4xxx)
    DECISION_ERROR = "ERR_4000"
    DECISION_TIMEOUT = "ERR_4001"
    PLAN_PARSE = "ERR_4002"

    # State errors (5xxx)
    NOT_FOUND = "ERR_5000"
    INVALID_TRANSITION = "ERR_5001"
    DRAFT_STATE = "ERR_5002"
    STALE_WRITE = "ERR_5003"

    # Internal errors (9xxx)
    INTERNAL_ERROR = "ERR_9000"


class FormflowError(Exception):
    """
    Base exception for all formflow errors.

    Attributes:
        code: Standardized error code for programmatic handling
        message: Human-readable error message
        retryable: Whether the operation can be retried
        details: Structured context for logging/serialization
    """

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | None = None,
        retryable: bool | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if retryable is not None:
            self.retryable = retryable
        self.details = dict(details or {})
        self.cause = cause

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code.value,
            "message": self.message,
            "retryable": self.retryable,
            "details": dict(self.details),
            "cause": str(self.cause) if self.cause else None,
        }


# =============================================================================
# Intake rejections (surfaced synchronously to the submitter)
# =============================================================================


class IntakeRejection(FormflowError):
    """Base class for rejections returned by the intake gate."""

    http_status: int = 400
    reason: str = "rejected"


class FormNotFoundError(IntakeRejection):
    """Form is unknown or inactive."""

    code = ErrorCode.FORM_NOT_FOUND
    http_status = 404
    reason = "not_found"

    def __init__(self, form_id: str, **kwargs):
        super().__init__(f"Form not found: {form_id}", details={"form_id": form_id}, **kwargs)


class OriginForbiddenError(IntakeRejection):
    """Request origin is not on the form's allow-list."""

    code = ErrorCode.ORIGIN_FORBIDDEN
    http_status = 403
    reason = "forbidden"

    def __init__(self, origin: str | None, **kwargs):
        super().__init__(f"Origin not allowed: {origin or '<none>'}", details={"origin": origin}, **kwargs)


class InvalidSubmissionError(IntakeRejection):
    """One or more fields failed validation."""

    code = ErrorCode.INVALID_SUBMISSION
    http_status = 422
    reason = "invalid"

    def __init__(self, field_errors: dict[str, str], **kwargs):
        super().__init__(
            f"{len(field_errors)} field(s) failed validation",
            details={"field_errors": dict(field_errors)},
            **kwargs,
        )
        self.field_errors = dict(field_errors)


class RateLimitedError(IntakeRejection):
    """Too many submissions from one address or email within the window."""

    code = ErrorCode.RATE_LIMITED
    http_status = 429
    reason = "rate_limited"

    def __init__(self, message: str = "Too many submissions", *, scope: str = "ip", **kwargs):
        details = kwargs.pop("details", None) or {}
        super().__init__(message, details={"scope": scope, **details}, **kwargs)
        self.scope = scope


class DuplicateSubmissionError(IntakeRejection):
    """Identical (email, form) pair accepted within the duplicate window."""

    code = ErrorCode.DUPLICATE_SUBMISSION
    http_status = 422
    reason = "duplicate"

    def __init__(self, message: str = "Duplicate submission", **kwargs):
        super().__init__(message, **kwargs)


# =============================================================================
# Configuration errors
# =============================================================================


class FormConfigError(FormflowError):
    """Form definition is invalid. Raised at load time."""

    code = ErrorCode.FORM_CONFIG


class GroupConfigError(FormflowError):
    """Handler group definition is invalid. Raised at load time."""

    code = ErrorCode.GROUP_CONFIG


# =============================================================================
# Decision service errors
# =============================================================================


class DecisionServiceError(FormflowError):
    """The external decision service failed."""

    code = ErrorCode.DECISION_ERROR
    retryable = False


class DecisionTimeoutError(DecisionServiceError):
    """Decision service call timed out. Retryable."""

    code = ErrorCode.DECISION_TIMEOUT
    retryable = True

    def __init__(self, message: str = "Decision service timed out", *, timeout: float | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.timeout = timeout


class PlanParseError(FormflowError):
    """Decision service response could not be parsed into a plan."""

    code = ErrorCode.PLAN_PARSE


# =============================================================================
# State errors
# =============================================================================


class NotFoundError(FormflowError):
    """A referenced record does not exist."""

    code = ErrorCode.NOT_FOUND


class InvalidTransitionError(FormflowError):
    """Lifecycle transition is not allowed."""

    code = ErrorCode.INVALID_TRANSITION


class DraftStateError(FormflowError):
    """Draft is not pending."""

    code = ErrorCode.DRAFT_STATE


class StaleWriteError(FormflowError):
    """Stored record changed since it was read."""

    code = ErrorCode.STALE_WRITE


__all__ = [
    "ErrorCode",
    "FormflowError",
    "IntakeRejection",
    "FormNotFoundError",
    "OriginForbiddenError",
    "InvalidSubmissionError",
    "RateLimitedError",
    "DuplicateSubmissionError",
    "FormConfigError",
    "GroupConfigError",
    "DecisionServiceError",
    "DecisionTimeoutError",
    "PlanParseError",
    "NotFoundError",
    "InvalidTransitionError",
    "DraftStateError",
    "StaleWriteError",
]
