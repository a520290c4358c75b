"""
Tests for the error taxonomy.
"""

import pytest

from formflow_runtime.errors import (
    DecisionServiceError,
    DecisionTimeoutError,
    DuplicateSubmissionError,
    ErrorCode,
    FormflowError,
    FormNotFoundError,
    IntakeRejection,
    InvalidSubmissionError,
    OriginForbiddenError,
    RateLimitedError,
)


class TestErrorCodes:
    def test_codes_are_unique(self):
        values = [e.value for e in ErrorCode]
        assert len(values) == len(set(values))
        assert all(v.startswith("ERR_") for v in values)


class TestIntakeRejections:
    @pytest.mark.parametrize(
        "error, status, reason",
        [
            (FormNotFoundError("contact-us"), 404, "not_found"),
            (OriginForbiddenError("https://evil.test"), 403, "forbidden"),
            (InvalidSubmissionError({"email": "required"}), 422, "invalid"),
            (RateLimitedError(scope="email"), 429, "rate_limited"),
            (DuplicateSubmissionError(), 422, "duplicate"),
        ],
    )
    def test_status_and_reason(self, error, status, reason):
        assert isinstance(error, IntakeRejection)
        assert error.http_status == status
        assert error.reason == reason
        assert not error.retryable

    def test_field_errors_in_details(self):
        error = InvalidSubmissionError({"email": "invalid email address"})
        assert error.field_errors == {"email": "invalid email address"}
        assert error.to_dict()["details"] == {"field_errors": {"email": "invalid email address"}}

    def test_rate_limit_scope(self):
        error = RateLimitedError(scope="ip", details={"limit": 10})
        assert error.details == {"scope": "ip", "limit": 10}


class TestDecisionErrors:
    def test_timeout_is_retryable(self):
        error = DecisionTimeoutError(timeout=30.0)
        assert isinstance(error, DecisionServiceError)
        assert error.retryable
        assert str(error) == "[ERR_4001] Decision service timed out"

    def test_override_retryable(self):
        assert DecisionServiceError("503", retryable=True).retryable
        assert not DecisionServiceError("bad request").retryable

    def test_to_dict_with_cause(self):
        cause = ConnectionError("reset")
        error = FormflowError("boom", cause=cause)
        d = error.to_dict()
        assert d["code"] == "ERR_9000"
        assert d["cause"] == "reset"
        assert d["error_type"] == "FormflowError"
