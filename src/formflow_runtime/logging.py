"""
Structured logging for formflow.

This module provides:
- Structured JSON log lines with a bound pipeline context
  (tenant, submission, form, operation)
- Typed helpers for abuse rejections, blocked actions and errors
- A small timer used for elapsed-time reporting
"""

from __future__ import annotations

import json
import logging
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

# =============================================================================
# Log Context
# =============================================================================


@dataclass(frozen=True)
class LogContext:
    """Context information attached to log records."""

    tenant_id: str | None = None
    submission_id: str | None = None
    form_id: str | None = None
    operation: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        d = {k: v for k, v in asdict(self).items() if v is not None and k != "extra"}
        d.update(self.extra)
        return d

    def with_update(self, **kwargs) -> LogContext:
        """Create a new context with updated values."""
        return LogContext(
            tenant_id=kwargs.get("tenant_id", self.tenant_id),
            submission_id=kwargs.get("submission_id", self.submission_id),
            form_id=kwargs.get("form_id", self.form_id),
            operation=kwargs.get("operation", self.operation),
            extra={**self.extra, **kwargs.get("extra", {})},
        )


# =============================================================================
# Structured Logger
# =============================================================================


class StructuredLogger:
    """
    Logger with structured output and an immutable bound context.

    Bound loggers share the underlying ``logging.Logger``; binding never
    mutates the parent, so concurrent units of work can each hold their own.

    Example:
        ```python
        log = get_logger("formflow_runtime.intake")
        log.bind(tenant_id="t1", form_id="contact").warning(
            "Submission rejected", reason="honeypot", ip="203.0.113.42"
        )
        ```
    """

    def __init__(
        self,
        name: str = "formflow",
        *,
        json_output: bool = True,
        context: LogContext | None = None,
    ):
        self.name = name
        self.json_output = json_output
        self._logger = logging.getLogger(name)
        self._context = context or LogContext()

    @property
    def context(self) -> LogContext:
        return self._context

    def bind(self, **kwargs) -> StructuredLogger:
        """Return a logger with additional context fields."""
        return StructuredLogger(
            self.name,
            json_output=self.json_output,
            context=self._context.with_update(**kwargs),
        )

    def _log(
        self,
        level: int,
        message: str,
        event_type: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        if not self._logger.isEnabledFor(level):
            return

        record_data: dict[str, Any] = {"message": message, **self._context.to_dict()}
        if event_type:
            record_data["event_type"] = event_type
        if data:
            record_data.update(data)

        if self.json_output:
            self._logger.log(level, json.dumps(record_data, default=str))
        else:
            extras = " ".join(f"{k}={v}" for k, v in record_data.items() if k != "message")
            self._logger.log(level, f"{message} {extras}".rstrip())

    def debug(self, message: str, **kwargs) -> None:
        self._log(logging.DEBUG, message, data=kwargs)

    def info(self, message: str, **kwargs) -> None:
        self._log(logging.INFO, message, data=kwargs)

    def warning(self, message: str, **kwargs) -> None:
        self._log(logging.WARNING, message, data=kwargs)

    def error(self, message: str, **kwargs) -> None:
        self._log(logging.ERROR, message, data=kwargs)

    # Typed logging methods

    def log_rejection(self, reason: str, *, ip: str | None, occurred_at: float, **kwargs) -> None:
        """Log an abuse rejection."""
        self._log(
            logging.WARNING,
            f"Submission rejected: {reason}",
            event_type="abuse_rejection",
            data={
                "reason": reason,
                "ip": ip,
                "occurred_at": datetime.fromtimestamp(occurred_at, tz=timezone.utc).isoformat(),
                **kwargs,
            },
        )

    def log_blocked_action(self, action_name: str, allowed: list[str]) -> None:
        """Log an action dropped by the allowed-action set."""
        self._log(
            logging.WARNING,
            f"Action '{action_name}' blocked by allowed-action set",
            event_type="action_blocked",
            data={"action": action_name, "allowed": allowed},
        )

    def log_error(self, error: Exception, message: str | None = None, **kwargs) -> None:
        """Log an error with context."""
        error_data = {
            "error_type": type(error).__name__,
            "error_message": str(error),
            **kwargs,
        }
        if hasattr(error, "code"):
            error_data["error_code"] = str(error.code.value)
        if hasattr(error, "retryable"):
            error_data["retryable"] = error.retryable

        self._log(logging.ERROR, message or f"Error: {error}", event_type="error", data=error_data)


# =============================================================================
# Formatters
# =============================================================================


class JSONFormatter(logging.Formatter):
    """JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
        }

        try:
            message_data = json.loads(record.getMessage())
            if isinstance(message_data, dict):
                log_data.update(message_data)
            else:
                log_data["message"] = record.getMessage()
        except (json.JSONDecodeError, TypeError):
            log_data["message"] = record.getMessage()

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable text formatter."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%H:%M:%S.%f")[:-3]
        return f"{timestamp} {record.levelname:8} {record.name} {record.getMessage()}"


def configure_logging(level: str = "INFO", *, json_output: bool = True) -> None:
    """Attach a stdout handler to the ``formflow`` logger hierarchy."""
    for name in ("formflow_runtime", "formflow_api"):
        logger = logging.getLogger(name)
        logger.setLevel(getattr(logging, level.upper(), logging.INFO))
        if not logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(JSONFormatter() if json_output else TextFormatter())
            logger.addHandler(handler)


# =============================================================================
# Timing Utilities
# =============================================================================


@dataclass
class Timer:
    """Simple timer for measuring durations."""

    start_time: float = field(default_factory=time.perf_counter)
    end_time: float | None = None

    def stop(self) -> float:
        """Stop the timer and return duration in milliseconds."""
        self.end_time = time.perf_counter()
        return self.elapsed_ms

    @property
    def elapsed_ms(self) -> float:
        end = self.end_time or time.perf_counter()
        return (end - self.start_time) * 1000


@contextmanager
def timed() -> Iterator[Timer]:
    """Context manager for timing operations."""
    timer = Timer()
    try:
        yield timer
    finally:
        timer.stop()


def get_logger(name: str = "formflow_runtime") -> StructuredLogger:
    """Create a structured logger for a module."""
    return StructuredLogger(name)


__all__ = [
    "LogContext",
    "StructuredLogger",
    "JSONFormatter",
    "TextFormatter",
    "configure_logging",
    "Timer",
    "timed",
    "get_logger",
]
