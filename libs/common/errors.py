"""
Error taxonomy for the tracking engine.

Every error raised by the engine carries an explicit ``kind`` so retry and
status decisions never depend on message text:

- ValidationError: bad job payload, rejected before execution
- TransientError: network / 5xx-equivalent, retryable
- PermanentError: 4xx-equivalent / auth, never retried
- AttemptTimeoutError: a single attempt exceeded its timeout, retryable
- CircuitOpenError: dependency isolated by the circuit breaker
- RetryExhausted: wraps the attempt count and the last underlying error
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    TIMEOUT = "timeout"
    CIRCUIT_OPEN = "circuit_open"
    RETRY_EXHAUSTED = "retry_exhausted"
    JOB_STATE = "job_state"
    UNKNOWN = "unknown"


class TrackingError(Exception):
    """Base class for all engine errors."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ValidationError(TrackingError):
    kind = ErrorKind.VALIDATION


class TransientError(TrackingError):
    kind = ErrorKind.TRANSIENT


class PermanentError(TrackingError):
    kind = ErrorKind.PERMANENT


class AttemptTimeoutError(TrackingError):
    kind = ErrorKind.TIMEOUT

    def __init__(self, timeout: float):
        super().__init__(f"Operation timed out after {timeout * 1000:.0f}ms")
        self.timeout = timeout


class CircuitOpenError(TrackingError):
    kind = ErrorKind.CIRCUIT_OPEN

    def __init__(self, name: str, retry_after: float = 0.0):
        super().__init__(f"Circuit breaker '{name}' is OPEN")
        self.name = name
        self.retry_after = retry_after


class RetryExhausted(TrackingError):
    """Raised by ``with_retry`` when an operation will not be attempted again."""

    kind = ErrorKind.RETRY_EXHAUSTED

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"Failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class JobStateError(TrackingError):
    kind = ErrorKind.JOB_STATE


def root_cause(error: BaseException) -> BaseException:
    """Unwrap ``RetryExhausted`` layers down to the originating error."""
    while isinstance(error, RetryExhausted):
        error = error.last_error
    return error


def status_code_of(error: BaseException) -> Optional[int]:
    """Return an HTTP-like status carried by ``error``, if any."""
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    return None


def classify(error: BaseException) -> ErrorKind:
    """Classify an error (unwrapping retries) into an ``ErrorKind``."""
    cause = root_cause(error)
    if isinstance(cause, TrackingError):
        return cause.kind
    if isinstance(cause, (TimeoutError, asyncio.TimeoutError)):
        return ErrorKind.TIMEOUT
    status = status_code_of(cause)
    if status is not None and 400 <= status < 500:
        return ErrorKind.PERMANENT
    return ErrorKind.TRANSIENT


def is_retryable(error: BaseException) -> bool:
    """Default retry policy: only transient failures and timeouts are retried."""
    return classify(error) in (ErrorKind.TRANSIENT, ErrorKind.TIMEOUT)
