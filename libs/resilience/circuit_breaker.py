"""
Circuit breaker guarding the external query dependency.

One instance is created at process start and passed to every component that
calls the dependency, so all jobs (direct or queued) share the same view of
its health.
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import structlog

from libs.common.errors import CircuitOpenError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """
    Tri-state failure isolator.

    - CLOSED: calls pass through; failures are counted
    - OPEN: calls fail fast with CircuitOpenError until ``reset_timeout`` elapses
    - HALF_OPEN: exactly one trial call is let through; success closes the
      circuit, failure reopens it

    State transitions happen under an asyncio lock; the protected operation
    runs outside of it.

    Usage:
        breaker = CircuitBreaker(failure_threshold=5, reset_timeout=60)
        answer = await breaker.execute(lambda: client.ask(prompt))
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        name: str = "external-query",
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Failures needed to open the circuit
            reset_timeout: Seconds to stay OPEN before allowing a trial call
            name: Name of the protected dependency (logging/diagnostics)
            clock: Monotonic time source, in seconds
        """
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.name = name
        self._clock = clock
        self._lock = asyncio.Lock()

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_at: Optional[float] = None
        self._trial_in_flight = False

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``operation`` through the breaker.

        Raises:
            CircuitOpenError: If the circuit is OPEN (operation not invoked)
            Exception: Whatever ``operation`` raised, after recording the failure
        """
        async with self._lock:
            self._before_call()

        try:
            result = await operation()
        except asyncio.CancelledError:
            # A cancelled trial is neither a success nor a failure
            self._trial_in_flight = False
            raise
        except Exception as e:
            async with self._lock:
                self._on_failure(e)
            raise

        async with self._lock:
            self._on_success()
        return result

    def _before_call(self) -> None:
        if self.state is CircuitState.OPEN:
            if self._elapsed_since_failure() < self.reset_timeout:
                raise CircuitOpenError(self.name, retry_after=self.retry_after())
            self._transition(CircuitState.HALF_OPEN)
            self._trial_in_flight = True
        elif self.state is CircuitState.HALF_OPEN:
            # Only one trial call while half-open
            if self._trial_in_flight:
                raise CircuitOpenError(self.name, retry_after=0.0)
            self._trial_in_flight = True

    def _on_success(self) -> None:
        if self.state is CircuitState.HALF_OPEN:
            self._trial_in_flight = False
            self.failure_count = 0
            self._transition(CircuitState.CLOSED)

    def _on_failure(self, error: BaseException) -> None:
        self.failure_count += 1
        self.last_failure_at = self._clock()

        if self.state is CircuitState.HALF_OPEN:
            self._trial_in_flight = False
            self._transition(CircuitState.OPEN, error=str(error))
        elif self.state is CircuitState.CLOSED and self.failure_count >= self.failure_threshold:
            self._transition(CircuitState.OPEN, error=str(error))

    def _transition(self, new_state: CircuitState, **extra: Any) -> None:
        old_state = self.state
        self.state = new_state
        log = logger.warning if new_state is CircuitState.OPEN else logger.info
        log(
            "Circuit breaker state change",
            breaker=self.name,
            from_state=old_state.value,
            to_state=new_state.value,
            failure_count=self.failure_count,
            **extra,
        )

    def _elapsed_since_failure(self) -> float:
        if self.last_failure_at is None:
            return float("inf")
        return self._clock() - self.last_failure_at

    def retry_after(self) -> float:
        """Seconds until an OPEN circuit will permit a trial call (0 if not OPEN)."""
        if self.state is not CircuitState.OPEN:
            return 0.0
        return max(0.0, self.reset_timeout - self._elapsed_since_failure())

    def reset(self) -> None:
        """Force the circuit CLOSED (administrative/test use)."""
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_at = None
        self._trial_in_flight = False
        logger.info("Circuit breaker reset", breaker=self.name)

    def snapshot(self) -> Dict[str, Any]:
        """Diagnostics view of the breaker."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "failure_threshold": self.failure_threshold,
            "reset_timeout_seconds": self.reset_timeout,
            "retry_after_seconds": round(self.retry_after(), 3),
            "seconds_since_last_failure": (
                None if self.last_failure_at is None else round(self._elapsed_since_failure(), 3)
            ),
        }
