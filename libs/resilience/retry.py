"""
Resilient execution of external calls.

Wraps each attempt with a timeout and the shared circuit breaker, and the
whole call with exponential backoff plus jitter (tenacity).
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from libs.common.errors import AttemptTimeoutError, CircuitOpenError, RetryExhausted, is_retryable
from libs.resilience.circuit_breaker import CircuitBreaker

logger = structlog.get_logger(__name__)

T = TypeVar("T")

RetryPredicate = Callable[[BaseException], bool]
RetryCallback = Callable[[int, float, BaseException], Any]
SleepFunc = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """Retry/backoff parameters. Delays and timeouts are in seconds."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    per_attempt_timeout: float = 30.0
    jitter_ratio: float = 0.3

    def backoff(self, attempt: int) -> float:
        """Exponential delay for ``attempt`` (1-based), before jitter."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)


class ResilientExecutor:
    """
    Runs operations with per-attempt timeout, circuit breaking and retries.

    Every attempt goes through the shared CircuitBreaker; a CircuitOpenError
    ends the call immediately. Any failure that will not be retried is raised
    as ``RetryExhausted`` chained from the original error.

    Usage:
        executor = ResilientExecutor(breaker, settings.retry_policy())
        answer = await executor.with_retry(lambda: client.ask(prompt))
    """

    def __init__(
        self,
        breaker: CircuitBreaker,
        policy: Optional[RetryPolicy] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.breaker = breaker
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        per_attempt_timeout: Optional[float] = None,
        should_retry: RetryPredicate = is_retryable,
        on_retry: Optional[RetryCallback] = None,
    ) -> T:
        """
        Execute ``operation`` with retries.

        Args:
            operation: Zero-arg callable returning an awaitable
            max_attempts: Override for the policy's attempt budget
            base_delay: Override for the first backoff delay (seconds)
            max_delay: Override for the backoff ceiling (seconds)
            per_attempt_timeout: Override for the single-attempt timeout (seconds)
            should_retry: Decides whether a failure is worth another attempt
            on_retry: Called as ``on_retry(attempt, delay, error)`` before sleeping

        Returns:
            The operation's result

        Raises:
            RetryExhausted: When attempts run out or the failure is not retryable
        """
        overrides = {
            key: value
            for key, value in {
                "max_attempts": max_attempts,
                "base_delay": base_delay,
                "max_delay": max_delay,
                "per_attempt_timeout": per_attempt_timeout,
            }.items()
            if value is not None
        }
        policy = replace(self.policy, **overrides)

        def retry_predicate(error: BaseException) -> bool:
            if isinstance(error, CircuitOpenError) or not isinstance(error, Exception):
                return False
            return should_retry(error)

        def wait(retry_state: RetryCallState) -> float:
            delay = policy.backoff(retry_state.attempt_number)
            return delay + random.uniform(0, policy.jitter_ratio * delay)

        def before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception()
            delay = retry_state.next_action.sleep
            logger.info(
                "Retrying after failure",
                attempt=retry_state.attempt_number,
                max_attempts=policy.max_attempts,
                delay_ms=round(delay * 1000),
                error=str(error),
                error_type=type(error).__name__,
            )
            if on_retry is not None:
                on_retry(retry_state.attempt_number, delay, error)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=wait,
            retry=retry_if_exception(retry_predicate),
            before_sleep=before_sleep,
            sleep=self._sleep,
            reraise=True,
        )

        attempts = 0
        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    return await self.breaker.execute(
                        lambda: self._attempt(operation, policy.per_attempt_timeout)
                    )
        except Exception as e:
            raise RetryExhausted(attempts, e) from e

        raise RetryExhausted(attempts, RuntimeError("no attempt was made"))

    @staticmethod
    async def _attempt(operation: Callable[[], Awaitable[T]], timeout: float) -> T:
        try:
            return await asyncio.wait_for(operation(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise AttemptTimeoutError(timeout) from e
