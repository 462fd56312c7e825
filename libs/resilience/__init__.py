"""
Resilience primitives for calls to the external query service.

Provides:
- CircuitBreaker: shared tri-state failure isolator
- ResilientExecutor: timeout + circuit breaker + retry with backoff/jitter
"""

from libs.resilience.circuit_breaker import CircuitBreaker, CircuitState
from libs.resilience.retry import ResilientExecutor, RetryPolicy

__all__ = ["CircuitBreaker", "CircuitState", "ResilientExecutor", "RetryPolicy"]
