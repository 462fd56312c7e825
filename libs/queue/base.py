"""
Execution strategy contract shared by the direct and queued backends.

A strategy accepts jobs, runs them through a ``JobRunner`` and reports every
lifecycle change through ``JobHooks``. Callers only see ``submit`` /
``get_status``; which strategy is active is exposed through ``mode`` for
diagnostics only.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, ClassVar, Dict, Optional, Protocol

import structlog

from libs.tracking.models import Job

logger = structlog.get_logger(__name__)

ProgressSink = Callable[[int], Awaitable[None]]
JobRunner = Callable[[Job, ProgressSink], Awaitable[Dict[str, Any]]]


class JobHooks(Protocol):
    """Receives job lifecycle events. Each hook gets a snapshot of the job."""

    async def on_active(self, job: Job) -> None: ...

    async def on_progress(self, job: Job) -> None: ...

    async def on_queued(self, job: Job) -> None: ...

    async def on_completed(self, job: Job) -> None: ...

    async def on_failed(self, job: Job) -> None: ...


class ExecutionStrategy(ABC):
    """Uniform job lifecycle regardless of where jobs run."""

    mode: ClassVar[str]

    def __init__(self, runner: JobRunner, hooks: JobHooks):
        self._runner = runner
        self._hooks = hooks

    async def start(self) -> None:
        """Acquire resources / start workers. No-op by default."""

    async def close(self) -> None:
        """Release resources. No-op by default."""

    @abstractmethod
    async def submit(self, job: Job) -> str:
        """Accept a queued job for execution and return its id."""

    @abstractmethod
    async def get_status(self, job_id: str) -> Optional[Job]:
        """Return the current job record, or None if this strategy does not know it."""

    async def queue_counts(self) -> Optional[Dict[str, int]]:
        """Queue depth counts, when the strategy has a queue."""
        return None

    async def _emit(self, event: str, job: Job) -> None:
        """Deliver a lifecycle event; hook failures are logged, never raised into the job."""
        hook = getattr(self._hooks, f"on_{event}")
        try:
            await hook(job.model_copy(deep=True))
        except Exception as e:
            logger.error(
                "Job hook failed",
                hook=event,
                job_id=job.id,
                mode=self.mode,
                error=str(e),
                error_type=type(e).__name__,
            )
