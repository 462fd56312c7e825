"""
Queue adapter: selects the execution strategy once, at startup.

If the Redis backend is enabled and reachable, jobs go through the queued
strategy; otherwise (disabled, unreachable, or failing to start) they run
directly in-process. The choice and the reason for any fallback are kept
for diagnostics. Jobs are never re-routed between strategies.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Dict, Optional

import structlog
import redis.asyncio as redis

from libs.common.settings import Settings
from libs.queue.base import ExecutionStrategy, JobHooks, JobRunner
from libs.queue.direct import DirectStrategy
from libs.queue.probe import is_reachable
from libs.queue.redis_client import create_redis_client
from libs.queue.remote import RemoteStrategy
from libs.tracking.models import Job

logger = structlog.get_logger(__name__)

Probe = Callable[[str, int, float], Awaitable[bool]]
RedisFactory = Callable[[Settings], redis.Redis]


class QueueAdapter:
    """Uniform job lifecycle (submit, status, progress) over the selected strategy."""

    def __init__(self, strategy: ExecutionStrategy, fallback_reason: Optional[str] = None):
        self.strategy = strategy
        self.fallback_reason = fallback_reason

    @classmethod
    async def create(
        cls,
        settings: Settings,
        runner: JobRunner,
        hooks: JobHooks,
        *,
        probe: Probe = is_reachable,
        redis_factory: RedisFactory = create_redis_client,
    ) -> "QueueAdapter":
        """
        Select and start an execution strategy.

        Args:
            settings: Application settings
            runner: Executes one job
            hooks: Receives job lifecycle events
            probe: Reachability check for the Redis backend
            redis_factory: Builds the Redis client for the queued strategy

        Returns:
            Adapter bound to the queued or the direct strategy
        """
        if not settings.redis_enabled:
            return cls._direct(runner, hooks, "Remote backend disabled in configuration")

        timeout = settings.redis_connection_timeout_ms / 1000
        if not await probe(settings.redis_host, settings.redis_port, timeout):
            return cls._direct(
                runner,
                hooks,
                f"Remote backend {settings.redis_host}:{settings.redis_port} unreachable",
            )

        try:
            strategy = RemoteStrategy.from_settings(redis_factory(settings), runner, hooks, settings)
            await strategy.start()
        except Exception as e:
            logger.error("Queued strategy failed to start", error=str(e), error_type=type(e).__name__)
            return cls._direct(runner, hooks, f"Remote backend failed to start: {e}")

        logger.info(
            "Execution mode selected",
            mode=strategy.mode,
            host=settings.redis_host,
            port=settings.redis_port,
            queue=settings.queue_name,
        )
        return cls(strategy)

    @classmethod
    def _direct(cls, runner: JobRunner, hooks: JobHooks, reason: str) -> "QueueAdapter":
        logger.warning("Execution mode selected", mode=DirectStrategy.mode, reason=reason)
        return cls(DirectStrategy(runner, hooks), fallback_reason=reason)

    def current_mode(self) -> str:
        """``"queued"`` or ``"direct"``."""
        return self.strategy.mode

    async def submit(self, job: Job) -> str:
        return await self.strategy.submit(job)

    async def get_status(self, job_id: str) -> Optional[Job]:
        return await self.strategy.get_status(job_id)

    async def queue_counts(self) -> Optional[Dict[str, int]]:
        return await self.strategy.queue_counts()

    async def close(self) -> None:
        await self.strategy.close()
