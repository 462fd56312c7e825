"""
Tracking service: the single entry point of the engine.

Validates payloads, records sessions, hands jobs to the queue adapter and
receives their lifecycle events (it is the adapter's ``JobHooks``). Completed
reports are appended to the historical store without blocking the job.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Set

import structlog

from libs.common.errors import TrackingError, ValidationError
from libs.common.settings import Settings
from libs.queue.adapter import Probe, QueueAdapter, RedisFactory
from libs.queue.base import ProgressSink
from libs.queue.probe import is_reachable
from libs.queue.redis_client import create_redis_client
from libs.resilience.circuit_breaker import CircuitBreaker
from libs.resilience.retry import ResilientExecutor
from libs.storage.history import HistoricalStore, HistoryEntry, InMemoryHistoricalStore, TrendPoint
from libs.storage.sessions import InMemorySessionStore, SessionStateStore
from libs.tracking.models import Job, JobState, MetricsReport, TrackingPayload
from libs.tracking.orchestrator import BatchConfig, BatchOrchestrator, ExternalQuery, PromptSource

logger = structlog.get_logger(__name__)


class TrackingService:
    """
    Job/session glue around the BatchOrchestrator.

    Usage:
        service = build_service(settings, prompt_source, external_query)
        await service.start()
        job_id = await service.submit(payload)
        job = await service.get_status(job_id)
    """

    def __init__(
        self,
        orchestrator: BatchOrchestrator,
        session_store: SessionStateStore,
        history_store: HistoricalStore,
        settings: Settings,
        breaker: CircuitBreaker,
    ):
        self.orchestrator = orchestrator
        self.sessions = session_store
        self.history = history_store
        self.settings = settings
        self.breaker = breaker
        self.adapter: Optional[QueueAdapter] = None
        self._background: Set[asyncio.Task] = set()

    async def start(
        self,
        *,
        probe: Probe = is_reachable,
        redis_factory: RedisFactory = create_redis_client,
    ) -> None:
        """Select the execution strategy. Must be called once before ``submit``."""
        self.adapter = await QueueAdapter.create(
            self.settings,
            self.run_job,
            self,
            probe=probe,
            redis_factory=redis_factory,
        )

    async def close(self) -> None:
        if self.adapter is not None:
            await self.adapter.close()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    def current_mode(self) -> str:
        return self._require_adapter().current_mode()

    def _require_adapter(self) -> QueueAdapter:
        if self.adapter is None:
            raise RuntimeError("TrackingService.start() has not been called")
        return self.adapter

    def validate_payload(self, payload: TrackingPayload) -> None:
        """
        Reject malformed tracking requests before any job is created.

        Raises:
            ValidationError: On the first violated rule
        """
        s = self.settings
        category = payload.category.strip()
        if not s.min_category_length <= len(category) <= s.max_category_length:
            raise ValidationError(
                f"Category must be between {s.min_category_length} and "
                f"{s.max_category_length} characters"
            )
        if not payload.brands:
            raise ValidationError("At least one brand is required")
        if len(payload.brands) > s.max_brands_per_tracking:
            raise ValidationError(f"Maximum {s.max_brands_per_tracking} brands allowed")
        if len(payload.competitors) > s.max_competitors_per_tracking:
            raise ValidationError(f"Maximum {s.max_competitors_per_tracking} competitors allowed")
        if any(not name.strip() for name in payload.all_brands):
            raise ValidationError("Brand and competitor names cannot be blank")

    async def submit(self, payload: TrackingPayload) -> str:
        """Validate, record the session as queued and hand the job to the adapter."""
        self.validate_payload(payload)
        adapter = self._require_adapter()

        job = Job(payload=payload)
        await self.sessions.create(job)
        try:
            await adapter.submit(job)
        except TrackingError:
            # Nothing will ever run this job
            await self.sessions.delete(job.id)
            raise

        logger.info(
            "Tracking job submitted",
            job_id=job.id,
            category=payload.category,
            brands=len(payload.brands),
            competitors=len(payload.competitors),
            mode=adapter.current_mode(),
        )
        return job.id

    async def get_status(self, job_id: str) -> Optional[Job]:
        """Current job record; the session store covers jobs the strategy no longer holds."""
        job = await self._require_adapter().get_status(job_id)
        if job is not None:
            return job
        return await self.sessions.get(job_id)

    async def run_job(self, job: Job, progress: ProgressSink) -> Dict[str, Any]:
        payload = job.payload
        result = await self.orchestrator.execute(
            payload.category,
            payload.brands,
            payload.competitors,
            payload.mode,
            progress,
        )
        return result.model_dump(mode="json")

    # Job lifecycle hooks

    async def on_active(self, job: Job) -> None:
        await self.sessions.update(
            job.id,
            {"state": job.state, "attempts": job.attempts, "updated_at": job.updated_at},
        )

    async def on_progress(self, job: Job) -> None:
        current = await self.sessions.get(job.id)
        if current is not None and job.progress <= current.progress:
            return
        await self.sessions.update(job.id, {"progress": job.progress, "updated_at": job.updated_at})

    async def on_queued(self, job: Job) -> None:
        await self.sessions.update(
            job.id,
            {"state": job.state, "attempts": job.attempts, "updated_at": job.updated_at},
        )

    async def on_completed(self, job: Job) -> None:
        await self.sessions.update(
            job.id,
            {
                "state": JobState.COMPLETED,
                "progress": 100,
                "result": job.result,
                "error": None,
                "updated_at": job.updated_at,
                "finished_at": job.finished_at,
            },
        )
        logger.info("Tracking job completed", job_id=job.id, attempts=job.attempts)

        task = asyncio.create_task(self._append_history(job))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def on_failed(self, job: Job) -> None:
        await self.sessions.update(
            job.id,
            {
                "state": JobState.FAILED,
                "error": job.error,
                "result": None,
                "updated_at": job.updated_at,
                "finished_at": job.finished_at,
            },
        )
        logger.warning(
            "Tracking job failed",
            job_id=job.id,
            attempts=job.attempts,
            error=job.error.message if job.error else None,
            kind=job.error.kind.value if job.error else None,
        )

    async def _append_history(self, job: Job) -> None:
        try:
            metrics = MetricsReport.model_validate(job.result["metrics"])
            await self.history.append(
                HistoryEntry(
                    category=job.payload.category,
                    brands=job.payload.all_brands,
                    brand_stats=metrics.brand_stats,
                    summary=metrics.summary,
                )
            )
        except Exception as e:
            logger.error(
                "Failed to save historical data",
                job_id=job.id,
                error=str(e),
                error_type=type(e).__name__,
            )

    # Read-side operations

    async def list_sessions(
        self, state: Optional[JobState] = None, limit: int = 20, offset: int = 0
    ) -> List[Job]:
        return await self.sessions.list(state=state, limit=limit, offset=offset)

    async def get_trends(self, category: str, brand: str, days: int = 30) -> List[TrendPoint]:
        return await self.history.trends(category, brand, days)

    async def generate_prompts(self, category: str, count: Optional[int] = None) -> List[str]:
        """Preview the prompts a job for ``category`` would run."""
        return await self.orchestrator.generate_prompts(category, count or self.settings.default_prompt_count)

    async def health(self) -> Dict[str, Any]:
        """Diagnostics snapshot: execution mode, breaker state, queue and session counts."""
        adapter = self._require_adapter()
        return {
            "mode": adapter.current_mode(),
            "fallback_reason": adapter.fallback_reason,
            "circuit_breaker": self.breaker.snapshot(),
            "queue": await adapter.queue_counts(),
            "sessions": await self.sessions.stats(),
        }


def build_service(
    settings: Settings,
    prompt_source: PromptSource,
    external_query: ExternalQuery,
    *,
    session_store: Optional[SessionStateStore] = None,
    history_store: Optional[HistoricalStore] = None,
) -> TrackingService:
    """Wire one engine: a single breaker shared by every job and strategy."""
    breaker = settings.circuit_breaker()
    executor = ResilientExecutor(breaker, settings.retry_policy())
    orchestrator = BatchOrchestrator(
        prompt_source,
        external_query,
        executor,
        config=BatchConfig.from_settings(settings),
    )
    return TrackingService(
        orchestrator,
        session_store or InMemorySessionStore(),
        history_store or InMemoryHistoricalStore(settings.history_retention_days),
        settings,
        breaker,
    )
