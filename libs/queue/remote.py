"""
Queued execution strategy backed by Redis.

Layout under the queue prefix (``{queue}``):
- ``{queue}:job:{id}``  JSON job record (TTL = retention)
- ``{queue}:waiting``   list, LPUSH on submit, worker pops from the right (FIFO)
- ``{queue}:active``    list of jobs currently held by a worker
- ``{queue}:delayed``   sorted set of jobs waiting for a re-attempt, scored by ready time
- ``{queue}:completed`` / ``{queue}:failed``  sorted sets scored by finish time

Jobs are re-attempted (with exponential backoff) only when their failure is
retryable; every lifecycle change is reported through the job hooks.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Dict, Optional, Set

import structlog
import redis.asyncio as redis
from redis.exceptions import RedisError

from libs.common.errors import CircuitOpenError, ErrorKind, TransientError, classify, is_retryable, root_cause
from libs.common.settings import Settings
from libs.queue.base import ExecutionStrategy, JobHooks, JobRunner
from libs.queue.redis_client import check_connection, close_redis_client
from libs.tracking.models import Job, JobError

logger = structlog.get_logger(__name__)


class RemoteStrategy(ExecutionStrategy):
    """
    Redis-backed job queue with an in-process worker.

    Usage:
        strategy = RemoteStrategy(redis_client, runner, hooks, queue_name="tracking")
        await strategy.start()
        job_id = await strategy.submit(job)
    """

    mode = "queued"

    def __init__(
        self,
        client: redis.Redis,
        runner: JobRunner,
        hooks: JobHooks,
        *,
        queue_name: str = "visibility-tracking",
        max_attempts: int = 3,
        backoff_delay: float = 2.0,
        remove_on_complete: bool = False,
        remove_on_fail: bool = False,
        job_ttl: int = 7 * 24 * 3600,
        concurrency: int = 1,
        poll_interval: float = 0.25,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the queued strategy.

        Args:
            client: Async Redis client (decode_responses=True)
            runner: Executes one job, reporting progress through its sink
            hooks: Lifecycle event receiver
            queue_name: Key prefix for this queue
            max_attempts: Job-level attempts for retryable failures
            backoff_delay: First job re-attempt delay in seconds (doubles per attempt)
            remove_on_complete: Delete job records once completed
            remove_on_fail: Delete job records once failed
            job_ttl: Retention of job records in seconds
            concurrency: Jobs the worker runs at the same time
            poll_interval: Idle wait between queue polls, in seconds
        """
        super().__init__(runner, hooks)
        self.redis = client
        self.queue_name = queue_name
        self.max_attempts = max_attempts
        self.backoff_delay = backoff_delay
        self.remove_on_complete = remove_on_complete
        self.remove_on_fail = remove_on_fail
        self.job_ttl = job_ttl
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self._clock = clock

        self._slots = asyncio.Semaphore(concurrency)
        self._stopping = asyncio.Event()
        self._worker: Optional[asyncio.Task] = None
        self._running: Set[asyncio.Task] = set()

    @classmethod
    def from_settings(
        cls, client: redis.Redis, runner: JobRunner, hooks: JobHooks, settings: Settings
    ) -> "RemoteStrategy":
        return cls(
            client,
            runner,
            hooks,
            queue_name=settings.queue_name,
            max_attempts=settings.queue_max_attempts,
            backoff_delay=settings.queue_backoff_delay_ms / 1000,
            remove_on_complete=settings.queue_remove_on_complete,
            remove_on_fail=settings.queue_remove_on_fail,
            job_ttl=settings.queue_job_ttl_seconds,
            concurrency=settings.worker_concurrency,
            poll_interval=settings.worker_poll_interval_ms / 1000,
        )

    # Keys

    def _key(self, suffix: str) -> str:
        return f"{self.queue_name}:{suffix}"

    def _job_key(self, job_id: str) -> str:
        return self._key(f"job:{job_id}")

    # Lifecycle

    async def start(self) -> None:
        await check_connection(self.redis)
        self._stopping.clear()
        self._worker = asyncio.create_task(self._work_loop(), name=f"{self.queue_name}-worker")
        logger.info(
            "Queue worker started",
            queue=self.queue_name,
            concurrency=self.concurrency,
            max_attempts=self.max_attempts,
        )

    async def close(self) -> None:
        self._stopping.set()
        if self._worker is not None:
            await self._worker
            self._worker = None
        if self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)
        await close_redis_client(self.redis)
        logger.info("Queue worker stopped", queue=self.queue_name)

    # Contract

    async def submit(self, job: Job) -> str:
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.set(self._job_key(job.id), job.model_dump_json(), ex=self.job_ttl)
                pipe.lpush(self._key("waiting"), job.id)
                await pipe.execute()
        except RedisError as e:
            logger.error("Job submission to queue failed", job_id=job.id, error=str(e))
            raise TransientError(f"Queue backend unavailable: {e}") from e

        logger.info("Job queued", job_id=job.id, queue=self.queue_name, category=job.payload.category)
        return job.id

    async def get_status(self, job_id: str) -> Optional[Job]:
        raw = await self.redis.get(self._job_key(job_id))
        return Job.model_validate_json(raw) if raw else None

    async def queue_counts(self) -> Dict[str, int]:
        async with self.redis.pipeline(transaction=False) as pipe:
            pipe.llen(self._key("waiting"))
            pipe.llen(self._key("active"))
            pipe.zcard(self._key("delayed"))
            pipe.zcard(self._key("completed"))
            pipe.zcard(self._key("failed"))
            waiting, active, delayed, completed, failed = await pipe.execute()
        return {
            "waiting": waiting,
            "active": active,
            "delayed": delayed,
            "completed": completed,
            "failed": failed,
        }

    # Worker

    async def _work_loop(self) -> None:
        while not self._stopping.is_set():
            await self._slots.acquire()
            try:
                job_id = await self._next_job_id()
            except RedisError as e:
                self._slots.release()
                logger.error("Queue backend error in worker loop", queue=self.queue_name, error=str(e))
                await self._idle()
                continue

            if job_id is None:
                self._slots.release()
                await self._idle()
                continue

            task = asyncio.create_task(self._process(job_id), name=f"{self.queue_name}-job-{job_id}")
            self._running.add(task)
            task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._running.discard(task)
        self._slots.release()

    async def _idle(self) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            pass

    async def _next_job_id(self) -> Optional[str]:
        await self._promote_delayed()
        return await self.redis.lmove(self._key("waiting"), self._key("active"), "RIGHT", "LEFT")

    async def _promote_delayed(self) -> None:
        due = await self.redis.zrangebyscore(self._key("delayed"), "-inf", self._clock())
        for job_id in due:
            # ZREM guards against promoting the same job twice
            if await self.redis.zrem(self._key("delayed"), job_id):
                await self.redis.lpush(self._key("waiting"), job_id)

    async def _save(self, job: Job) -> None:
        await self.redis.set(self._job_key(job.id), job.model_dump_json(), ex=self.job_ttl)

    async def _process(self, job_id: str) -> None:
        job: Optional[Job] = None
        try:
            raw = await self.redis.get(self._job_key(job_id))
            if raw is None:
                logger.warning("Queued job record missing, dropping", job_id=job_id)
                await self.redis.lrem(self._key("active"), 0, job_id)
                return

            job = Job.model_validate_json(raw)
            if job.state.is_terminal:
                await self.redis.lrem(self._key("active"), 0, job_id)
                return

            job.activate()
            await self._save(job)
            await self._emit("active", job)

            async def report_progress(value: int) -> None:
                if job.advance(value):
                    await self._save(job)
                    await self._emit("progress", job)

            try:
                result = await self._runner(job, report_progress)
            except Exception as e:
                await self._handle_failure(job, e)
                return

            job.complete(result)
            logger.info("Job completed", job_id=job.id, mode=self.mode, attempts=job.attempts)
            await self._finish(job, "completed", remove=self.remove_on_complete)
            await self._emit("completed", job)

        except RedisError as e:
            logger.error("Queue backend error while processing job", job_id=job_id, error=str(e))
            if job is None:
                return
            # The outcome still reaches the session store even if Redis bookkeeping failed
            if not job.state.is_terminal:
                job.fail(JobError.from_exception(TransientError(f"Queue backend error: {e}")))
            await self._emit(job.state.value, job)

    async def _handle_failure(self, job: Job, error: Exception) -> None:
        kind = classify(error)
        can_retry = is_retryable(error) or kind is ErrorKind.CIRCUIT_OPEN

        if can_retry and job.attempts < self.max_attempts:
            delay = self.backoff_delay * (2 ** (job.attempts - 1))
            cause = root_cause(error)
            if isinstance(cause, CircuitOpenError):
                delay = max(delay, cause.retry_after)

            job.requeue()
            logger.warning(
                "Job attempt failed, re-queued",
                job_id=job.id,
                attempt=job.attempts,
                max_attempts=self.max_attempts,
                delay_ms=round(delay * 1000),
                error=str(error),
                error_kind=kind.value,
            )
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.set(self._job_key(job.id), job.model_dump_json(), ex=self.job_ttl)
                pipe.lrem(self._key("active"), 0, job.id)
                pipe.zadd(self._key("delayed"), {job.id: self._clock() + delay})
                await pipe.execute()
            await self._emit("queued", job)
            return

        job.fail(JobError.from_exception(error))
        logger.error(
            "Job failed",
            job_id=job.id,
            mode=self.mode,
            attempts=job.attempts,
            error=job.error.message,
            error_kind=job.error.kind.value,
            progress=job.progress,
        )
        await self._finish(job, "failed", remove=self.remove_on_fail)
        await self._emit("failed", job)

    async def _finish(self, job: Job, outcome: str, *, remove: bool) -> None:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self._key("active"), 0, job.id)
            if remove:
                pipe.delete(self._job_key(job.id))
            else:
                pipe.set(self._job_key(job.id), job.model_dump_json(), ex=self.job_ttl)
                pipe.zadd(self._key(outcome), {job.id: self._clock()})
            await pipe.execute()
