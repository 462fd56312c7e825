"""Direct execution strategy: runs jobs in-process, without a queue backend."""

from __future__ import annotations

import asyncio
from typing import Dict, Optional, Set

import structlog

from libs.queue.base import ExecutionStrategy, JobHooks, JobRunner
from libs.tracking.models import Job, JobError

logger = structlog.get_logger(__name__)


class DirectStrategy(ExecutionStrategy):
    """
    Runs each submitted job immediately as an asyncio task.

    In-flight job records live in a process-local table owned by this
    strategy and are dropped once the terminal hook has run; the hooks mirror
    every change to the session store exactly as the queued strategy does.
    """

    mode = "direct"

    def __init__(self, runner: JobRunner, hooks: JobHooks):
        super().__init__(runner, hooks)
        self._jobs: Dict[str, Job] = {}
        self._tasks: Set[asyncio.Task] = set()

    async def submit(self, job: Job) -> str:
        job = job.model_copy(deep=True)
        self._jobs[job.id] = job

        task = asyncio.create_task(self._process(job), name=f"tracking-job-{job.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.info("Job started in direct mode", job_id=job.id, category=job.payload.category)
        return job.id

    async def get_status(self, job_id: str) -> Optional[Job]:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def join(self) -> None:
        """Wait for every in-flight job to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        await self.join()

    async def _process(self, job: Job) -> None:
        job.activate()
        await self._emit("active", job)

        async def report_progress(value: int) -> None:
            if job.advance(value):
                await self._emit("progress", job)

        try:
            result = await self._runner(job, report_progress)
        except Exception as e:
            job.fail(JobError.from_exception(e))
            logger.error(
                "Job failed",
                job_id=job.id,
                mode=self.mode,
                error=job.error.message,
                error_kind=job.error.kind.value,
                progress=job.progress,
            )
            await self._emit("failed", job)
            self._forget(job)
            return

        job.complete(result)
        logger.info("Job completed", job_id=job.id, mode=self.mode)
        await self._emit("completed", job)
        self._forget(job)

    def _forget(self, job: Job) -> None:
        # Terminal records are served by the session store from here on
        self._jobs.pop(job.id, None)
