"""
Tests for the Redis-backed queued strategy (fakeredis).

Tests verify:
- Submitted jobs are picked up by the worker and completed
- Retryable failures are re-queued with backoff, permanent ones fail at once
- Job records are removed on completion when configured
- Backend errors at submission surface as TransientError
"""

import asyncio

from fakeredis import FakeServer, aioredis
import pytest

from libs.common.errors import ErrorKind, PermanentError, TransientError
from libs.queue.remote import RemoteStrategy
from libs.tracking.models import Job, JobState, TrackingPayload


class RecordingHooks:
    def __init__(self):
        self.events = []

    async def on_active(self, job):
        self.events.append(("active", job.attempts))

    async def on_progress(self, job):
        self.events.append(("progress", job.progress))

    async def on_queued(self, job):
        self.events.append(("queued", job.attempts))

    async def on_completed(self, job):
        self.events.append(("completed", job.attempts))

    async def on_failed(self, job):
        self.events.append(("failed", job.attempts))


class ScriptedRunner:
    """Raises the queued errors on successive attempts, then succeeds."""

    def __init__(self, errors=()):
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self, job, progress):
        self.calls += 1
        await progress(50)
        if self.errors:
            raise self.errors.pop(0)
        return {"category": job.payload.category}


def _job():
    return Job(payload=TrackingPayload(category="Project management", brands=["Asana"], competitors=["Trello"]))


async def _wait_for_event(hooks, event, timeout=3.0):
    async def poll():
        while not any(name == event for name, _ in hooks.events):
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout=timeout)


@pytest.fixture
def hooks():
    return RecordingHooks()


@pytest.fixture
async def make_strategy(redis_client, hooks, queue_name):
    created = []

    async def factory(runner, **kwargs):
        options = {"queue_name": queue_name, "backoff_delay": 0.0, "poll_interval": 0.01, **kwargs}
        strategy = RemoteStrategy(redis_client, runner, hooks, **options)
        await strategy.start()
        created.append(strategy)
        return strategy

    yield factory

    for strategy in created:
        await strategy.close()


@pytest.mark.asyncio
async def test_job_completes_through_queue(make_strategy, hooks, redis_client, queue_name):
    strategy = await make_strategy(ScriptedRunner())

    job_id = await strategy.submit(_job())
    await _wait_for_event(hooks, "completed")

    job = await strategy.get_status(job_id)
    assert job.state is JobState.COMPLETED
    assert job.progress == 100
    assert job.result == {"category": "Project management"}
    assert hooks.events == [("active", 1), ("progress", 50), ("completed", 1)]

    counts = await strategy.queue_counts()
    assert counts == {"waiting": 0, "active": 0, "delayed": 0, "completed": 1, "failed": 0}
    assert await redis_client.ttl(f"{queue_name}:job:{job_id}") > 0


@pytest.mark.asyncio
async def test_retryable_failure_is_requeued(make_strategy, hooks):
    runner = ScriptedRunner([TransientError("upstream 503")])
    strategy = await make_strategy(runner, max_attempts=3)

    job_id = await strategy.submit(_job())
    await _wait_for_event(hooks, "completed")

    job = await strategy.get_status(job_id)
    assert job.state is JobState.COMPLETED
    assert job.attempts == 2
    assert runner.calls == 2
    # Progress from the first attempt is kept, so no second progress event
    assert hooks.events == [("active", 1), ("progress", 50), ("queued", 1), ("active", 2), ("completed", 2)]


@pytest.mark.asyncio
async def test_permanent_failure_fails_after_one_attempt(make_strategy, hooks):
    runner = ScriptedRunner([PermanentError("invalid API key", status_code=401)])
    strategy = await make_strategy(runner, max_attempts=3)

    job_id = await strategy.submit(_job())
    await _wait_for_event(hooks, "failed")

    job = await strategy.get_status(job_id)
    assert job.state is JobState.FAILED
    assert job.attempts == 1
    assert job.progress == 50
    assert job.error.kind is ErrorKind.PERMANENT
    assert runner.calls == 1

    counts = await strategy.queue_counts()
    assert counts["failed"] == 1
    assert counts["delayed"] == 0


@pytest.mark.asyncio
async def test_retryable_failure_exhausts_job_attempts(make_strategy, hooks):
    runner = ScriptedRunner([TransientError("down")] * 5)
    strategy = await make_strategy(runner, max_attempts=2)

    job_id = await strategy.submit(_job())
    await _wait_for_event(hooks, "failed")

    job = await strategy.get_status(job_id)
    assert job.attempts == 2
    assert job.error.kind is ErrorKind.TRANSIENT
    assert runner.calls == 2


@pytest.mark.asyncio
async def test_remove_on_complete_drops_record(make_strategy, hooks):
    strategy = await make_strategy(ScriptedRunner(), remove_on_complete=True)

    job_id = await strategy.submit(_job())
    await _wait_for_event(hooks, "completed")

    assert await strategy.get_status(job_id) is None
    assert (await strategy.queue_counts())["completed"] == 0


@pytest.mark.asyncio
async def test_jobs_run_in_submission_order(make_strategy, hooks):
    seen = []

    async def runner(job, progress):
        seen.append(job.payload.category)
        return {}

    strategy = await make_strategy(runner)
    for category in ("first", "second", "third"):
        await strategy.submit(Job(payload=TrackingPayload(category=category, brands=["Asana"])))

    async def all_done():
        while sum(1 for name, _ in hooks.events if name == "completed") < 3:
            await asyncio.sleep(0.01)

    await asyncio.wait_for(all_done(), timeout=3.0)
    assert seen == ["first", "second", "third"]


@pytest.mark.asyncio
async def test_submit_fails_transient_when_backend_down(hooks):
    server = FakeServer()
    server.connected = False
    client = aioredis.FakeRedis(server=server, decode_responses=True)
    strategy = RemoteStrategy(client, ScriptedRunner(), hooks, queue_name="down")

    with pytest.raises(TransientError, match="Queue backend unavailable"):
        await strategy.submit(_job())
