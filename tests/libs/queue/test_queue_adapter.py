"""
Tests for execution strategy selection.

Tests verify:
- Disabled or unreachable backend -> direct mode with a fallback reason
- Reachable backend -> queued mode
- A backend that fails to start -> direct mode, never an error
- Jobs behave the same through the adapter in both modes
"""

import asyncio

import pytest
from fakeredis import FakeServer, aioredis

from libs.queue.adapter import QueueAdapter
from libs.tracking.models import Job, JobState, TrackingPayload


class RecordingHooks:
    def __init__(self):
        self.finished = {}

    async def on_active(self, job):
        pass

    async def on_progress(self, job):
        pass

    async def on_queued(self, job):
        pass

    async def on_completed(self, job):
        self.finished[job.id] = job

    async def on_failed(self, job):
        self.finished[job.id] = job


async def runner(job, progress):
    await progress(60)
    return {"brands": job.payload.brands}


async def reachable(host, port, timeout):
    return True


async def unreachable(host, port, timeout):
    return False


def _no_factory(settings):
    raise AssertionError("Redis client must not be created")


async def _wait_terminal(hooks, job_id, timeout=3.0):
    async def poll():
        while job_id not in hooks.finished:
            await asyncio.sleep(0.01)
        return hooks.finished[job_id]

    return await asyncio.wait_for(poll(), timeout=timeout)


@pytest.mark.asyncio
async def test_disabled_backend_selects_direct(test_settings):
    adapter = await QueueAdapter.create(test_settings, runner, RecordingHooks(), redis_factory=_no_factory)

    assert adapter.current_mode() == "direct"
    assert "disabled" in adapter.fallback_reason
    await adapter.close()


@pytest.mark.asyncio
async def test_unreachable_backend_selects_direct(test_settings):
    settings = test_settings.model_copy(update={"redis_enabled": True, "redis_port": 6390})
    adapter = await QueueAdapter.create(
        settings, runner, RecordingHooks(), probe=unreachable, redis_factory=_no_factory
    )

    assert adapter.current_mode() == "direct"
    assert adapter.fallback_reason == "Remote backend 127.0.0.1:6390 unreachable"
    await adapter.close()


@pytest.mark.asyncio
async def test_reachable_backend_selects_queued(test_settings, redis_client):
    settings = test_settings.model_copy(update={"redis_enabled": True})
    adapter = await QueueAdapter.create(
        settings, runner, RecordingHooks(), probe=reachable, redis_factory=lambda s: redis_client
    )

    try:
        assert adapter.current_mode() == "queued"
        assert adapter.fallback_reason is None
        assert await adapter.queue_counts() is not None
    finally:
        await adapter.close()


@pytest.mark.asyncio
async def test_backend_failing_to_start_selects_direct(test_settings):
    server = FakeServer()
    server.connected = False
    settings = test_settings.model_copy(update={"redis_enabled": True})

    adapter = await QueueAdapter.create(
        settings,
        runner,
        RecordingHooks(),
        probe=reachable,
        redis_factory=lambda s: aioredis.FakeRedis(server=server, decode_responses=True),
    )

    assert adapter.current_mode() == "direct"
    assert adapter.fallback_reason.startswith("Remote backend failed to start")
    await adapter.close()


@pytest.mark.asyncio
@pytest.mark.parametrize("probe", [reachable, unreachable])
async def test_job_lifecycle_identical_in_both_modes(test_settings, redis_client, probe):
    settings = test_settings.model_copy(update={"redis_enabled": True})
    hooks = RecordingHooks()
    adapter = await QueueAdapter.create(
        settings, runner, hooks, probe=probe, redis_factory=lambda s: redis_client
    )

    try:
        job_id = await adapter.submit(Job(payload=TrackingPayload(category="Email marketing", brands=["Mailchimp"])))
        job = await _wait_terminal(hooks, job_id)
    finally:
        await adapter.close()

    assert job.state is JobState.COMPLETED
    assert job.progress == 100
    assert job.result == {"brands": ["Mailchimp"]}
