"""
Pytest configuration and fixtures for the visibility tracker tests.

Provides shared fixtures for:
- Mock Redis client (fakeredis)
- Scripted collaborators (prompt source, external query)
- Test settings with zero delays
"""

import uuid

import pytest

from libs.common.settings import Settings, get_settings
from libs.tracking.mentions import find_mentions
from libs.tracking.models import QueryResponse


class ScriptedQuery:
    """
    ExternalQuery double.

    Raises the queued ``errors`` first (one per call), then answers with
    ``answer(prompt)``. Every call is recorded.
    """

    def __init__(self, answer=None, errors=None):
        self.answer = answer or (lambda prompt: f"No brands here for: {prompt}")
        self.errors = list(errors or [])
        self.calls = []

    async def ask(self, prompt, *, brands):
        self.calls.append(prompt)
        if self.errors:
            raise self.errors.pop(0)
        text = self.answer(prompt)
        return QueryResponse(text=text, mentions=find_mentions(text, brands))


class StaticPromptSource:
    """PromptSource double returning fixed prompts, or raising ``error``."""

    def __init__(self, prompts=None, error=None):
        self.prompts = list(prompts or [])
        self.error = error
        self.calls = []

    async def generate(self, category, count):
        self.calls.append((category, count))
        if self.error is not None:
            raise self.error
        return list(self.prompts)


class SleepRecorder:
    """Injected sleep: records delays and yields control without waiting."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
async def redis_client():
    """
    Provide fakeredis client for testing.

    This avoids requiring actual Redis server during tests.
    """
    from fakeredis import aioredis as fakeredis

    client = fakeredis.FakeRedis(decode_responses=True)

    yield client

    # Cleanup - flush all data after test
    await client.flushdb()
    await client.aclose()


@pytest.fixture
def queue_name():
    """Unique queue prefix so fakeredis data never leaks between tests."""
    return f"test-tracking-{uuid.uuid4().hex[:8]}"


@pytest.fixture
def test_settings(queue_name):
    """Settings with every delay zeroed and the queue backend disabled."""
    return Settings(
        app_env="test",
        redis_enabled=False,
        retry_base_delay_ms=0,
        retry_max_delay_ms=0,
        retry_timeout_ms=5000,
        rate_limit_delay_ms=0,
        queue_name=queue_name,
        queue_backoff_delay_ms=0,
        worker_poll_interval_ms=10,
    )


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def scripted_query():
    """Factory for ExternalQuery doubles."""
    return ScriptedQuery


@pytest.fixture
def prompt_source():
    """Factory for PromptSource doubles."""
    return StaticPromptSource


@pytest.fixture(autouse=True)
def setup_test_env(monkeypatch):
    """Set up test environment variables."""
    monkeypatch.setenv("VISIBILITY_APP_ENV", "test")
    monkeypatch.setenv("VISIBILITY_REDIS_ENABLED", "false")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
