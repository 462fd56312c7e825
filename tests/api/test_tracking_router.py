"""
Tests for the tracking API routes.

Tests verify:
- POST /api/tracking/start accepts a job and results become available
- Invalid payloads -> 400, unknown jobs -> 404
- Sessions, trends and prompt preview endpoints
- Health endpoints report the execution mode and breaker state
- Logging honours the configured level
"""

import logging
import time

import pytest
from fastapi.testclient import TestClient

from api.main import configure_logging, create_app
from libs.common.settings import Settings
from libs.tracking.service import build_service

PROMPTS = ["p1", "p2", "p3", "p4", "p5"]


def abc_answer(prompt):
    if prompt in ("p1", "p2"):
        return "A leads the market. B is a close second."
    return "A leads the market."


@pytest.fixture
def client(test_settings, prompt_source, scripted_query):
    service = build_service(test_settings, prompt_source(PROMPTS), scripted_query(abc_answer))
    with TestClient(create_app(service)) as test_client:
        yield test_client


def _start(client, **overrides):
    body = {"category": "Project tools", "brands": ["A", "B"], "competitors": ["C"], **overrides}
    return client.post("/api/tracking/start", json=body)


def _wait_finished(client, job_id, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        data = client.get(f"/api/tracking/results/{job_id}").json()
        if data["state"] in ("completed", "failed"):
            return data
        time.sleep(0.02)
    raise AssertionError(f"Job {job_id} did not finish")


def test_start_and_poll_results(client):
    response = _start(client)

    assert response.status_code == 202
    body = response.json()
    assert body["status"] == "queued"
    assert body["mode"] == "direct"

    data = _wait_finished(client, body["job_id"])
    assert data["state"] == "completed"
    assert data["progress"] == 100
    assert data["error"] is None
    stats = data["result"]["metrics"]["brand_stats"]
    assert stats["A"]["visibility_score"] == 100.0
    assert stats["B"]["visibility_score"] == 40.0
    assert stats["C"]["visibility_score"] == 0.0


@pytest.mark.parametrize(
    "overrides",
    [
        {"category": "x"},
        {"brands": []},
        {"brands": [f"b{i}" for i in range(11)]},
        {"competitors": [f"c{i}" for i in range(6)]},
        {"brands": ["   "]},
    ],
)
def test_invalid_payload_returns_400(client, overrides):
    response = _start(client, **overrides)

    assert response.status_code == 400
    assert response.json()["detail"]


def test_invalid_mode_rejected_by_schema(client):
    assert _start(client, mode="aggressive").status_code == 422


def test_unknown_job_returns_404(client):
    response = client.get("/api/tracking/results/does-not-exist")

    assert response.status_code == 404


def test_sessions_and_trends(client):
    job_id = _start(client).json()["job_id"]
    _wait_finished(client, job_id)

    sessions = client.get("/api/tracking/sessions", params={"state": "completed"}).json()
    assert sessions["total"] == 1
    assert sessions["sessions"][0]["job_id"] == job_id

    deadline = time.monotonic() + 3.0
    points = []
    while not points and time.monotonic() < deadline:
        trends = client.get("/api/tracking/trends", params={"category": "Project tools", "brand": "B"}).json()
        points = trends["points"]
        time.sleep(0.02)
    assert points[0]["visibility_score"] == 40.0


def test_generate_prompts(client):
    response = client.post("/api/prompts/generate", json={"category": "CRM", "count": 2})

    assert response.status_code == 200
    assert response.json() == {"category": "CRM", "prompts": ["p1", "p2"], "count": 2}


def test_generate_prompts_blank_category(client):
    response = client.post("/api/prompts/generate", json={"category": "   "})

    assert response.status_code == 400


def test_healthz(client):
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert "X-Request-ID" in response.headers


def test_engine_health(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["mode"] == "direct"
    assert "disabled" in data["fallback_reason"]
    assert data["circuit_breaker"]["state"] == "CLOSED"
    assert data["queue"] is None


def test_configure_logging_uses_settings_level():
    root = logging.getLogger()
    previous = root.level
    try:
        configure_logging(Settings(log_level="WARNING"))
        assert root.level == logging.WARNING
    finally:
        root.setLevel(previous)
