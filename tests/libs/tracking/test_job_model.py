"""
Tests for the job lifecycle model.

Tests verify:
- Progress never decreases and is ignored once terminal
- Terminal jobs reject further mutation
- Result and error are mutually exclusive
"""

import pytest
from pydantic import ValidationError as PydanticValidationError

from libs.common.errors import ErrorKind, JobStateError, RetryExhausted, TransientError
from libs.tracking.models import Job, JobError, JobState, TrackingPayload


@pytest.fixture
def job():
    return Job(payload=TrackingPayload(category="CRM", brands=["HubSpot"], competitors=["Salesforce"]))


def test_defaults(job):
    assert job.state is JobState.QUEUED
    assert job.progress == 0
    assert job.attempts == 0
    assert job.payload.all_brands == ["HubSpot", "Salesforce"]


def test_progress_is_monotonic(job):
    job.activate()

    assert job.advance(30) is True
    assert job.advance(20) is False
    assert job.advance(30) is False
    assert job.advance(150) is True
    assert job.progress == 100


def test_complete_sets_progress_100(job):
    job.activate()
    job.advance(80)
    job.complete({"ok": True})

    assert job.state is JobState.COMPLETED
    assert job.progress == 100
    assert job.finished_at is not None


def test_failed_job_is_frozen(job):
    job.activate()
    job.advance(45)
    job.fail(JobError(message="boom", kind=ErrorKind.TRANSIENT))

    assert job.advance(90) is False
    assert job.progress == 45
    with pytest.raises(JobStateError):
        job.complete({"late": True})
    with pytest.raises(JobStateError):
        job.activate()


def test_requeue_keeps_progress_and_attempts(job):
    job.activate()
    job.advance(50)
    job.requeue()
    job.activate()

    assert job.state is JobState.ACTIVE
    assert job.progress == 50
    assert job.attempts == 2


def test_result_and_error_exclusive(job):
    with pytest.raises(PydanticValidationError):
        Job(payload=job.payload, result={"x": 1}, error=JobError(message="bad"))


def test_job_error_unwraps_retry_exhausted():
    error = JobError.from_exception(RetryExhausted(3, TransientError("upstream 503")))

    assert error.kind is ErrorKind.TRANSIENT
    assert error.error_type == "TransientError"
    assert error.message == "Failed after 3 attempts: upstream 503"


def test_json_round_trip_keeps_state(job):
    job.activate()
    job.advance(40)

    restored = Job.model_validate_json(job.model_dump_json())

    assert restored.state is JobState.ACTIVE
    assert restored.progress == 40
