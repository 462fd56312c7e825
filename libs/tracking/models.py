"""Pydantic models for tracking jobs, query results and metrics.

Job records are mutated only through their lifecycle methods, which enforce
the terminal-state and progress invariants. Query results and metric reports
are created once and never mutated afterwards.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from libs.common.errors import ErrorKind, JobStateError, classify, root_cause

TrackingMode = Literal["normal", "competitor"]

CITATION_FALLBACK = ["Documentation", "Official Website"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Mention(BaseModel):
    """One occurrence-record of a tracked brand in a response."""

    model_config = ConfigDict(frozen=True)

    brand: str = Field(..., description="Tracked brand name as supplied by the caller.")
    count: int = Field(..., ge=1, description="Number of whole-word matches in the response.")
    contexts: List[str] = Field(default_factory=list, max_length=3, description="Up to 3 sentences mentioning the brand.")
    citations: List[str] = Field(default_factory=lambda: list(CITATION_FALLBACK), min_length=1)
    position: int = Field(0, ge=0, description="Character offset of the first mention, used for ordering.")


class QueryResponse(BaseModel):
    """What the external query service returns for a single prompt."""

    text: str
    mentions: List[Mention] = Field(default_factory=list)


class QueryResult(BaseModel):
    """Outcome of one external call within a tracking job."""

    model_config = ConfigDict(frozen=True)

    prompt: str
    response: str
    mentions: List[Mention] = Field(default_factory=list)
    mode: TrackingMode = "normal"
    timestamp: datetime = Field(default_factory=utcnow)


class EntityStats(BaseModel):
    """Aggregated visibility statistics for one tracked brand."""

    total_mentions: int = Field(0, ge=0)
    total_prompts: int = Field(0, ge=0)
    mentioned_in: List[str] = Field(default_factory=list)
    missing_in: List[str] = Field(default_factory=list)
    contexts: List[str] = Field(default_factory=list)
    cited_pages: List[str] = Field(default_factory=list)
    citation_share: float = Field(0.0, ge=0, le=100)
    visibility_score: float = Field(0.0, ge=0, le=100)


class MetricsSummary(BaseModel):
    total_prompts: int
    total_mentions: int
    tracked_count: int
    competitor_count: int


class MetricsReport(BaseModel):
    """Per-brand statistics plus a summary, computed once per job."""

    model_config = ConfigDict(frozen=True)

    brand_stats: Dict[str, EntityStats]
    summary: MetricsSummary
    prompt_results: List[QueryResult] = Field(default_factory=list)


class TrackingPayload(BaseModel):
    """Input of a tracking job."""

    category: str
    brands: List[str]
    competitors: List[str] = Field(default_factory=list)
    mode: TrackingMode = "normal"

    @property
    def all_brands(self) -> List[str]:
        return [*self.brands, *self.competitors]


class TrackingResult(BaseModel):
    """Result bundle of a completed tracking job."""

    category: str
    brands: List[str]
    competitors: List[str]
    mode: TrackingMode
    metrics: MetricsReport
    completed_at: datetime = Field(default_factory=utcnow)


class JobState(str, Enum):
    QUEUED = "queued"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


class JobError(BaseModel):
    """Terminal failure recorded on a job: message plus classification."""

    message: str
    kind: ErrorKind = ErrorKind.UNKNOWN
    error_type: Optional[str] = None

    @classmethod
    def from_exception(cls, error: BaseException) -> "JobError":
        return cls(
            message=str(error) or type(error).__name__,
            kind=classify(error),
            error_type=type(root_cause(error)).__name__,
        )


class Job(BaseModel):
    """A tracking job and its lifecycle state."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    payload: TrackingPayload
    state: JobState = JobState.QUEUED
    progress: int = Field(0, ge=0, le=100)
    result: Optional[Dict[str, Any]] = None
    error: Optional[JobError] = None
    attempts: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None

    @model_validator(mode="after")
    def result_and_error_exclusive(self) -> "Job":
        if self.result is not None and self.error is not None:
            raise ValueError("A job cannot carry both a result and an error")
        return self

    def _ensure_mutable(self, action: str) -> None:
        if self.state.is_terminal:
            raise JobStateError(f"Cannot {action} job {self.id}: already {self.state.value}")

    def activate(self) -> None:
        self._ensure_mutable("activate")
        self.state = JobState.ACTIVE
        self.attempts += 1
        self.updated_at = utcnow()

    def requeue(self) -> None:
        """Return an active job to the queue for another attempt (progress is kept)."""
        self._ensure_mutable("requeue")
        self.state = JobState.QUEUED
        self.updated_at = utcnow()

    def advance(self, progress: int) -> bool:
        """Raise progress; lower or repeated values are ignored. Returns True if it moved."""
        if self.state.is_terminal:
            return False
        progress = max(0, min(100, int(progress)))
        if progress <= self.progress:
            return False
        self.progress = progress
        self.updated_at = utcnow()
        return True

    def complete(self, result: Dict[str, Any]) -> None:
        self._ensure_mutable("complete")
        self.state = JobState.COMPLETED
        self.progress = 100
        self.result = result
        self.error = None
        self.finished_at = self.updated_at = utcnow()

    def fail(self, error: JobError) -> None:
        self._ensure_mutable("fail")
        self.state = JobState.FAILED
        self.error = error
        self.result = None
        self.finished_at = self.updated_at = utcnow()
