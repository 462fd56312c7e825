"""Pydantic models for the visibility tracking API.

This module defines the request and response models used by the API endpoints.
Payload limits (category length, brand counts) are enforced by the tracking
service so that they surface as 400 responses, not schema errors.
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from libs.tracking.models import Job, JobError, JobState, TrackingMode, TrackingPayload
from libs.storage.history import TrendPoint


class StartTrackingRequest(BaseModel):
    """Request model for starting a tracking job."""

    category: str = Field(..., description="Product or service category", examples=["CRM software"])
    brands: list[str] = Field(..., description="Brands to track", examples=[["HubSpot", "Pipedrive"]])
    competitors: list[str] = Field(default_factory=list, description="Competitors to track", examples=[["Salesforce"]])
    mode: TrackingMode = Field("normal", description="Tracking mode")

    def to_payload(self) -> TrackingPayload:
        return TrackingPayload(
            category=self.category,
            brands=self.brands,
            competitors=self.competitors,
            mode=self.mode,
        )


class StartTrackingResponse(BaseModel):
    """Response model for an accepted tracking job."""

    job_id: str = Field(description="Identifier to poll for results")
    status: Literal["queued"] = "queued"
    mode: str = Field(description="Execution mode handling the job (queued/direct)")
    message: str = "Tracking started"


class JobStatusResponse(BaseModel):
    """Current state of a tracking job.

    Attributes:
        job_id: Job identifier
        state: queued/active/completed/failed
        progress: 0-100, never decreases
        result: Result bundle, only when completed
        error: Failure message and kind, only when failed
    """

    job_id: str
    state: JobState
    progress: int = Field(ge=0, le=100)
    category: str
    result: Optional[dict[str, Any]] = None
    error: Optional[JobError] = None
    attempts: int = 0
    created_at: datetime
    updated_at: datetime
    finished_at: Optional[datetime] = None

    @classmethod
    def from_job(cls, job: Job) -> "JobStatusResponse":
        return cls(
            job_id=job.id,
            state=job.state,
            progress=job.progress,
            category=job.payload.category,
            result=job.result,
            error=job.error,
            attempts=job.attempts,
            created_at=job.created_at,
            updated_at=job.updated_at,
            finished_at=job.finished_at,
        )


class SessionListResponse(BaseModel):
    sessions: list[JobStatusResponse]
    total: int


class TrendsResponse(BaseModel):
    """Visibility history of one brand in one category."""

    category: str
    brand: str
    days: int
    points: list[TrendPoint]


class PromptGenerationRequest(BaseModel):
    """Request model for previewing generated prompts."""

    category: str = Field(..., min_length=1, description="Product or service category", examples=["CRM software"])
    count: Optional[int] = Field(default=None, ge=1, description="Number of prompts (capped by configuration)")


class PromptGenerationResponse(BaseModel):
    category: str
    prompts: list[str]
    count: int


class HealthResponse(BaseModel):
    """Response model for the liveness endpoint.

    Attributes:
        status: Health status (healthy/unhealthy)
        service: Service name
        version: Service version
        timestamp: Unix timestamp
    """

    status: Literal["healthy", "unhealthy"] = Field(description="Health status", examples=["healthy"])
    service: str = Field(description="Service name", examples=["api"])
    version: str = Field(description="Service version", examples=["0.1.0"])
    timestamp: float = Field(default_factory=time.time, description="Unix timestamp")


class EngineHealthResponse(BaseModel):
    """Diagnostics for the tracking engine.

    Attributes:
        mode: Execution mode selected at startup (queued/direct)
        fallback_reason: Why the queued backend was not used, if it was not
        circuit_breaker: State, failure count and timing of the shared breaker
        queue: Queue depth counts (queued mode only)
        sessions: Session counts by state
    """

    status: Literal["healthy", "degraded"]
    mode: str
    fallback_reason: Optional[str] = None
    circuit_breaker: dict[str, Any]
    queue: Optional[dict[str, int]] = None
    sessions: dict[str, int]
    timestamp: float = Field(default_factory=time.time)
