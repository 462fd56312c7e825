from __future__ import annotations

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from api.models import (
    JobStatusResponse,
    SessionListResponse,
    StartTrackingRequest,
    StartTrackingResponse,
    TrendsResponse,
)
from libs.common.errors import TransientError, ValidationError
from libs.tracking.models import JobState
from libs.tracking.service import TrackingService

logger = structlog.get_logger(__name__)
router = APIRouter()


def get_tracking_service(request: Request) -> TrackingService:
    """Tracking service created by the application lifespan."""
    return request.app.state.tracking_service


@router.post(
    "/tracking/start",
    status_code=status.HTTP_202_ACCEPTED,
    tags=["Tracking"],
)
async def start_tracking(
    request: StartTrackingRequest,
    service: TrackingService = Depends(get_tracking_service),
) -> StartTrackingResponse:
    """Start a tracking job.

    The job runs in the background; poll ``/api/tracking/results/{job_id}``
    for progress and the final report.

    Raises:
        HTTPException: 400 for an invalid payload, 503 if the queue is unavailable

    Example:
        ```bash
        curl -X POST http://localhost:8000/api/tracking/start \\
          -H 'Content-Type: application/json' \\
          -d '{"category": "CRM software", "brands": ["HubSpot"], "competitors": ["Salesforce"]}'
        ```
    """
    try:
        job_id = await service.submit(request.to_payload())
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except TransientError as e:
        logger.error("Tracking job could not be queued", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Tracking is temporarily unavailable. Please try again later.",
        )

    return StartTrackingResponse(job_id=job_id, mode=service.current_mode())


@router.get("/tracking/results/{job_id}", tags=["Tracking"])
async def get_results(
    job_id: str,
    service: TrackingService = Depends(get_tracking_service),
) -> JobStatusResponse:
    """Get the state, progress and (once finished) the result or error of a job.

    Raises:
        HTTPException: 404 if the job is unknown
    """
    job = await service.get_status(job_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Tracking job {job_id} not found",
        )
    return JobStatusResponse.from_job(job)


@router.get("/tracking/sessions", tags=["Tracking"])
async def list_sessions(
    state: Optional[JobState] = None,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    service: TrackingService = Depends(get_tracking_service),
) -> SessionListResponse:
    """List tracking sessions, newest first."""
    sessions = await service.list_sessions(state=state, limit=limit, offset=offset)
    return SessionListResponse(
        sessions=[JobStatusResponse.from_job(job) for job in sessions],
        total=len(sessions),
    )


@router.get("/tracking/trends", tags=["Tracking"])
async def get_trends(
    category: str,
    brand: str,
    days: int = Query(30, ge=1, le=365),
    service: TrackingService = Depends(get_tracking_service),
) -> TrendsResponse:
    """Visibility history of one brand within a category."""
    points = await service.get_trends(category, brand, days)
    return TrendsResponse(category=category, brand=brand, days=days, points=points)
