from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from api.models import PromptGenerationRequest, PromptGenerationResponse
from api.routers.tracking import get_tracking_service
from libs.tracking.service import TrackingService

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.post("/prompts/generate", tags=["Prompts"])
async def generate_prompts(
    request: PromptGenerationRequest,
    service: TrackingService = Depends(get_tracking_service),
) -> PromptGenerationResponse:
    """Preview the prompts a tracking job would run for a category.

    Falls back to templated prompts when generation is unavailable.

    Example:
        ```bash
        curl -X POST http://localhost:8000/api/prompts/generate \\
          -H 'Content-Type: application/json' \\
          -d '{"category": "CRM software", "count": 5}'
        ```
    """
    if not request.category.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Category is required")

    prompts = await service.generate_prompts(request.category.strip(), request.count)
    logger.info("Prompts previewed", category=request.category, count=len(prompts))
    return PromptGenerationResponse(category=request.category.strip(), prompts=prompts, count=len(prompts))
