"""Visibility Tracker API Service.

FastAPI application exposing the tracking engine: start jobs, poll their
progress and results, browse sessions and trends, and inspect diagnostics.
The engine (execution strategy, circuit breaker, stores) is created once in
the application lifespan.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from api.models import EngineHealthResponse, HealthResponse
from api.routers import prompts as prompts_router
from api.routers import tracking as tracking_router
from libs.common.settings import Settings, get_settings
from libs.llm.openai_client import OpenAIExternalQuery, OpenAIPromptSource
from libs.tracking.service import TrackingService, build_service


def configure_logging(settings: Settings) -> None:
    """Configure structured logging at the configured level."""
    logging.basicConfig(format="%(message)s")
    logging.getLogger().setLevel(settings.log_level)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging(get_settings())

logger = structlog.get_logger(__name__)

SERVICE_VERSION = "0.1.0"


def create_app(service: Optional[TrackingService] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        service: Pre-wired tracking service; built from settings when omitted
    """
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        tracking_service = service or build_service(
            settings,
            OpenAIPromptSource(settings),
            OpenAIExternalQuery(settings),
        )
        await tracking_service.start()
        app.state.tracking_service = tracking_service
        logger.info(
            "Tracking engine started",
            mode=tracking_service.current_mode(),
            env=settings.app_env,
        )
        try:
            yield
        finally:
            await tracking_service.close()
            logger.info("Tracking engine stopped")

    app = FastAPI(
        title="Visibility Tracker API",
        description="Tracks how often AI assistants mention your brand and your competitors",
        version=SERVICE_VERSION,
        default_response_class=ORJSONResponse,
        debug=settings.debug,
        lifespan=lifespan,
    )

    cors_origins = ["*"] if settings.is_development else settings.cors_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=False if settings.is_development else True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    # Add request logging middleware
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all requests with timing and structured data."""
        start_time = time.time()
        request_id = f"req_{int(start_time * 1000000)}"
        request.state.request_id = request_id

        logger.info(
            "Request started",
            request_id=request_id,
            method=request.method,
            url=str(request.url),
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                request_id=request_id,
                error=str(e),
                process_time_ms=round((time.time() - start_time) * 1000, 2),
                exc_info=True,
            )
            raise

        logger.info(
            "Request completed",
            request_id=request_id,
            status_code=response.status_code,
            process_time_ms=round((time.time() - start_time) * 1000, 2),
        )
        response.headers["X-Request-ID"] = request_id
        return response

    app.include_router(tracking_router.router, prefix="/api")
    app.include_router(prompts_router.router, prefix="/api")

    @app.get("/healthz", response_model=HealthResponse, tags=["Health"])
    async def health_check() -> HealthResponse:
        """Health check endpoint for liveness probes.

        Example:
            ```bash
            curl http://localhost:8000/healthz
            ```
        """
        return HealthResponse(status="healthy", service="api", version=SERVICE_VERSION)

    @app.get("/api/health", response_model=EngineHealthResponse, tags=["Health"])
    async def engine_health(request: Request) -> EngineHealthResponse:
        """Engine diagnostics: execution mode, fallback reason, circuit breaker and counts.

        Reports ``degraded`` while the circuit breaker is not closed.
        """
        snapshot = await request.app.state.tracking_service.health()
        degraded = snapshot["circuit_breaker"]["state"] != "CLOSED"
        return EngineHealthResponse(status="degraded" if degraded else "healthy", **snapshot)

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn

    # For local development only
    uvicorn.run(
        "api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=get_settings().log_level.lower(),
    )
