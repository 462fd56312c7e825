"""Visibility Tracker API Service.

This package contains the FastAPI application exposing the tracking engine.

Main components:
- main.py: FastAPI application, lifespan wiring and health endpoints
- models.py: Pydantic models for requests and responses
- routers/tracking.py: start jobs, poll results, sessions and trends
- routers/prompts.py: prompt generation preview
"""

# Avoid importing the FastAPI app at package import time; importing
# api.main configures logging and builds the application.
__all__ = []
