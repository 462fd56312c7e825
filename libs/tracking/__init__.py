"""Tracking engine: prompt orchestration, mention analysis, metrics and job glue."""
