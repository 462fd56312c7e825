"""Visibility Tracker shared libraries.

This package contains the job-execution engine:
- common: Configuration and the error taxonomy
- resilience: Circuit breaker and retry executor
- queue: Backend probe, execution strategies and the queue adapter
- tracking: Prompt orchestration, mention analysis and metrics
- storage: Session state and historical stores
- llm: OpenAI-backed prompt source and external query
"""
