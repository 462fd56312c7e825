"""
Job execution backends for the tracking engine.

This module provides:
- Backend availability probe
- Direct (in-process) and queued (Redis) execution strategies
- QueueAdapter selecting one of them at startup
"""

from libs.queue.adapter import QueueAdapter
from libs.queue.base import ExecutionStrategy, JobHooks, JobRunner, ProgressSink
from libs.queue.direct import DirectStrategy
from libs.queue.probe import is_reachable
from libs.queue.remote import RemoteStrategy

__all__ = [
    "QueueAdapter",
    "ExecutionStrategy",
    "JobHooks",
    "JobRunner",
    "ProgressSink",
    "DirectStrategy",
    "RemoteStrategy",
    "is_reachable",
]
