"""
Storage collaborators for the tracking engine.

Provides:
- Session state store (job records readable by callers)
- Historical store (completed reports for trend analysis)

Both ship as in-memory implementations; data is lost on restart.
"""

from libs.storage.history import HistoryEntry, InMemoryHistoricalStore, TrendPoint
from libs.storage.sessions import InMemorySessionStore

__all__ = ["HistoryEntry", "InMemoryHistoricalStore", "InMemorySessionStore", "TrendPoint"]
