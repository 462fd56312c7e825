"""Historical store: completed tracking reports, queried for trends."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Protocol, Sequence

import structlog
from pydantic import BaseModel, Field

from libs.tracking.models import EntityStats, MetricsSummary, utcnow

logger = structlog.get_logger(__name__)


class HistoryEntry(BaseModel):
    """One completed tracking run, as kept for trend analysis."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=utcnow)
    category: str
    brands: List[str]
    brand_stats: Dict[str, EntityStats]
    summary: MetricsSummary


class TrendPoint(BaseModel):
    date: datetime
    visibility_score: float = 0.0
    citation_share: float = 0.0
    total_mentions: int = 0


class HistoricalStore(Protocol):
    async def append(self, entry: HistoryEntry) -> HistoryEntry: ...

    async def query(
        self,
        category: Optional[str] = None,
        brands: Optional[Sequence[str]] = None,
        days: Optional[int] = None,
    ) -> List[HistoryEntry]: ...

    async def trends(self, category: str, brand: str, days: int = 30) -> List[TrendPoint]: ...


class InMemoryHistoricalStore:
    """In-memory history with a rolling retention window."""

    def __init__(self, retention_days: int = 90):
        self.retention_days = retention_days
        self._entries: List[HistoryEntry] = []

    async def append(self, entry: HistoryEntry) -> HistoryEntry:
        self._entries.append(entry)
        await self.cleanup()
        return entry

    async def cleanup(self) -> int:
        """Drop entries older than the retention window. Returns how many were removed."""
        cutoff = utcnow() - timedelta(days=self.retention_days)
        before = len(self._entries)
        self._entries = [e for e in self._entries if e.timestamp >= cutoff]
        removed = before - len(self._entries)
        if removed:
            logger.info("Old historical entries removed", removed=removed, retention_days=self.retention_days)
        return removed

    async def query(
        self,
        category: Optional[str] = None,
        brands: Optional[Sequence[str]] = None,
        days: Optional[int] = None,
    ) -> List[HistoryEntry]:
        """Entries matching every filter, oldest first."""
        entries = list(self._entries)
        if category:
            entries = [e for e in entries if e.category == category]
        if brands:
            entries = [e for e in entries if all(b in e.brands or b in e.brand_stats for b in brands)]
        if days:
            cutoff = utcnow() - timedelta(days=days)
            entries = [e for e in entries if e.timestamp >= cutoff]
        return sorted(entries, key=lambda e: e.timestamp)

    async def trends(self, category: str, brand: str, days: int = 30) -> List[TrendPoint]:
        points = []
        for entry in await self.query(category=category, brands=[brand], days=days):
            stats = entry.brand_stats.get(brand)
            if stats is None:
                points.append(TrendPoint(date=entry.timestamp))
                continue
            points.append(
                TrendPoint(
                    date=entry.timestamp,
                    visibility_score=stats.visibility_score,
                    citation_share=stats.citation_share,
                    total_mentions=stats.total_mentions,
                )
            )
        return points
