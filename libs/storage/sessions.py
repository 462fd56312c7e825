"""Session state store: the externally readable record of every tracking job."""

from __future__ import annotations

from collections import Counter
from typing import Any, Dict, List, Optional, Protocol

import structlog

from libs.tracking.models import Job, JobState

logger = structlog.get_logger(__name__)


class SessionStateStore(Protocol):
    async def create(self, job: Job) -> Job: ...

    async def update(self, job_id: str, fields: Dict[str, Any]) -> Optional[Job]: ...

    async def get(self, job_id: str) -> Optional[Job]: ...

    async def list(
        self, state: Optional[JobState] = None, limit: Optional[int] = None, offset: int = 0
    ) -> List[Job]: ...

    async def stats(self) -> Dict[str, int]: ...

    async def delete(self, job_id: str) -> bool: ...


class InMemorySessionStore:
    """
    In-memory session records keyed by job id.

    Data is lost on restart; ``update`` applies a partial field update and is
    idempotent under repeated identical writes.
    """

    def __init__(self):
        self._sessions: Dict[str, Job] = {}

    async def create(self, job: Job) -> Job:
        self._sessions[job.id] = job.model_copy(deep=True)
        return job

    async def update(self, job_id: str, fields: Dict[str, Any]) -> Optional[Job]:
        job = self._sessions.get(job_id)
        if job is None:
            logger.warning("Update for unknown session ignored", job_id=job_id, fields=sorted(fields))
            return None

        updated = job.model_copy(update=fields, deep=True)
        self._sessions[job_id] = updated
        return updated.model_copy(deep=True)

    async def get(self, job_id: str) -> Optional[Job]:
        job = self._sessions.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def list(
        self, state: Optional[JobState] = None, limit: Optional[int] = None, offset: int = 0
    ) -> List[Job]:
        """Sessions newest first, optionally filtered by state."""
        sessions = [s for s in self._sessions.values() if state is None or s.state == state]
        sessions.sort(key=lambda s: s.created_at, reverse=True)
        sessions = sessions[offset:]
        if limit is not None:
            sessions = sessions[:limit]
        return [s.model_copy(deep=True) for s in sessions]

    async def stats(self) -> Dict[str, int]:
        counts = Counter(s.state.value for s in self._sessions.values())
        return {"total": len(self._sessions), **{state.value: counts.get(state.value, 0) for state in JobState}}

    async def delete(self, job_id: str) -> bool:
        return self._sessions.pop(job_id, None) is not None

    async def clear(self) -> None:
        self._sessions.clear()
