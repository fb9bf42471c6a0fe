"""
In-memory averages cache and recompute queue (dev/tests).

Semantics match the Postgres adapters in `repo_db.py`:
    - cache rows are replaced per classroom id, never appended
    - at most one queue entry per classroom; a submission while the entry is
      leased re-queues it so the latest write is always recomputed
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from itertools import count
from threading import Lock
from typing import Dict, List, Optional
from uuid import uuid4

from backend.school.ports import RowFilter

from .ports import ClassroomAverage, RecomputeJob


class InMemoryAveragesCache:
    def __init__(self) -> None:
        self._rows: Dict[str, ClassroomAverage] = {}
        self._lock = Lock()

    def upsert(self, average: ClassroomAverage) -> None:
        with self._lock:
            self._rows[average.classroom_id] = average

    def get(self, classroom_id: str) -> Optional[ClassroomAverage]:
        with self._lock:
            return self._rows.get(str(classroom_id))

    def list_averages(self, row_filter: RowFilter) -> List[ClassroomAverage]:
        if row_filter.is_empty:
            return []
        with self._lock:
            rows = [r for r in self._rows.values() if row_filter.matches(r.to_dict())]
        return sorted(rows, key=lambda r: (r.classroom_name.lower(), r.classroom_id))

    def __len__(self) -> int:
        return len(self._rows)


@dataclass
class _Entry:
    id: str
    classroom_id: str
    status: str
    retry_count: int
    visible_at: datetime
    seq: int
    lease_key: Optional[str] = None
    leased_until: Optional[datetime] = None
    last_error: Optional[str] = None


class InMemoryRecomputeQueue:
    def __init__(self, *, lease_seconds: int = 45) -> None:
        self._entries: Dict[str, _Entry] = {}
        self._lease_seconds = lease_seconds
        self._seq = count(1)
        self._lock = Lock()

    def submit(self, classroom_id: str) -> None:
        now = datetime.now(timezone.utc)
        cid = str(classroom_id)
        with self._lock:
            entry = self._entries.get(cid)
            if entry is None:
                self._entries[cid] = _Entry(
                    id=str(uuid4()),
                    classroom_id=cid,
                    status="queued",
                    retry_count=0,
                    visible_at=now,
                    seq=next(self._seq),
                )
                return
            # Coalesce; a leased entry loses its lease so ack() keeps it queued.
            entry.status = "queued"
            entry.retry_count = 0
            entry.visible_at = now
            entry.lease_key = None
            entry.leased_until = None

    def lease(self, *, now: datetime) -> Optional[RecomputeJob]:
        with self._lock:
            candidates = [
                e
                for e in self._entries.values()
                if (e.status == "queued" and e.visible_at <= now)
                or (e.status == "leased" and e.leased_until is not None and e.leased_until <= now)
            ]
            if not candidates:
                return None
            entry = min(candidates, key=lambda e: (e.visible_at, e.seq))
            entry.status = "leased"
            entry.lease_key = str(uuid4())
            entry.leased_until = now + timedelta(seconds=self._lease_seconds)
            return RecomputeJob(
                id=entry.id,
                classroom_id=entry.classroom_id,
                retry_count=entry.retry_count,
                lease_key=entry.lease_key,
            )

    def ack(self, job: RecomputeJob) -> None:
        with self._lock:
            entry = self._entries.get(job.classroom_id)
            if entry is not None and entry.id == job.id and entry.lease_key == job.lease_key:
                del self._entries[job.classroom_id]

    def retry(self, job: RecomputeJob, *, visible_at: datetime, error: str) -> None:
        with self._lock:
            entry = self._entries.get(job.classroom_id)
            if entry is None or entry.lease_key != job.lease_key:
                return
            entry.status = "queued"
            entry.retry_count += 1
            entry.visible_at = visible_at
            entry.last_error = error
            entry.lease_key = None
            entry.leased_until = None

    def depth(self) -> int:
        with self._lock:
            return len(self._entries)

    def pending_classroom_ids(self) -> List[str]:
        with self._lock:
            return [e.classroom_id for e in sorted(self._entries.values(), key=lambda e: e.seq)]


__all__ = ["InMemoryAveragesCache", "InMemoryRecomputeQueue"]
