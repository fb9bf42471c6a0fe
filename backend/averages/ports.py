"""Ports for the classroom averages cache and its recompute queue."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import List, Optional, Protocol

from backend.school.ports import RowFilter


@dataclass(frozen=True)
class ClassroomAverage:
    """Cached aggregate for one classroom; `average` is None when no scores exist."""

    classroom_id: str
    classroom_name: str
    average: Optional[float]
    total_assignments: int
    total_students: int
    last_updated: str

    @property
    def has_data(self) -> bool:
        return self.average is not None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class RecomputeJob:
    """Minimal snapshot of a job leased from the queue."""

    id: str
    classroom_id: str
    retry_count: int
    lease_key: str


class AveragesCacheProtocol(Protocol):
    def upsert(self, average: ClassroomAverage) -> None:
        """Insert or replace the row keyed by `classroom_id`."""
        ...

    def get(self, classroom_id: str) -> Optional[ClassroomAverage]:
        ...

    def list_averages(self, row_filter: RowFilter) -> List[ClassroomAverage]:
        ...


class RecomputeQueueProtocol(Protocol):
    def submit(self, classroom_id: str) -> None:
        """Queue a recompute; coalesces with a pending job for the same classroom."""
        ...

    def lease(self, *, now: datetime) -> Optional[RecomputeJob]:
        ...

    def ack(self, job: RecomputeJob) -> None:
        """Remove the job unless it was resubmitted while leased."""
        ...

    def retry(self, job: RecomputeJob, *, visible_at: datetime, error: str) -> None:
        ...

    def depth(self) -> int:
        ...


__all__ = [
    "AveragesCacheProtocol",
    "ClassroomAverage",
    "RecomputeJob",
    "RecomputeQueueProtocol",
]
