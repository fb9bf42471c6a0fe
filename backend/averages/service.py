"""
Classroom averages: computation, cache refresh and role-filtered reads.

Why:
    Head teachers and teachers look at classroom-level averages far more often
    than progress is written. The aggregate is computed from progress rows and
    persisted in a secondary store keyed by classroom id, refreshed whenever a
    progress record is created.

Behavior:
    - `recompute` is idempotent given the current progress data; the cache
      holds exactly one row per classroom (replace semantics).
    - "No data" is reported as `average=None` with zero assignments, never as
      an average of 0.
    - Scores are not assumed to lie in [0, 100]; null scores are excluded from
      both numerator and denominator.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import math
from typing import Iterable, List, Optional, Protocol, Tuple

from backend.identity_access.domain import Principal
from backend.school.policy import AccessPolicyEvaluator, ResourceKind

from .ports import AveragesCacheProtocol, ClassroomAverage

UNKNOWN_CLASSROOM_NAME = "Unknown Classroom"
NO_DATA_MESSAGE = "No progress data found for this classroom"


class AveragesSourceProtocol(Protocol):
    def get_classroom(self, classroom_id: str) -> Optional[dict]:
        ...

    def list_scored_progress(self, classroom_id: str) -> List[dict]:
        ...


def compute_average(scores: Iterable[Optional[float]]) -> Tuple[Optional[float], int]:
    """Return (mean, count) over non-null scores; (None, 0) when there are none."""
    values = [float(s) for s in scores if s is not None]
    if not values:
        return None, 0
    return math.fsum(values) / len(values), len(values)


def _now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S+00:00")


@dataclass
class AveragesService:
    """Use cases for classroom averages (framework-independent)."""

    repo: AveragesSourceProtocol
    cache: AveragesCacheProtocol
    policy: AccessPolicyEvaluator

    def recompute(self, classroom_id: str) -> ClassroomAverage:
        """Recompute the aggregate for one classroom and upsert the cache row."""
        rows = self.repo.list_scored_progress(classroom_id)
        average, total = compute_average(r.get("score") for r in rows)
        students = {str(r.get("student_id")) for r in rows if r.get("score") is not None}
        classroom = self.repo.get_classroom(classroom_id)
        name = (classroom or {}).get("name") or UNKNOWN_CLASSROOM_NAME
        result = ClassroomAverage(
            classroom_id=str(classroom_id),
            classroom_name=str(name),
            average=average,
            total_assignments=total,
            total_students=len(students) if total else 0,
            last_updated=_now_iso(),
        )
        self.cache.upsert(result)
        return result

    def calculate(self, principal: Principal, classroom_id: str) -> ClassroomAverage:
        """Authorize and recompute on behalf of a caller (teacher or head teacher)."""
        self.policy.authorize_average_recompute(principal, classroom_id)
        return self.recompute(classroom_id)

    def read(self, principal: Principal, classroom_id: Optional[str] = None) -> List[ClassroomAverage]:
        """Return cached averages visible to the principal.

        The optional `classroom_id` narrows the permitted set; it never widens it.
        """
        row_filter = self.policy.read_filter(principal, ResourceKind.AVERAGE)
        if classroom_id:
            row_filter = row_filter.narrow("classroom_id", classroom_id)
        if row_filter.is_empty:
            return []
        return self.cache.list_averages(row_filter)


__all__ = ["AveragesService", "NO_DATA_MESSAGE", "UNKNOWN_CLASSROOM_NAME", "compute_average"]
