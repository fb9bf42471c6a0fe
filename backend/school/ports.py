"""Store ports for the school context (profiles, classrooms, assignments, progress).

Both the Postgres adapter (`repo_db.DBSchoolRepo`) and the in-memory adapter
(`repo_memory.InMemorySchoolRepo`) implement `SchoolRepoProtocol`. Rows are
plain dicts to keep the web adapter independent of any ORM.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, List, Mapping, Optional, Protocol

# Columns a row filter may target. Adapters interpolate the column name into
# SQL, so the set is closed.
FILTER_COLUMNS = frozenset({"id", "school_id", "classroom_id", "student_id"})


@dataclass(frozen=True)
class RowFilter:
    """Predicate `column IN values` narrowing a query to permitted rows.

    An empty `values` set matches zero rows. There is no "match everything"
    filter: every read is scoped by the policy evaluator.
    """

    column: str
    values: frozenset[str]

    def __post_init__(self) -> None:
        if self.column not in FILTER_COLUMNS:
            raise ValueError(f"unsupported filter column: {self.column}")

    @classmethod
    def where_in(cls, column: str, values: Iterable[Optional[str]]) -> "RowFilter":
        return cls(column=column, values=frozenset(str(v) for v in values if v))

    @classmethod
    def nothing(cls, column: str = "id") -> "RowFilter":
        return cls(column=column, values=frozenset())

    @property
    def is_empty(self) -> bool:
        return not self.values

    def matches(self, row: Mapping[str, Any]) -> bool:
        value = row.get(self.column)
        return value is not None and str(value) in self.values

    def narrow(self, column: str, value: Optional[str]) -> "RowFilter":
        """Intersect with `column = value`; never widens the permitted set."""
        if not value:
            return self
        if column != self.column:
            raise ValueError("narrow requires the same column")
        return RowFilter(column=self.column, values=self.values & {str(value)})


class SchoolRepoProtocol(Protocol):
    # --- Profiles -----------------------------------------------------------
    def get_profile(self, user_id: str) -> Optional[dict]:
        ...

    def find_profile_by_email(self, email: str) -> Optional[dict]:
        ...

    def list_profiles(self, row_filter: RowFilter, *, role: str) -> List[dict]:
        ...

    def create_profile(
        self,
        *,
        user_id: str,
        email: str,
        first_name: str,
        last_name: str,
        role: str,
        school_id: Optional[str],
        must_change_password: bool,
    ) -> dict:
        ...

    # --- Classrooms ---------------------------------------------------------
    def get_classroom(self, classroom_id: str) -> Optional[dict]:
        ...

    def list_classrooms(self, row_filter: RowFilter) -> List[dict]:
        ...

    def list_classroom_ids_for_school(self, school_id: str) -> List[str]:
        ...

    def create_classroom(self, *, name: str, school_id: str) -> dict:
        ...

    # --- Teacher assignments ------------------------------------------------
    def list_classroom_ids_for_teacher(self, teacher_id: str) -> List[str]:
        ...

    def assignment_exists(self, teacher_id: str, classroom_id: str) -> bool:
        ...

    def create_assignment(self, *, teacher_id: str, classroom_id: str) -> Optional[dict]:
        """Insert the pair; return None when it already exists."""
        ...

    # --- Progress -----------------------------------------------------------
    def list_progress(
        self,
        row_filter: RowFilter,
        *,
        student_id: Optional[str] = None,
        classroom_id: Optional[str] = None,
    ) -> List[dict]:
        ...

    def latest_classroom_id_for_student(self, student_id: str) -> Optional[str]:
        ...

    def create_progress(
        self,
        *,
        student_id: str,
        classroom_id: str,
        assignment_name: str,
        score: float,
        date_recorded: datetime,
    ) -> dict:
        ...

    def list_scored_progress(self, classroom_id: str) -> List[dict]:
        """Return `{student_id, score}` rows with non-null score for the classroom."""
        ...


__all__ = ["FILTER_COLUMNS", "RowFilter", "SchoolRepoProtocol"]
