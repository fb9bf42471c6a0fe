"""
In-memory school store for local development and tests.

Mirrors the semantics of `DBSchoolRepo` (ordering, uniqueness, empty-filter
short-circuit) so API tests exercise the same contracts without Postgres.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from itertools import count
from threading import Lock
from typing import Dict, List, Optional, Tuple
from uuid import uuid4

from .errors import ConflictError
from .ports import RowFilter


def _iso(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S+00:00")


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ProfileData:
    id: str
    email: str
    first_name: str
    last_name: str
    role: str
    school_id: Optional[str]
    must_change_password: bool
    created_at: str


@dataclass
class ClassroomData:
    id: str
    name: str
    school_id: str
    created_at: str


@dataclass
class AssignmentData:
    id: str
    teacher_id: str
    classroom_id: str
    created_at: str


@dataclass
class ProgressData:
    id: str
    student_id: str
    classroom_id: str
    assignment_name: str
    score: Optional[float]
    date_recorded: str
    created_at: str
    # Sort keys, not serialized.
    _recorded: datetime = field(repr=False, compare=False, default_factory=_now)
    _seq: int = field(repr=False, compare=False, default=0)

    def to_dict(self) -> dict:
        data = asdict(self)
        data.pop("_recorded", None)
        data.pop("_seq", None)
        return data


class InMemorySchoolRepo:
    def __init__(self) -> None:
        self.profiles: Dict[str, ProfileData] = {}
        self.classrooms: Dict[str, ClassroomData] = {}
        # assignments[(teacher_id, classroom_id)] = AssignmentData
        self.assignments: Dict[Tuple[str, str], AssignmentData] = {}
        self.progress: Dict[str, ProgressData] = {}
        self._seq = count(1)
        self._lock = Lock()

    # --- Profiles ---------------------------------------------------------------

    def get_profile(self, user_id: str) -> Optional[dict]:
        rec = self.profiles.get(str(user_id))
        return asdict(rec) if rec else None

    def find_profile_by_email(self, email: str) -> Optional[dict]:
        needle = (email or "").strip().lower()
        for rec in self.profiles.values():
            if rec.email.lower() == needle:
                return asdict(rec)
        return None

    def list_profiles(self, row_filter: RowFilter, *, role: str) -> List[dict]:
        if row_filter.is_empty:
            return []
        items = [asdict(p) for p in self.profiles.values() if p.role == role]
        items = [p for p in items if row_filter.matches(p)]
        return sorted(items, key=lambda p: (p["last_name"].lower(), p["first_name"].lower()))

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
        with self._lock:
            if user_id in self.profiles:
                raise ConflictError("duplicate_user_id", "A user with this ID already exists in profiles.")
            if any(p.email.lower() == email.lower() for p in self.profiles.values()):
                raise ConflictError("duplicate_email", "A user with this email already exists in profiles.")
            rec = ProfileData(
                id=user_id,
                email=email,
                first_name=first_name,
                last_name=last_name,
                role=role,
                school_id=school_id,
                must_change_password=bool(must_change_password),
                created_at=_iso(_now()),
            )
            self.profiles[user_id] = rec
        return asdict(rec)

    # --- Classrooms -------------------------------------------------------------

    def get_classroom(self, classroom_id: str) -> Optional[dict]:
        rec = self.classrooms.get(str(classroom_id))
        return asdict(rec) if rec else None

    def list_classrooms(self, row_filter: RowFilter) -> List[dict]:
        if row_filter.is_empty:
            return []
        items = [asdict(c) for c in self.classrooms.values()]
        return sorted((c for c in items if row_filter.matches(c)), key=lambda c: (c["name"].lower(), c["id"]))

    def list_classroom_ids_for_school(self, school_id: str) -> List[str]:
        return [c.id for c in self.classrooms.values() if c.school_id == school_id]

    def create_classroom(self, *, name: str, school_id: str) -> dict:
        normalized = (name or "").strip()
        if not normalized or len(normalized) > 200:
            raise ValueError("invalid_name")
        rec = ClassroomData(id=str(uuid4()), name=normalized, school_id=school_id, created_at=_iso(_now()))
        with self._lock:
            self.classrooms[rec.id] = rec
        return asdict(rec)

    # --- Teacher assignments ----------------------------------------------------

    def list_classroom_ids_for_teacher(self, teacher_id: str) -> List[str]:
        return [a.classroom_id for (tid, _), a in self.assignments.items() if tid == teacher_id]

    def assignment_exists(self, teacher_id: str, classroom_id: str) -> bool:
        return (teacher_id, classroom_id) in self.assignments

    def create_assignment(self, *, teacher_id: str, classroom_id: str) -> Optional[dict]:
        key = (teacher_id, classroom_id)
        with self._lock:
            if key in self.assignments:
                return None
            rec = AssignmentData(
                id=str(uuid4()),
                teacher_id=teacher_id,
                classroom_id=classroom_id,
                created_at=_iso(_now()),
            )
            self.assignments[key] = rec
        return asdict(rec)

    # --- Progress ---------------------------------------------------------------

    def _sorted_progress(self) -> List[ProgressData]:
        # date_recorded desc; newest insert first on ties
        return sorted(self.progress.values(), key=lambda p: (p._recorded, p._seq), reverse=True)

    def list_progress(
        self,
        row_filter: RowFilter,
        *,
        student_id: Optional[str] = None,
        classroom_id: Optional[str] = None,
    ) -> List[dict]:
        if row_filter.is_empty:
            return []
        out: List[dict] = []
        for rec in self._sorted_progress():
            row = rec.to_dict()
            if not row_filter.matches(row):
                continue
            if student_id and rec.student_id != student_id:
                continue
            if classroom_id and rec.classroom_id != classroom_id:
                continue
            out.append(row)
        return out

    def latest_classroom_id_for_student(self, student_id: str) -> Optional[str]:
        for rec in self._sorted_progress():
            if rec.student_id == student_id:
                return rec.classroom_id
        return None

    def create_progress(
        self,
        *,
        student_id: str,
        classroom_id: str,
        assignment_name: str,
        score: float,
        date_recorded: datetime,
    ) -> dict:
        rec = ProgressData(
            id=str(uuid4()),
            student_id=student_id,
            classroom_id=classroom_id,
            assignment_name=assignment_name,
            score=float(score) if score is not None else None,
            date_recorded=_iso(date_recorded),
            created_at=_iso(_now()),
            _recorded=date_recorded,
            _seq=next(self._seq),
        )
        with self._lock:
            self.progress[rec.id] = rec
        return rec.to_dict()

    def list_scored_progress(self, classroom_id: str) -> List[dict]:
        return [
            {"student_id": p.student_id, "score": p.score}
            for p in self.progress.values()
            if p.classroom_id == classroom_id and p.score is not None
        ]


__all__ = ["InMemorySchoolRepo"]
