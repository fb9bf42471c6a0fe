"""Progress service layer: role-scoped listing and recording of scores.

Why:
    Recording progress is the only write that changes classroom averages. The
    service validates input, asks the policy evaluator whether the caller may
    write into the classroom, inserts the record and then submits a recompute
    job for that classroom. Submission is best-effort: a failing queue never
    fails the write.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import math
from typing import List, Optional

from backend.averages.ports import RecomputeQueueProtocol
from backend.averages.workers.recompute_classroom_averages import submit_recompute
from backend.identity_access.domain import Principal, Role
from backend.school.errors import ValidationError
from backend.school.policy import AccessPolicyEvaluator, ResourceKind
from backend.school.ports import SchoolRepoProtocol

MIN_SCORE = 0.0
MAX_SCORE = 100.0
MAX_ASSIGNMENT_NAME_LENGTH = 200


def _require_text(value: object, detail: str, message: str, *, max_length: Optional[int] = None) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(detail, message)
    trimmed = value.strip()
    if max_length is not None and len(trimmed) > max_length:
        raise ValidationError(detail, f"{message} (at most {max_length} characters)")
    return trimmed


def _normalize_score(value: object) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError("invalid_score", "Score must be a number")
    score = float(value)
    if not math.isfinite(score) or not (MIN_SCORE <= score <= MAX_SCORE):
        raise ValidationError("invalid_score", "Score must be between 0 and 100")
    return score


def _parse_date_recorded(value: object) -> datetime:
    if value is None or value == "":
        return datetime.now(timezone.utc)
    if not isinstance(value, str):
        raise ValidationError("invalid_date_recorded", "dateRecorded must be an ISO 8601 string")
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError as exc:
        raise ValidationError("invalid_date_recorded", "dateRecorded must be an ISO 8601 string") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass
class ProgressService:
    """Use cases for progress records (framework-independent)."""

    repo: SchoolRepoProtocol
    policy: AccessPolicyEvaluator
    queue: RecomputeQueueProtocol

    def list_progress(
        self,
        principal: Principal,
        *,
        student_id: Optional[str] = None,
        classroom_id: Optional[str] = None,
    ) -> List[dict]:
        """Return visible records newest first; query params only narrow the scope."""
        row_filter = self.policy.read_filter(principal, ResourceKind.PROGRESS)
        if row_filter.is_empty:
            return []
        return self.repo.list_progress(row_filter, student_id=student_id, classroom_id=classroom_id)

    def record_progress(
        self,
        principal: Principal,
        *,
        student_id: object,
        classroom_id: object,
        assignment_name: object,
        score: object,
        date_recorded: object = None,
    ) -> dict:
        student = _require_text(student_id, "missing_student_id", "Student ID is required")
        classroom_key = _require_text(classroom_id, "missing_classroom_id", "Classroom ID is required")
        name = _require_text(
            assignment_name,
            "missing_assignment_name",
            "Assignment name is required",
            max_length=MAX_ASSIGNMENT_NAME_LENGTH,
        )
        if score is None:
            raise ValidationError("missing_score", "Score is required")
        value = _normalize_score(score)
        recorded = _parse_date_recorded(date_recorded)

        classroom = self.policy.authorize_progress_create(principal, classroom_key)
        self._require_student_of_school(student, str(classroom.get("school_id") or ""))

        row = self.repo.create_progress(
            student_id=student,
            classroom_id=classroom_key,
            assignment_name=name,
            score=value,
            date_recorded=recorded,
        )
        submit_recompute(self.queue, classroom_key)
        return row

    def _require_student_of_school(self, student_id: str, school_id: str) -> None:
        profile = self.repo.get_profile(student_id)
        if (
            not profile
            or Role.parse(profile.get("role")) is not Role.STUDENT
            or str(profile.get("school_id") or "") != school_id
        ):
            raise ValidationError("invalid_student", "Student does not belong to this classroom's school")


__all__ = ["MAX_SCORE", "MIN_SCORE", "ProgressService"]
