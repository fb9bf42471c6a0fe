"""Classrooms service layer: listing, creation and teacher assignment.

Why:
    Keeps validation and policy calls out of the FastAPI routes so they can be
    unit tested without HTTP. Every read goes through the policy row filter;
    every write through an `authorize_*` check.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from backend.identity_access.domain import Principal
from backend.school.errors import ConflictError, ValidationError
from backend.school.policy import AccessPolicyEvaluator, ResourceKind
from backend.school.ports import SchoolRepoProtocol

MAX_NAME_LENGTH = 200


def _normalize_name(value: object) -> str:
    if not isinstance(value, str):
        raise ValidationError("invalid_name", "Classroom name is required")
    trimmed = value.strip()
    if not trimmed:
        raise ValidationError("invalid_name", "Classroom name is required")
    if len(trimmed) > MAX_NAME_LENGTH:
        raise ValidationError("invalid_name", f"Classroom name must be at most {MAX_NAME_LENGTH} characters")
    return trimmed


def _normalize_id(value: object, detail: str, message: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(detail, message)
    return value.strip()


@dataclass
class ClassroomsService:
    """Use cases for classrooms (framework-independent)."""

    repo: SchoolRepoProtocol
    policy: AccessPolicyEvaluator

    def list_classrooms(self, principal: Principal) -> List[dict]:
        row_filter = self.policy.read_filter(principal, ResourceKind.CLASSROOM)
        if row_filter.is_empty:
            return []
        return self.repo.list_classrooms(row_filter)

    def create_classroom(self, principal: Principal, *, name: object, school_id: Optional[str] = None) -> dict:
        normalized = _normalize_name(name)
        target_school = self.policy.authorize_classroom_create(principal, school_id)
        return self.repo.create_classroom(name=normalized, school_id=target_school)

    def assign_teacher(self, principal: Principal, classroom_id: str, *, teacher_id: object) -> dict:
        teacher = _normalize_id(teacher_id, "missing_teacher_id", "Teacher ID is required")
        self.policy.authorize_assignment_create(principal, classroom_id, teacher)
        assignment = self.repo.create_assignment(teacher_id=teacher, classroom_id=classroom_id)
        if assignment is None:
            # Lost a race with a concurrent identical request.
            raise ConflictError("already_assigned", "Teacher is already assigned to this classroom")
        return assignment


__all__ = ["ClassroomsService", "MAX_NAME_LENGTH"]
