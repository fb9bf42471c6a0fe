"""
Access policy evaluator: which rows a principal may read or write.

Why:
    The store is accessed with a single application role, so this module is
    the only authority deciding visibility. Every read goes through a
    `RowFilter`; every write goes through an `authorize_*` check that either
    returns the resolved scope or raises.

Rules:
    Classroom  head_teacher: own school | teacher: assigned | student: none
    Progress   student: own records | teacher: assigned classrooms
               head_teacher: classrooms of own school
    Average    student: classroom of latest own record | teacher/head_teacher
               as for progress
    User       head_teacher: own school | others: forbidden

    A lookup that yields zero rows becomes an empty filter, which matches zero
    rows. It never degrades to "no filter".
"""
from __future__ import annotations

from enum import Enum
from typing import List, Optional, Protocol, Tuple, assert_never

from backend.identity_access.domain import Principal, Role

from .errors import AuthorizationError, ConflictError, ValidationError
from .ports import RowFilter


class ResourceKind(str, Enum):
    CLASSROOM = "classroom"
    PROGRESS = "progress"
    AVERAGE = "average"
    USER = "user"


class PolicyLookupProtocol(Protocol):
    def get_profile(self, user_id: str) -> Optional[dict]:
        ...

    def get_classroom(self, classroom_id: str) -> Optional[dict]:
        ...

    def list_classroom_ids_for_school(self, school_id: str) -> List[str]:
        ...

    def list_classroom_ids_for_teacher(self, teacher_id: str) -> List[str]:
        ...

    def assignment_exists(self, teacher_id: str, classroom_id: str) -> bool:
        ...

    def latest_classroom_id_for_student(self, student_id: str) -> Optional[str]:
        ...


class AccessPolicyEvaluator:
    """Evaluate (principal, resource, operation) into a row filter or a denial.

    The evaluator has no side effects; it only reads the lookup tables it needs
    through the injected store.
    """

    def __init__(self, repo: PolicyLookupProtocol) -> None:
        self._repo = repo

    # --- Reads ------------------------------------------------------------------

    def read_filter(self, principal: Principal, kind: ResourceKind) -> RowFilter:
        match kind:
            case ResourceKind.CLASSROOM:
                return self._classroom_filter(principal)
            case ResourceKind.PROGRESS:
                return self._progress_filter(principal)
            case ResourceKind.AVERAGE:
                return self._average_filter(principal)
            case ResourceKind.USER:
                return self._user_filter(principal)
            case _:
                assert_never(kind)

    def _classroom_filter(self, principal: Principal) -> RowFilter:
        match principal.role:
            case Role.HEAD_TEACHER:
                return RowFilter.where_in("school_id", [principal.school_id])
            case Role.TEACHER:
                return RowFilter.where_in("id", self._repo.list_classroom_ids_for_teacher(principal.id))
            case Role.STUDENT:
                return RowFilter.nothing("id")
            case _:
                assert_never(principal.role)

    def _progress_filter(self, principal: Principal) -> RowFilter:
        match principal.role:
            case Role.STUDENT:
                return RowFilter.where_in("student_id", [principal.id])
            case Role.TEACHER | Role.HEAD_TEACHER:
                return RowFilter.where_in("classroom_id", self.scoped_classroom_ids(principal))
            case _:
                assert_never(principal.role)

    def _average_filter(self, principal: Principal) -> RowFilter:
        match principal.role:
            case Role.STUDENT:
                # A student's classroom is derived from their own progress records.
                latest = self._repo.latest_classroom_id_for_student(principal.id)
                return RowFilter.where_in("classroom_id", [latest])
            case Role.TEACHER | Role.HEAD_TEACHER:
                return RowFilter.where_in("classroom_id", self.scoped_classroom_ids(principal))
            case _:
                assert_never(principal.role)

    def _user_filter(self, principal: Principal) -> RowFilter:
        # Unlike the other reads, listing users without a school is a denial.
        self._require_head_teacher(principal, "Only head teachers can list users")
        return RowFilter.where_in("school_id", [principal.school_id])

    def scoped_classroom_ids(self, principal: Principal) -> List[str]:
        """Classroom ids a teacher is assigned to, or all of a head teacher's school."""
        match principal.role:
            case Role.TEACHER:
                return list(self._repo.list_classroom_ids_for_teacher(principal.id))
            case Role.HEAD_TEACHER:
                if not principal.school_id:
                    return []
                return list(self._repo.list_classroom_ids_for_school(principal.school_id))
            case Role.STUDENT:
                return []
            case _:
                assert_never(principal.role)

    # --- Writes -----------------------------------------------------------------

    def authorize_classroom_create(self, principal: Principal, requested_school_id: Optional[str] = None) -> str:
        """Return the school id the new classroom belongs to."""
        self._require_head_teacher(principal, "Only head teachers can create classrooms")
        if requested_school_id and requested_school_id != principal.school_id:
            raise AuthorizationError("foreign_school", "Classrooms can only be created for your own school")
        return str(principal.school_id)

    def authorize_progress_create(self, principal: Principal, classroom_id: str) -> dict:
        """Return the target classroom when the principal may record progress in it."""
        return self._authorize_classroom_write(
            principal,
            classroom_id,
            denied_message="Only teachers and head teachers can add progress",
        )

    def authorize_average_recompute(self, principal: Principal, classroom_id: str) -> dict:
        return self._authorize_classroom_write(
            principal,
            classroom_id,
            denied_message="Only teachers and head teachers can calculate averages",
        )

    def authorize_assignment_create(self, principal: Principal, classroom_id: str, teacher_id: str) -> Tuple[dict, dict]:
        """Check a head teacher may assign `teacher_id` to `classroom_id`.

        Behavior:
            - 403 unless head teacher of the classroom's school
            - 400 when the target is not a teacher of the same school
            - 409 when the pair already exists
        """
        self._require_head_teacher(principal, "Only head teachers can assign teachers to classrooms")
        classroom = self._repo.get_classroom(classroom_id)
        if not classroom or str(classroom.get("school_id") or "") != principal.school_id:
            raise AuthorizationError("classroom_not_in_school", "Classroom does not belong to your school")
        teacher = self._repo.get_profile(teacher_id)
        if (
            not teacher
            or Role.parse(teacher.get("role")) is not Role.TEACHER
            or str(teacher.get("school_id") or "") != principal.school_id
        ):
            raise ValidationError("invalid_teacher", "Invalid teacher")
        if self._repo.assignment_exists(teacher_id, classroom_id):
            raise ConflictError("already_assigned", "Teacher is already assigned to this classroom")
        return classroom, teacher

    def authorize_user_create(self, principal: Principal, requested_school_id: Optional[str] = None) -> str:
        """Return the school id a new user is created in (own school unless explicit)."""
        self._require_head_teacher(principal, "Only head teachers can create users")
        return requested_school_id or str(principal.school_id)

    # --- Helpers ----------------------------------------------------------------

    def _require_head_teacher(self, principal: Principal, message: str) -> None:
        match principal.role:
            case Role.HEAD_TEACHER:
                if not principal.school_id:
                    raise AuthorizationError("no_school", message)
            case Role.TEACHER | Role.STUDENT:
                raise AuthorizationError("head_teacher_required", message)
            case _:
                assert_never(principal.role)

    def _authorize_classroom_write(self, principal: Principal, classroom_id: str, *, denied_message: str) -> dict:
        match principal.role:
            case Role.TEACHER:
                if not self._repo.assignment_exists(principal.id, classroom_id):
                    raise AuthorizationError("not_assigned_to_classroom", "You are not assigned to this classroom")
                classroom = self._repo.get_classroom(classroom_id)
                if not classroom:
                    raise AuthorizationError("not_assigned_to_classroom", "You are not assigned to this classroom")
                return classroom
            case Role.HEAD_TEACHER:
                classroom = self._repo.get_classroom(classroom_id)
                if (
                    not principal.school_id
                    or not classroom
                    or str(classroom.get("school_id") or "") != principal.school_id
                ):
                    raise AuthorizationError("classroom_not_in_school", "Classroom does not belong to your school")
                return classroom
            case Role.STUDENT:
                raise AuthorizationError("teacher_role_required", denied_message)
            case _:
                assert_never(principal.role)


__all__ = ["AccessPolicyEvaluator", "PolicyLookupProtocol", "ResourceKind"]
