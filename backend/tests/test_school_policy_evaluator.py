"""
Access policy evaluator: unit tests over the in-memory store.

Scenarios
- Read filters per role and resource (classroom, progress, average, user).
- Empty lookups become empty filters, never "no filter".
- Write authorizations return scope or raise the right error kind.
"""
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from backend.identity_access.domain import Principal, Role
from backend.school.errors import AuthorizationError, ConflictError, ValidationError
from backend.school.policy import ResourceKind
from backend.school.ports import RowFilter


def _record(school, *, student: str, classroom: str, score: float, when: str) -> None:
    school.services.repo.create_progress(
        student_id=school.ids[student],
        classroom_id=school.ids[classroom],
        assignment_name="Quiz",
        score=score,
        date_recorded=datetime.fromisoformat(when).replace(tzinfo=timezone.utc),
    )


def test_classroom_filter_per_role(school):
    policy = school.services.policy
    head = policy.read_filter(school.principal("head"), ResourceKind.CLASSROOM)
    teacher = policy.read_filter(school.principal("teacher"), ResourceKind.CLASSROOM)
    student = policy.read_filter(school.principal("student"), ResourceKind.CLASSROOM)

    assert head == RowFilter.where_in("school_id", [school.ids["school_a"]])
    assert teacher == RowFilter.where_in("id", [school.ids["math"]])
    assert student.is_empty


def test_unassigned_teacher_gets_empty_filter_not_unfiltered(school):
    f = school.services.policy.read_filter(school.principal("teacher2"), ResourceKind.PROGRESS)
    assert f.is_empty
    assert f.column == "classroom_id"


def test_progress_filter_student_is_own_id(school):
    f = school.services.policy.read_filter(school.principal("student"), ResourceKind.PROGRESS)
    assert f == RowFilter.where_in("student_id", [school.ids["student"]])


def test_progress_filter_head_teacher_is_school_classrooms(school):
    f = school.services.policy.read_filter(school.principal("head"), ResourceKind.PROGRESS)
    assert f.values == frozenset({school.ids["math"], school.ids["art"]})


def test_head_teacher_without_school_reads_nothing(school):
    orphan = Principal(id="orphan", role=Role.HEAD_TEACHER, school_id=None)
    policy = school.services.policy
    assert policy.read_filter(orphan, ResourceKind.CLASSROOM).is_empty
    assert policy.read_filter(orphan, ResourceKind.PROGRESS).is_empty


def test_head_teacher_without_school_cannot_list_users(school):
    orphan = Principal(id="orphan", role=Role.HEAD_TEACHER, school_id=None)
    with pytest.raises(AuthorizationError) as exc:
        school.services.policy.read_filter(orphan, ResourceKind.USER)
    assert exc.value.detail == "no_school"


def test_average_filter_student_uses_latest_record_classroom(school):
    _record(school, student="student", classroom="math", score=70, when="2024-01-10T09:00:00")
    _record(school, student="student", classroom="art", score=90, when="2024-02-10T09:00:00")

    f = school.services.policy.read_filter(school.principal("student"), ResourceKind.AVERAGE)
    assert f == RowFilter.where_in("classroom_id", [school.ids["art"]])


def test_average_filter_student_without_records_is_empty(school):
    f = school.services.policy.read_filter(school.principal("student2"), ResourceKind.AVERAGE)
    assert f.is_empty


@pytest.mark.parametrize("who", ["teacher", "student"])
def test_user_listing_requires_head_teacher(school, who):
    with pytest.raises(AuthorizationError) as exc:
        school.services.policy.read_filter(school.principal(who), ResourceKind.USER)
    assert exc.value.detail == "head_teacher_required"


def test_progress_create_teacher_must_be_assigned(school):
    policy = school.services.policy
    classroom = policy.authorize_progress_create(school.principal("teacher"), school.ids["math"])
    assert classroom["id"] == school.ids["math"]

    with pytest.raises(AuthorizationError) as exc:
        policy.authorize_progress_create(school.principal("teacher"), school.ids["art"])
    assert exc.value.detail == "not_assigned_to_classroom"


def test_progress_create_head_teacher_limited_to_own_school(school):
    policy = school.services.policy
    policy.authorize_progress_create(school.principal("head"), school.ids["art"])
    with pytest.raises(AuthorizationError):
        policy.authorize_progress_create(school.principal("head"), school.ids["bio_b"])


def test_progress_create_student_forbidden(school):
    with pytest.raises(AuthorizationError) as exc:
        school.services.policy.authorize_progress_create(school.principal("student"), school.ids["math"])
    assert exc.value.detail == "teacher_role_required"


def test_classroom_create_rejects_foreign_school(school):
    policy = school.services.policy
    assert policy.authorize_classroom_create(school.principal("head")) == school.ids["school_a"]
    with pytest.raises(AuthorizationError):
        policy.authorize_classroom_create(school.principal("head"), school.ids["school_b"])
    with pytest.raises(AuthorizationError):
        policy.authorize_classroom_create(school.principal("teacher"))


def test_assignment_checks_target_and_duplicates(school):
    policy = school.services.policy
    head = school.principal("head")

    with pytest.raises(ValidationError):
        policy.authorize_assignment_create(head, school.ids["art"], school.ids["student"])
    with pytest.raises(ValidationError):
        policy.authorize_assignment_create(head, school.ids["art"], school.ids["teacher_b"])
    with pytest.raises(ConflictError):
        policy.authorize_assignment_create(head, school.ids["math"], school.ids["teacher"])
    with pytest.raises(AuthorizationError):
        policy.authorize_assignment_create(head, school.ids["bio_b"], school.ids["teacher"])

    classroom, teacher = policy.authorize_assignment_create(head, school.ids["art"], school.ids["teacher2"])
    assert classroom["id"] == school.ids["art"]
    assert teacher["id"] == school.ids["teacher2"]


def test_row_filter_narrow_never_widens():
    f = RowFilter.where_in("classroom_id", ["a", "b"])
    assert f.narrow("classroom_id", "b").values == frozenset({"b"})
    assert f.narrow("classroom_id", "zzz").is_empty
    assert f.narrow("classroom_id", None) == f
    assert RowFilter.nothing("classroom_id").narrow("classroom_id", "a").is_empty


def test_row_filter_rejects_unknown_column():
    with pytest.raises(ValueError):
        RowFilter.where_in("email", ["x"])
