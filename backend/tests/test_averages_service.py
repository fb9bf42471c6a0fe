"""
Classroom averages service: unit tests.

Why:
    The cached aggregate must equal the arithmetic mean of non-null scores,
    report "no data" as null (never 0) and hold exactly one row per classroom.
"""
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from backend.averages.repo_memory import InMemoryAveragesCache
from backend.averages.service import UNKNOWN_CLASSROOM_NAME, AveragesService, compute_average
from backend.school.errors import AuthorizationError
from backend.school.policy import AccessPolicyEvaluator
from backend.school.repo_memory import InMemorySchoolRepo


def _add_scores(school, classroom: str, scores: list[float], *, student: str = "student") -> None:
    for i, score in enumerate(scores):
        school.services.repo.create_progress(
            student_id=school.ids[student],
            classroom_id=school.ids[classroom],
            assignment_name=f"Task {i}",
            score=score,
            date_recorded=datetime(2024, 3, 1 + i, tzinfo=timezone.utc),
        )


def test_compute_average_mean_and_count():
    assert compute_average([70, 80, 90]) == (80.0, 3)
    assert compute_average([None, 50, None]) == (50.0, 1)
    assert compute_average([]) == (None, 0)


def test_compute_average_does_not_assume_score_range():
    assert compute_average([150, -50]) == (50.0, 2)


def test_recompute_mean_of_three_scores(school):
    _add_scores(school, "math", [70, 80, 90])

    result = school.services.averages.recompute(school.ids["math"])

    assert result.average == pytest.approx(80.0)
    assert result.total_assignments == 3
    assert result.total_students == 1
    assert result.classroom_name == "Math 7a"
    assert school.services.cache.get(school.ids["math"]) == result


def test_recompute_counts_distinct_students(school):
    _add_scores(school, "math", [60, 80], student="student")
    _add_scores(school, "math", [100], student="student2")

    result = school.services.averages.recompute(school.ids["math"])

    assert result.average == pytest.approx(80.0)
    assert result.total_students == 2


def test_recompute_without_records_reports_no_data(school):
    result = school.services.averages.recompute(school.ids["art"])

    assert result.average is None
    assert not result.has_data
    assert result.total_assignments == 0
    assert school.services.cache.get(school.ids["art"]).average is None


def test_recompute_is_idempotent_single_row(school):
    _add_scores(school, "math", [70, 80, 90])
    svc = school.services.averages

    first = svc.recompute(school.ids["math"])
    second = svc.recompute(school.ids["math"])

    assert len(school.services.cache) == 1
    assert (first.average, first.total_assignments) == (second.average, second.total_assignments)


def test_recompute_unknown_classroom_name_fallback():
    repo = InMemorySchoolRepo()
    svc = AveragesService(repo=repo, cache=InMemoryAveragesCache(), policy=AccessPolicyEvaluator(repo))
    result = svc.recompute("missing-classroom")
    assert result.classroom_name == UNKNOWN_CLASSROOM_NAME


def test_calculate_requires_assignment(school):
    svc = school.services.averages
    svc.calculate(school.principal("teacher"), school.ids["math"])
    with pytest.raises(AuthorizationError):
        svc.calculate(school.principal("teacher"), school.ids["art"])
    with pytest.raises(AuthorizationError):
        svc.calculate(school.principal("student"), school.ids["math"])


def test_read_narrowing_never_widens(school):
    svc = school.services.averages
    for key in ("math", "art", "bio_b"):
        svc.recompute(school.ids[key])

    teacher = school.principal("teacher")
    assert [a.classroom_id for a in svc.read(teacher)] == [school.ids["math"]]
    assert svc.read(teacher, school.ids["art"]) == []
    assert svc.read(teacher, school.ids["bio_b"]) == []
    assert [a.classroom_id for a in svc.read(teacher, school.ids["math"])] == [school.ids["math"]]


def test_read_head_teacher_sees_only_own_school(school):
    svc = school.services.averages
    for key in ("math", "art", "bio_b"):
        svc.recompute(school.ids[key])

    ids = {a.classroom_id for a in svc.read(school.principal("head"))}
    assert ids == {school.ids["math"], school.ids["art"]}
