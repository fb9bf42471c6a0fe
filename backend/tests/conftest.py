"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend, keep env toggles from leaking
between tests and provide a seeded in-memory school (two schools, classrooms,
teachers, students and bearer tokens) wired into a fresh app per test.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import sys
from pathlib import Path
from typing import Dict

import httpx
import pytest
from httpx import ASGITransport

# Ensure `backend.*` is importable regardless of the invocation directory.
REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from backend.averages.workers import telemetry  # noqa: E402
from backend.web.config import Settings  # noqa: E402
from backend.web.main import create_app  # noqa: E402
from backend.web.wiring import AppServices, build_memory_services  # noqa: E402

SCHOOL_A = "00000000-0000-4000-8000-00000000000a"
SCHOOL_B = "00000000-0000-4000-8000-00000000000b"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _clear_env_toggles(monkeypatch: pytest.MonkeyPatch):
    """Start every test from dev defaults; tests opt into prod semantics explicitly."""
    for var in (
        "GUARDDOG_ENV",
        "STORE_BACKEND",
        "AUTH_BACKEND",
        "DEBUG_ERRORS",
        "RECOMPUTE_INLINE",
        "DATABASE_URL",
        "SUPABASE_URL",
        "SUPABASE_SERVICE_ROLE_KEY",
        "SUPABASE_JWT_SECRET",
        "WORKER_BACKOFF_SECONDS",
    ):
        monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture(autouse=True)
def _reset_telemetry():
    telemetry.reset_for_tests()
    yield
    telemetry.reset_for_tests()


@dataclass
class SeededSchool:
    """In-memory services plus named ids and tokens for each persona."""

    services: AppServices
    ids: Dict[str, str] = field(default_factory=dict)
    tokens: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.app = create_app(self.services)

    def headers(self, who: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.tokens[who]}"}

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=ASGITransport(app=self.app), base_url="http://test")

    def principal(self, who: str):
        from backend.identity_access.domain import Principal

        return Principal.from_profile(self.services.repo.get_profile(self.ids[who]))

    def add_person(self, key: str, *, role: str, school_id: str | None) -> str:
        user_id = f"{key}-0000-4000-8000-{len(self.ids):012d}"
        self.services.repo.create_profile(
            user_id=user_id,
            email=f"{key}@school.test",
            first_name=key.capitalize(),
            last_name="Tester",
            role=role,
            school_id=school_id,
            must_change_password=False,
        )
        self.ids[key] = user_id
        self.tokens[key] = self.services.tokens.issue(user_id)
        return user_id


def _seed(services: AppServices) -> SeededSchool:
    school = SeededSchool(services=services)
    school.ids.update(school_a=SCHOOL_A, school_b=SCHOOL_B)
    repo = services.repo

    school.add_person("head", role="head_teacher", school_id=SCHOOL_A)
    school.add_person("head_b", role="head_teacher", school_id=SCHOOL_B)
    school.add_person("teacher", role="teacher", school_id=SCHOOL_A)
    school.add_person("teacher2", role="teacher", school_id=SCHOOL_A)
    school.add_person("teacher_b", role="teacher", school_id=SCHOOL_B)
    school.add_person("student", role="student", school_id=SCHOOL_A)
    school.add_person("student2", role="student", school_id=SCHOOL_A)
    school.add_person("student_b", role="student", school_id=SCHOOL_B)

    school.ids["math"] = repo.create_classroom(name="Math 7a", school_id=SCHOOL_A)["id"]
    school.ids["art"] = repo.create_classroom(name="Art 7b", school_id=SCHOOL_A)["id"]
    school.ids["bio_b"] = repo.create_classroom(name="Biology", school_id=SCHOOL_B)["id"]

    repo.create_assignment(teacher_id=school.ids["teacher"], classroom_id=school.ids["math"])
    repo.create_assignment(teacher_id=school.ids["teacher_b"], classroom_id=school.ids["bio_b"])
    return school


@pytest.fixture
def school() -> SeededSchool:
    """Seeded school with inline recompute (background drain after responses)."""
    return _seed(build_memory_services(Settings(recompute_inline=True)))


@pytest.fixture
def school_no_inline() -> SeededSchool:
    """Seeded school where recompute jobs stay queued for an explicit worker run."""
    return _seed(build_memory_services(Settings(recompute_inline=False)))
