"""
Postgres-backed repository for the school context (profiles, classrooms,
teacher assignments, progress).

Security:
- The access policy evaluator is the single authority for visibility. This
  repository never widens a `RowFilter`; an empty filter short-circuits to an
  empty result without touching the database.
- Filter columns are interpolated with `psycopg.sql.Identifier` from a closed
  whitelist; all values are bound parameters.

Design:
- Minimal psycopg3 usage; each call opens a short-lived connection.
- Returns plain dicts to keep the web adapter independent of ORM.
- Driver errors are wrapped in `UpstreamStoreError`.

Expected tables (public schema, created outside this code):
    profiles(id uuid pk, email text unique, first_name text, last_name text,
             role text, school_id uuid null, must_change_password bool,
             created_at timestamptz)
    classrooms(id uuid pk default gen_random_uuid(), name text, school_id uuid,
               created_at timestamptz default now())
    teacher_classroom(id uuid pk default gen_random_uuid(), teacher_id uuid,
                      classroom_id uuid, created_at timestamptz default now(),
                      unique (teacher_id, classroom_id))
    progress(id uuid pk default gen_random_uuid(), student_id uuid,
             classroom_id uuid, assignment_name text, score numeric null,
             date_recorded timestamptz, created_at timestamptz default now())
"""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
import logging
import os
from typing import Any, Iterator, List, Optional

try:
    import psycopg
    from psycopg import sql as _sql
    from psycopg.rows import dict_row
    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover - optional in some dev envs
    psycopg = None  # type: ignore
    UniqueViolation = None  # type: ignore
    HAVE_PSYCOPG = False
else:
    from psycopg.errors import UniqueViolation

from .errors import ConflictError, UpstreamStoreError
from .ports import FILTER_COLUMNS, RowFilter

LOG = logging.getLogger(__name__)

_TS = 'YYYY-MM-DD"T"HH24:MI:SS"+00:00"'

_PROFILE_COLUMNS_SQL = f"""
    id::text as id,
    email,
    first_name,
    last_name,
    role,
    school_id::text as school_id,
    coalesce(must_change_password, false) as must_change_password,
    to_char(created_at at time zone 'utc', '{_TS}') as created_at
"""

_CLASSROOM_COLUMNS_SQL = f"""
    id::text as id,
    name,
    school_id::text as school_id,
    to_char(created_at at time zone 'utc', '{_TS}') as created_at
"""

_ASSIGNMENT_COLUMNS_SQL = f"""
    id::text as id,
    teacher_id::text as teacher_id,
    classroom_id::text as classroom_id,
    to_char(created_at at time zone 'utc', '{_TS}') as created_at
"""

_PROGRESS_COLUMNS_SQL = f"""
    id::text as id,
    student_id::text as student_id,
    classroom_id::text as classroom_id,
    assignment_name,
    score::float8 as score,
    to_char(date_recorded at time zone 'utc', '{_TS}') as date_recorded,
    to_char(created_at at time zone 'utc', '{_TS}') as created_at
"""


def _dsn() -> str:
    """Resolve the DSN for DB access."""
    candidates = [
        os.getenv("SCHOOL_DATABASE_URL"),
        os.getenv("DATABASE_URL"),
        os.getenv("SUPABASE_DB_URL"),
    ]
    for dsn in candidates:
        if dsn:
            return dsn
    raise RuntimeError("Database DSN unavailable for DBSchoolRepo")


def _filter_sql(row_filter: RowFilter) -> Any:
    if row_filter.column not in FILTER_COLUMNS:  # pragma: no cover - guarded by RowFilter
        raise ValueError("unsupported filter column")
    return _sql.SQL("{}::text = any(%s)").format(_sql.Identifier(row_filter.column))


def _sorted_values(row_filter: RowFilter) -> list[str]:
    return sorted(row_filter.values)


class DBSchoolRepo:
    def __init__(self, dsn: Optional[str] = None) -> None:
        """Initialize a Postgres-backed repository.

        Parameters:
            dsn: Optional explicit DSN. When omitted, resolves from env.

        Behavior:
            Does not open a connection eagerly; connections are per-call.
        """
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBSchoolRepo")
        self._dsn = dsn or _dsn()

    @contextmanager
    def _cursor(self) -> Iterator[Any]:
        try:
            with psycopg.connect(self._dsn, row_factory=dict_row) as conn:
                with conn.cursor() as cur:
                    yield cur
        except psycopg.Error as exc:
            if UniqueViolation is not None and isinstance(exc, UniqueViolation):
                raise ConflictError("duplicate_row", "The row already exists") from exc
            LOG.warning("school store error: %s", exc.__class__.__name__)
            raise UpstreamStoreError("store_unavailable", "The school data store failed") from exc

    # --- Profiles ---------------------------------------------------------------

    def get_profile(self, user_id: str) -> Optional[dict]:
        with self._cursor() as cur:
            cur.execute(f"select {_PROFILE_COLUMNS_SQL} from public.profiles where id::text = %s", (str(user_id),))
            row = cur.fetchone()
        return dict(row) if row else None

    def find_profile_by_email(self, email: str) -> Optional[dict]:
        with self._cursor() as cur:
            cur.execute(
                f"select {_PROFILE_COLUMNS_SQL} from public.profiles where lower(email) = lower(%s) limit 1",
                ((email or "").strip(),),
            )
            row = cur.fetchone()
        return dict(row) if row else None

    def list_profiles(self, row_filter: RowFilter, *, role: str) -> List[dict]:
        if row_filter.is_empty:
            return []
        stmt = _sql.SQL(
            "select " + _PROFILE_COLUMNS_SQL + " from public.profiles where role = %s and {} "
            "order by lower(last_name), lower(first_name)"
        ).format(_filter_sql(row_filter))
        with self._cursor() as cur:
            cur.execute(stmt, (role, _sorted_values(row_filter)))
            rows = cur.fetchall()
        return [dict(r) for r in rows]

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
        try:
            with self._cursor() as cur:
                cur.execute(
                    f"""
                    insert into public.profiles (id, email, first_name, last_name, role, school_id, must_change_password)
                    values (%s::uuid, %s, %s, %s, %s, %s::uuid, %s)
                    returning {_PROFILE_COLUMNS_SQL}
                    """,
                    (user_id, email, first_name, last_name, role, school_id, bool(must_change_password)),
                )
                row = cur.fetchone()
        except ConflictError as exc:
            raise ConflictError("duplicate_user", "A user with this email or ID already exists in profiles.") from exc
        if not row:
            raise UpstreamStoreError("profile_insert_failed", "Profile could not be created")
        return dict(row)

    # --- Classrooms -------------------------------------------------------------

    def get_classroom(self, classroom_id: str) -> Optional[dict]:
        with self._cursor() as cur:
            cur.execute(
                f"select {_CLASSROOM_COLUMNS_SQL} from public.classrooms where id::text = %s",
                (str(classroom_id),),
            )
            row = cur.fetchone()
        return dict(row) if row else None

    def list_classrooms(self, row_filter: RowFilter) -> List[dict]:
        if row_filter.is_empty:
            return []
        stmt = _sql.SQL(
            "select " + _CLASSROOM_COLUMNS_SQL + " from public.classrooms where {} order by lower(name), id"
        ).format(_filter_sql(row_filter))
        with self._cursor() as cur:
            cur.execute(stmt, (_sorted_values(row_filter),))
            rows = cur.fetchall()
        return [dict(r) for r in rows]

    def list_classroom_ids_for_school(self, school_id: str) -> List[str]:
        with self._cursor() as cur:
            cur.execute("select id::text as id from public.classrooms where school_id::text = %s", (str(school_id),))
            rows = cur.fetchall()
        return [r["id"] for r in rows]

    def create_classroom(self, *, name: str, school_id: str) -> dict:
        name = (name or "").strip()
        if not name or len(name) > 200:
            raise ValueError("invalid_name")
        with self._cursor() as cur:
            cur.execute(
                f"""
                insert into public.classrooms (name, school_id)
                values (%s, %s::uuid)
                returning {_CLASSROOM_COLUMNS_SQL}
                """,
                (name, school_id),
            )
            row = cur.fetchone()
        if not row:
            raise UpstreamStoreError("classroom_insert_failed", "Classroom could not be created")
        return dict(row)

    # --- Teacher assignments ----------------------------------------------------

    def list_classroom_ids_for_teacher(self, teacher_id: str) -> List[str]:
        with self._cursor() as cur:
            cur.execute(
                "select classroom_id::text as classroom_id from public.teacher_classroom where teacher_id::text = %s",
                (str(teacher_id),),
            )
            rows = cur.fetchall()
        return [r["classroom_id"] for r in rows]

    def assignment_exists(self, teacher_id: str, classroom_id: str) -> bool:
        with self._cursor() as cur:
            cur.execute(
                """
                select 1 from public.teacher_classroom
                 where teacher_id::text = %s and classroom_id::text = %s
                 limit 1
                """,
                (str(teacher_id), str(classroom_id)),
            )
            row = cur.fetchone()
        return bool(row)

    def create_assignment(self, *, teacher_id: str, classroom_id: str) -> Optional[dict]:
        # Unique (teacher_id, classroom_id) makes concurrent duplicates a no-op.
        with self._cursor() as cur:
            cur.execute(
                f"""
                insert into public.teacher_classroom (teacher_id, classroom_id)
                values (%s::uuid, %s::uuid)
                on conflict (teacher_id, classroom_id) do nothing
                returning {_ASSIGNMENT_COLUMNS_SQL}
                """,
                (teacher_id, classroom_id),
            )
            row = cur.fetchone()
        return dict(row) if row else None

    # --- Progress ---------------------------------------------------------------

    def list_progress(
        self,
        row_filter: RowFilter,
        *,
        student_id: Optional[str] = None,
        classroom_id: Optional[str] = None,
    ) -> List[dict]:
        if row_filter.is_empty:
            return []
        clauses = [_filter_sql(row_filter)]
        params: list[Any] = [_sorted_values(row_filter)]
        if student_id:
            clauses.append(_sql.SQL("student_id::text = %s"))
            params.append(student_id)
        if classroom_id:
            clauses.append(_sql.SQL("classroom_id::text = %s"))
            params.append(classroom_id)
        stmt = _sql.SQL(
            "select " + _PROGRESS_COLUMNS_SQL + " from public.progress where {} "
            "order by date_recorded desc, created_at desc"
        ).format(_sql.SQL(" and ").join(clauses))
        with self._cursor() as cur:
            cur.execute(stmt, params)
            rows = cur.fetchall()
        return [dict(r) for r in rows]

    def latest_classroom_id_for_student(self, student_id: str) -> Optional[str]:
        with self._cursor() as cur:
            cur.execute(
                """
                select classroom_id::text as classroom_id
                  from public.progress
                 where student_id::text = %s
                 order by date_recorded desc, created_at desc
                 limit 1
                """,
                (str(student_id),),
            )
            row = cur.fetchone()
        return row["classroom_id"] if row else None

    def create_progress(
        self,
        *,
        student_id: str,
        classroom_id: str,
        assignment_name: str,
        score: float,
        date_recorded: datetime,
    ) -> dict:
        with self._cursor() as cur:
            cur.execute(
                f"""
                insert into public.progress (student_id, classroom_id, assignment_name, score, date_recorded)
                values (%s::uuid, %s::uuid, %s, %s, %s)
                returning {_PROGRESS_COLUMNS_SQL}
                """,
                (student_id, classroom_id, assignment_name, score, date_recorded),
            )
            row = cur.fetchone()
        if not row:
            raise UpstreamStoreError("progress_insert_failed", "Progress could not be recorded")
        return dict(row)

    def list_scored_progress(self, classroom_id: str) -> List[dict]:
        with self._cursor() as cur:
            cur.execute(
                """
                select student_id::text as student_id, score::float8 as score
                  from public.progress
                 where classroom_id::text = %s and score is not null
                """,
                (str(classroom_id),),
            )
            rows = cur.fetchall()
        return [dict(r) for r in rows]


__all__ = ["DBSchoolRepo", "HAVE_PSYCOPG"]
