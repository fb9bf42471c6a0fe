"""
Postgres-backed averages cache and recompute queue.

Design:
- `classroom_averages` holds one row per classroom; writes use
  `insert ... on conflict (classroom_id) do update` so concurrent recomputes
  converge on the last completed write.
- `classroom_average_jobs` holds at most one job per classroom. Workers lease
  with `for update skip locked`; a submission during a lease clears the lease
  key so the holder's ack leaves the job queued.

Expected tables (public schema, created outside this code):
    classroom_averages(classroom_id uuid pk, classroom_name text,
                       average double precision null, total_assignments int,
                       total_students int, last_updated timestamptz)
    classroom_average_jobs(id uuid pk default gen_random_uuid(),
                           classroom_id uuid unique, status text,
                           retry_count int default 0, visible_at timestamptz,
                           leased_until timestamptz null, lease_key uuid null,
                           last_error text null,
                           created_at timestamptz default now(),
                           updated_at timestamptz default now())
"""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timedelta
import logging
import os
from typing import Any, Iterator, List, Optional
from uuid import uuid4

try:  # pragma: no cover - optional dependency in some environments
    import psycopg
    from psycopg.rows import dict_row
    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover
    psycopg = None  # type: ignore
    HAVE_PSYCOPG = False

from backend.school.errors import UpstreamStoreError
from backend.school.ports import RowFilter

from .ports import ClassroomAverage, RecomputeJob

LOG = logging.getLogger(__name__)

_TS = 'YYYY-MM-DD"T"HH24:MI:SS"+00:00"'

_AVERAGE_COLUMNS_SQL = f"""
    classroom_id::text as classroom_id,
    classroom_name,
    average,
    total_assignments,
    total_students,
    to_char(last_updated at time zone 'utc', '{_TS}') as last_updated
"""


def _dsn() -> str:
    for candidate in (os.getenv("AVERAGES_DATABASE_URL"), os.getenv("DATABASE_URL")):
        if candidate:
            return candidate
    raise RuntimeError("Database DSN unavailable for averages store")


def _row_to_average(row: dict) -> ClassroomAverage:
    average = row.get("average")
    return ClassroomAverage(
        classroom_id=str(row["classroom_id"]),
        classroom_name=str(row.get("classroom_name") or ""),
        average=float(average) if average is not None else None,
        total_assignments=int(row.get("total_assignments") or 0),
        total_students=int(row.get("total_students") or 0),
        last_updated=str(row.get("last_updated") or ""),
    )


class _PgStore:
    def __init__(self, dsn: Optional[str] = None) -> None:
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for the averages store")
        self._dsn = dsn or _dsn()

    @contextmanager
    def _cursor(self) -> Iterator[Any]:
        try:
            with psycopg.connect(self._dsn, row_factory=dict_row) as conn:
                with conn.cursor() as cur:
                    yield cur
        except psycopg.Error as exc:
            LOG.warning("averages store error: %s", exc.__class__.__name__)
            raise UpstreamStoreError("cache_unavailable", "The averages store failed") from exc


class DBAveragesCache(_PgStore):
    def upsert(self, average: ClassroomAverage) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                insert into public.classroom_averages
                       (classroom_id, classroom_name, average, total_assignments, total_students, last_updated)
                values (%s::uuid, %s, %s, %s, %s, %s::timestamptz)
                on conflict (classroom_id) do update
                   set classroom_name = excluded.classroom_name,
                       average = excluded.average,
                       total_assignments = excluded.total_assignments,
                       total_students = excluded.total_students,
                       last_updated = excluded.last_updated
                """,
                (
                    average.classroom_id,
                    average.classroom_name,
                    average.average,
                    average.total_assignments,
                    average.total_students,
                    average.last_updated,
                ),
            )

    def get(self, classroom_id: str) -> Optional[ClassroomAverage]:
        with self._cursor() as cur:
            cur.execute(
                f"select {_AVERAGE_COLUMNS_SQL} from public.classroom_averages where classroom_id::text = %s",
                (str(classroom_id),),
            )
            row = cur.fetchone()
        return _row_to_average(row) if row else None

    def list_averages(self, row_filter: RowFilter) -> List[ClassroomAverage]:
        if row_filter.is_empty:
            return []
        if row_filter.column != "classroom_id":
            raise ValueError("averages can only be filtered by classroom_id")
        with self._cursor() as cur:
            cur.execute(
                f"""
                select {_AVERAGE_COLUMNS_SQL}
                  from public.classroom_averages
                 where classroom_id::text = any(%s)
                 order by lower(classroom_name), classroom_id
                """,
                (sorted(row_filter.values),),
            )
            rows = cur.fetchall()
        return [_row_to_average(r) for r in rows]


class DBRecomputeQueue(_PgStore):
    def __init__(self, dsn: Optional[str] = None, *, lease_seconds: int = 45) -> None:
        super().__init__(dsn)
        self._lease_seconds = lease_seconds

    def submit(self, classroom_id: str) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                insert into public.classroom_average_jobs (classroom_id, status, retry_count, visible_at)
                values (%s::uuid, 'queued', 0, now())
                on conflict (classroom_id) do update
                   set status = 'queued',
                       retry_count = 0,
                       visible_at = now(),
                       lease_key = null,
                       leased_until = null,
                       updated_at = now()
                """,
                (str(classroom_id),),
            )

    def lease(self, *, now: datetime) -> Optional[RecomputeJob]:
        lease_key = str(uuid4())
        lease_until = now + timedelta(seconds=self._lease_seconds)
        with self._cursor() as cur:
            cur.execute(
                """
                with candidate as (
                    select id
                      from public.classroom_average_jobs
                     where (status = 'queued' and visible_at <= %s)
                        or (status = 'leased' and leased_until is not null and leased_until <= %s)
                     order by visible_at asc, created_at asc
                     limit 1
                     for update skip locked
                )
                update public.classroom_average_jobs as jobs
                   set status = 'leased',
                       lease_key = %s::uuid,
                       leased_until = %s,
                       updated_at = now()
                  from candidate
                 where jobs.id = candidate.id
                returning jobs.id::text as id,
                          jobs.classroom_id::text as classroom_id,
                          jobs.retry_count
                """,
                (now, now, lease_key, lease_until),
            )
            row = cur.fetchone()
        if not row:
            return None
        return RecomputeJob(
            id=row["id"],
            classroom_id=row["classroom_id"],
            retry_count=int(row["retry_count"] or 0),
            lease_key=lease_key,
        )

    def ack(self, job: RecomputeJob) -> None:
        with self._cursor() as cur:
            cur.execute(
                "delete from public.classroom_average_jobs where id = %s::uuid and lease_key = %s::uuid",
                (job.id, job.lease_key),
            )
            LOG.debug("Acked job %s rowcount=%s", job.id, cur.rowcount)

    def retry(self, job: RecomputeJob, *, visible_at: datetime, error: str) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                update public.classroom_average_jobs
                   set status = 'queued',
                       retry_count = retry_count + 1,
                       visible_at = %s,
                       last_error = %s,
                       lease_key = null,
                       leased_until = null,
                       updated_at = now()
                 where id = %s::uuid and lease_key = %s::uuid
                """,
                (visible_at, error[:500], job.id, job.lease_key),
            )

    def depth(self) -> int:
        with self._cursor() as cur:
            cur.execute("select count(*) as depth from public.classroom_average_jobs")
            row = cur.fetchone()
        return int((row or {}).get("depth") or 0)


__all__ = ["DBAveragesCache", "DBRecomputeQueue", "HAVE_PSYCOPG"]
