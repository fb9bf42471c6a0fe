"""
Classroom averages worker: leases recompute jobs and refreshes the cache.

Intent:
    Progress writes only submit a job keyed by classroom id. This module drains
    those jobs:
      1. Lease the next visible job (one per classroom, coalesced).
      2. Recompute the classroom aggregate from progress rows.
      3. Upsert the cache row and acknowledge the job.

    Draining happens either in-process after a response (see `drain`) or in a
    dedicated process:
        python -m backend.averages.workers.recompute_classroom_averages
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
import os
import time
from typing import Optional

from backend.averages.ports import RecomputeJob, RecomputeQueueProtocol
from backend.averages.service import AveragesService
from backend.school.errors import UpstreamStoreError

from . import telemetry

LOG = logging.getLogger(__name__)

LEASE_SECONDS = int(os.getenv("WORKER_LEASE_SECONDS", "45"))
MAX_RETRIES = int(os.getenv("WORKER_MAX_RETRIES", "3"))


def _backoff_seconds() -> int:
    """Return configured backoff seconds (>=1) with lenient parsing."""
    raw = os.getenv("WORKER_BACKOFF_SECONDS", "10")
    try:
        value = int(raw)
    except ValueError:
        LOG.warning("Invalid WORKER_BACKOFF_SECONDS=%s, defaulting to 10 seconds", raw)
        return 10
    return max(1, value)


def submit_recompute(queue: RecomputeQueueProtocol, classroom_id: str) -> bool:
    """Queue a recompute for `classroom_id` without ever raising.

    Returns False when the queue rejected the submission; the failure is logged
    and counted so the progress write that triggered it still succeeds.
    """
    try:
        queue.submit(classroom_id)
    except Exception as exc:
        telemetry.increment_counter("recompute_submissions_total", status="failed")
        LOG.warning(
            "averages.recompute.submit_failed classroom=%s error=%s",
            str(classroom_id)[-6:],
            exc.__class__.__name__,
        )
        return False
    telemetry.increment_counter("recompute_submissions_total", status="queued")
    return True


def run_once(
    *,
    queue: RecomputeQueueProtocol,
    service: AveragesService,
    now: Optional[datetime] = None,
) -> bool:
    """
    Lease and process at most one recompute job.

    Behavior:
        - `False` is returned when no job is visible.
        - On success the cache row is upserted and the job acknowledged. A job
          resubmitted during the lease stays queued and is processed again.
        - On failure the job is re-queued with exponential backoff
          (`WORKER_BACKOFF_SECONDS * 2**retry_count`); after `WORKER_MAX_RETRIES`
          attempts it is dropped with an error log.
    """
    tick = now or datetime.now(tz=timezone.utc)
    job = queue.lease(now=tick)
    if job is None:
        return False

    telemetry.adjust_gauge("recompute_jobs_inflight", delta=1)
    try:
        result = service.recompute(job.classroom_id)
    except Exception as exc:
        _handle_failure(queue=queue, job=job, now=tick, exc=exc)
    else:
        queue.ack(job)
        telemetry.increment_counter("recompute_jobs_total", status="completed")
        LOG.info(
            "averages.recompute.completed classroom=%s assignments=%s",
            job.classroom_id[-6:],
            result.total_assignments,
        )
    finally:
        telemetry.adjust_gauge("recompute_jobs_inflight", delta=-1)
    return True


def _handle_failure(
    *,
    queue: RecomputeQueueProtocol,
    job: RecomputeJob,
    now: datetime,
    exc: Exception,
) -> None:
    message = f"{exc.__class__.__name__}: {exc}"
    if job.retry_count + 1 >= MAX_RETRIES:
        queue.ack(job)
        telemetry.increment_counter("recompute_jobs_total", status="failed")
        LOG.error(
            "averages.recompute.dropped classroom=%s retries=%s error=%s",
            job.classroom_id[-6:],
            job.retry_count + 1,
            exc.__class__.__name__,
        )
        return
    delay_seconds = _backoff_seconds() * (2 ** job.retry_count)
    queue.retry(job, visible_at=now + timedelta(seconds=delay_seconds), error=message)
    telemetry.increment_counter("recompute_jobs_total", status="retried")
    LOG.warning(
        "averages.recompute.retry classroom=%s attempt=%s delay=%ss error=%s",
        job.classroom_id[-6:],
        job.retry_count + 1,
        delay_seconds,
        exc.__class__.__name__,
    )


def drain(
    queue: RecomputeQueueProtocol,
    service: AveragesService,
    *,
    max_jobs: int = 100,
) -> int:
    """Process visible jobs until the queue is empty or `max_jobs` is reached.

    Used as a background task after progress writes. Store outages end the
    drain early; queued jobs remain for the next run.
    """
    processed = 0
    try:
        while processed < max_jobs and run_once(queue=queue, service=service):
            processed += 1
    except UpstreamStoreError as exc:
        LOG.warning("averages.recompute.drain_interrupted detail=%s", exc.detail)
    return processed


def run_forever(
    *,
    queue: RecomputeQueueProtocol,
    service: AveragesService,
    poll_interval: float = 0.5,
) -> None:
    """Continuously process jobs until interrupted."""
    while True:
        try:
            processed = run_once(queue=queue, service=service)
        except UpstreamStoreError as exc:
            LOG.warning("averages.recompute.store_unavailable detail=%s", exc.detail)
            processed = False
        if not processed:
            time.sleep(poll_interval)


def main() -> None:
    """CLI entrypoint for the worker."""
    level_name = os.getenv("LOG_LEVEL", "INFO")
    normalized_level = level_name.strip().upper() or "INFO"
    logging.basicConfig(level=normalized_level)

    from backend.averages.repo_db import DBAveragesCache, DBRecomputeQueue
    from backend.school.policy import AccessPolicyEvaluator
    from backend.school.repo_db import DBSchoolRepo

    repo = DBSchoolRepo()
    service = AveragesService(
        repo=repo,
        cache=DBAveragesCache(),
        policy=AccessPolicyEvaluator(repo),
    )
    queue = DBRecomputeQueue(lease_seconds=LEASE_SECONDS)
    poll_interval = float(os.getenv("WORKER_POLL_INTERVAL", "0.5"))
    LOG.info(
        "averages.worker.started lease=%ss retries=%s poll=%ss",
        LEASE_SECONDS,
        MAX_RETRIES,
        poll_interval,
    )
    run_forever(queue=queue, service=service, poll_interval=poll_interval)


if __name__ == "__main__":
    main()
