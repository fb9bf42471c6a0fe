"""
Health probe for the classroom averages recompute pipeline.

Intent:
    Report whether the recompute queue is reachable, how many jobs are waiting
    and what the worker counters say, without leaking store details into the
    FastAPI layer. The probe is async-friendly so the web adapter can await it
    without blocking the event loop.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import os
from typing import Dict, List, Optional

from backend.averages.ports import RecomputeQueueProtocol

from . import telemetry


def _depth_threshold() -> int:
    raw = os.getenv("WORKER_QUEUE_DEPTH_WARN", "500")
    try:
        return max(1, int(raw))
    except ValueError:
        return 500


@dataclass(frozen=True)
class HealthCheckResult:
    check: str
    status: str
    detail: Optional[str] = None


@dataclass(frozen=True)
class HealthProbeResult:
    status: str
    queue_depth: Optional[int]
    checks: List[HealthCheckResult]
    metrics: Dict[str, float] = field(default_factory=dict)


class AveragesWorkerHealthService:
    """Evaluate the readiness of the averages recompute pipeline."""

    def __init__(self, queue: RecomputeQueueProtocol, *, depth_warn: Optional[int] = None):
        self._queue = queue
        self._depth_warn = depth_warn or _depth_threshold()

    async def probe(self) -> HealthProbeResult:
        """Run the probe in a thread so a slow store never blocks the loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._probe_sync)

    def _probe_sync(self) -> HealthProbeResult:
        checks: List[HealthCheckResult] = []
        depth: Optional[int] = None
        try:
            depth = self._queue.depth()
        except Exception as exc:
            checks.append(
                HealthCheckResult(check="queue_reachable", status="failed", detail=exc.__class__.__name__)
            )
        else:
            checks.append(HealthCheckResult(check="queue_reachable", status="ok"))
            if depth > self._depth_warn:
                checks.append(
                    HealthCheckResult(
                        check="queue_backlog",
                        status="failed",
                        detail=f"depth {depth} exceeds {self._depth_warn}",
                    )
                )
            else:
                checks.append(HealthCheckResult(check="queue_backlog", status="ok"))

        overall = "healthy" if all(c.status == "ok" for c in checks) else "degraded"
        return HealthProbeResult(
            status=overall,
            queue_depth=depth,
            checks=checks,
            metrics=telemetry.flat_snapshot(),
        )


__all__ = ["AveragesWorkerHealthService", "HealthCheckResult", "HealthProbeResult"]
