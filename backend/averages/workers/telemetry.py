"""
In-memory telemetry for the classroom averages recompute pipeline.

Series are stored under their rendered `name{k=v}` key so the worker health
endpoint can return them as-is.

Names in use:
    recompute_submissions_total{status}  submissions from progress writes
    recompute_jobs_total{status}         processed jobs (completed/retried/failed)
    recompute_jobs_inflight              jobs currently being recomputed
"""
from __future__ import annotations

from threading import Lock
from typing import Dict

_counters: Dict[str, int] = {}
_gauges: Dict[str, float] = {}
_lock = Lock()


def _series(name: str, labels: dict[str, str]) -> str:
    if not labels:
        return name
    rendered = ",".join(f"{k}={v}" for k, v in sorted((str(k), str(v)) for k, v in labels.items()))
    return f"{name}{{{rendered}}}"


def increment_counter(name: str, *, amount: int = 1, **labels: str) -> None:
    """Increase a named counter by `amount` (defaults to 1)."""
    if amount == 0:
        return
    key = _series(name, labels)
    with _lock:
        _counters[key] = _counters.get(key, 0) + amount


def adjust_gauge(name: str, delta: float, **labels: str) -> None:
    """Adjust a gauge by `delta`; the stored value never drops below zero."""
    key = _series(name, labels)
    with _lock:
        _gauges[key] = max(0.0, _gauges.get(key, 0.0) + float(delta))


def counter_value(name: str, **labels: str) -> int:
    with _lock:
        return _counters.get(_series(name, labels), 0)


def flat_snapshot() -> dict[str, float]:
    """Every counter and gauge keyed by series, sorted for stable JSON output."""
    with _lock:
        merged: dict[str, float] = {**_counters, **_gauges}
    return dict(sorted(merged.items()))


def reset_for_tests() -> None:
    with _lock:
        _counters.clear()
        _gauges.clear()
