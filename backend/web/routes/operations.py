"""Operations endpoints (internal tooling for head teachers/operators)."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from backend.identity_access.domain import Role
from backend.school.errors import AuthorizationError

operations_router = APIRouter(tags=["Operations"])


def _private_response(body: dict, *, status_code: int) -> JSONResponse:
    return JSONResponse(body, status_code=status_code, headers={"Cache-Control": "private, no-store"})


@operations_router.get("/internal/health/averages-worker")
async def averages_worker_health(request: Request):
    """
    Return diagnostics for the averages recompute pipeline.

    Permissions:
        Caller must be a head teacher (bearer token).
    """
    principal = request.state.principal
    if principal.role is not Role.HEAD_TEACHER:
        raise AuthorizationError("head_teacher_required", "Only head teachers can inspect worker health")

    probe = await request.app.state.services.worker_health.probe()
    body = {
        "status": probe.status,
        "queueDepth": probe.queue_depth,
        "checks": [
            {"check": check.check, "status": check.status, "detail": check.detail}
            for check in probe.checks
        ],
        "metrics": probe.metrics,
    }
    status_code = 200 if probe.status == "healthy" else 503
    return _private_response(body, status_code=status_code)
