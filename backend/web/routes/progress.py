"""
Progress API routes.

Endpoints:
    GET  /progress?studentId=&classroomId=   role-scoped, newest first
    POST /progress                           teachers (assigned) and head teachers

Recompute:
    A successful insert submits a recompute job for the classroom. With
    `RECOMPUTE_INLINE=true` the queue is drained as a background task after
    the response is sent; otherwise the dedicated worker process picks it up.
"""
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from backend.averages.workers.recompute_classroom_averages import drain

progress_router = APIRouter(tags=["Progress"])
logger = logging.getLogger("guarddog.web.progress")


class ProgressCreatePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    student_id: str | None = Field(default=None, alias="studentId")
    classroom_id: str | None = Field(default=None, alias="classroomId")
    assignment_name: str | None = Field(default=None, alias="assignmentName")
    # Type-checked in the service so that booleans and strings are rejected.
    score: Any = Field(default=None)
    date_recorded: str | None = Field(default=None, alias="dateRecorded")


def _json_private(payload, *, status_code: int = 200) -> JSONResponse:
    return JSONResponse(payload, status_code=status_code, headers={"Cache-Control": "private, no-store"})


@progress_router.get("/progress")
async def list_progress(request: Request, studentId: str | None = None, classroomId: str | None = None):  # noqa: N803
    """List progress visible to the caller; query params narrow, never widen."""
    services = request.app.state.services
    rows = services.progress.list_progress(
        request.state.principal,
        student_id=studentId,
        classroom_id=classroomId,
    )
    return _json_private({"progress": rows})


@progress_router.post("/progress")
async def create_progress(request: Request, payload: ProgressCreatePayload, background_tasks: BackgroundTasks):
    services = request.app.state.services
    principal = request.state.principal
    row = services.progress.record_progress(
        principal,
        student_id=payload.student_id,
        classroom_id=payload.classroom_id,
        assignment_name=payload.assignment_name,
        score=payload.score,
        date_recorded=payload.date_recorded,
    )
    logger.info(
        "progress recorded id=%s classroom=%s by=%s",
        str(row.get("id"))[-6:],
        str(row.get("classroom_id"))[-6:],
        principal.id[-6:],
    )
    if services.settings.recompute_inline:
        background_tasks.add_task(drain, services.queue, services.averages)
    return _json_private({"progress": row}, status_code=201)
