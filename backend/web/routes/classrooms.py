"""
Classrooms API routes.

Endpoints:
    GET  /classrooms                          role-scoped listing
    POST /classrooms                          head teacher, own school only
    POST /classrooms/{classroom_id}/assign-teacher

Permissions:
    The auth middleware resolves the principal; everything else is decided by
    the policy evaluator inside `ClassroomsService`. Errors are `SchoolError`s
    mapped by the app-level exception handler.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

classrooms_router = APIRouter(tags=["Classrooms"])
logger = logging.getLogger("guarddog.web.classrooms")


class ClassroomCreatePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str | None = Field(default=None)
    school_id: str | None = Field(default=None, alias="schoolId")


class AssignTeacherPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    teacher_id: str | None = Field(default=None, alias="teacherId")


def _json_private(payload, *, status_code: int = 200) -> JSONResponse:
    """Classroom data is school-scoped; keep it out of shared caches."""
    return JSONResponse(payload, status_code=status_code, headers={"Cache-Control": "private, no-store"})


@classrooms_router.get("/classrooms")
async def list_classrooms(request: Request):
    """List classrooms visible to the caller.

    Head teachers see their school, teachers their assigned classrooms and
    students none.
    """
    services = request.app.state.services
    rows = services.classrooms.list_classrooms(request.state.principal)
    return _json_private({"classrooms": rows})


@classrooms_router.post("/classrooms")
async def create_classroom(request: Request, payload: ClassroomCreatePayload):
    services = request.app.state.services
    principal = request.state.principal
    row = services.classrooms.create_classroom(principal, name=payload.name, school_id=payload.school_id)
    logger.info("classroom created id=%s by=%s", str(row.get("id"))[-6:], principal.id[-6:])
    return _json_private({"classroom": row}, status_code=201)


@classrooms_router.post("/classrooms/{classroom_id}/assign-teacher")
async def assign_teacher(request: Request, classroom_id: str, payload: AssignTeacherPayload):
    """Link a teacher of the same school to the classroom (409 when already linked)."""
    services = request.app.state.services
    row = services.classrooms.assign_teacher(
        request.state.principal,
        classroom_id,
        teacher_id=payload.teacher_id,
    )
    return _json_private({"assignment": row}, status_code=201)
