"""
Classroom averages API routes.

Endpoints:
    GET  /averages?classroomId=      cached averages visible to the caller
    POST /averages/calculate         recompute one classroom now (teachers, head teachers)

Why:
    Reads come from the averages cache only; they never touch progress rows.
    `classroomId` narrows the permitted set and cannot reach classrooms the
    caller may not see.
"""
from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from backend.averages.ports import ClassroomAverage
from backend.averages.service import NO_DATA_MESSAGE
from backend.school.errors import ValidationError

averages_router = APIRouter(tags=["Averages"])


class CalculatePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    classroom_id: str | None = Field(default=None, alias="classroomId")


def _json_private(payload, *, status_code: int = 200) -> JSONResponse:
    return JSONResponse(payload, status_code=status_code, headers={"Cache-Control": "private, no-store"})


def _average_to_api(avg: ClassroomAverage) -> dict:
    return {
        "classroomId": avg.classroom_id,
        "classroomName": avg.classroom_name,
        "average": avg.average,
        "totalAssignments": avg.total_assignments,
        "totalStudents": avg.total_students,
        "lastUpdated": avg.last_updated,
    }


@averages_router.get("/averages")
async def list_averages(request: Request, classroomId: str | None = None):  # noqa: N803
    services = request.app.state.services
    rows = services.averages.read(request.state.principal, classroomId)
    return _json_private({"averages": [_average_to_api(r) for r in rows]})


@averages_router.post("/averages/calculate")
async def calculate_average(request: Request, payload: CalculatePayload):
    """Recompute and cache the average for one classroom.

    Behavior:
        - 400 when `classroomId` is missing
        - 403 unless assigned teacher or head teacher of the classroom's school
        - "no data" yields `average: null` plus a message, never 0
    """
    classroom_id = (payload.classroom_id or "").strip()
    if not classroom_id:
        raise ValidationError("missing_classroom_id", "Classroom ID is required")
    services = request.app.state.services
    result = services.averages.calculate(request.state.principal, classroom_id)
    body = {
        "success": True,
        "average": result.average,
        "classroomName": result.classroom_name,
        "totalAssignments": result.total_assignments,
        "totalStudents": result.total_students,
    }
    if not result.has_data:
        body["message"] = NO_DATA_MESSAGE
    return _json_private(body)
