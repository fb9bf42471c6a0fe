"""
Users (Directory) API routes: school-scoped listing and account creation.

Why:
    Head teachers pick teachers for classroom assignment and students for
    progress entry from their own school, and create accounts for both.

Permissions:
    Head teachers only (403 otherwise); enforced by the policy evaluator
    through `UsersService`.
"""
from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

users_router = APIRouter(tags=["Users"])  # explicit paths below


class UserCreatePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str | None = Field(default=None, max_length=320)
    password: str | None = Field(default=None)
    role: str | None = Field(default=None)
    first_name: str | None = Field(default=None, alias="firstName", max_length=100)
    last_name: str | None = Field(default=None, alias="lastName", max_length=100)
    school_id: str | None = Field(default=None, alias="schoolId")
    must_change_password: bool = Field(default=False, alias="mustChangePassword")


def _private_no_store() -> dict:
    return {"Cache-Control": "private, no-store"}


@users_router.get("/users")
async def users_list(request: Request, role: str | None = None):
    """List teachers or students of the caller's school as a flat array.

    Validation:
        - `role` in {teacher, student}
    """
    services = request.app.state.services
    rows = services.users.list_users(request.state.principal, role=role)
    return JSONResponse(rows, headers=_private_no_store())


@users_router.post("/users")
async def users_create(request: Request, payload: UserCreatePayload):
    services = request.app.state.services
    user = services.users.create_user(
        request.state.principal,
        email=payload.email,
        password=payload.password,
        role=payload.role,
        first_name=payload.first_name,
        last_name=payload.last_name,
        school_id=payload.school_id,
        must_change_password=payload.must_change_password,
    )
    return JSONResponse({"success": True, "user": user}, status_code=201, headers=_private_no_store())
