"""
Error taxonomy shared by the policy evaluator, services and store adapters.

Every error carries:
    - `code`: the stable top-level kind used as the `error` field in responses
    - `detail`: a machine-readable sub-code (e.g. `not_assigned_to_classroom`)
    - `message`: a human readable sentence

The web adapter maps these to HTTP statuses in one place; callers and tests can
discriminate "not logged in" (401) from "logged in but forbidden" (403).
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class SchoolError(Exception):
    """Base class for all domain errors surfaced at the request boundary."""

    code = "internal_error"
    status_code = 500

    def __init__(self, detail: str, message: str | None = None, *, debug: Optional[Dict[str, Any]] = None):
        super().__init__(detail)
        self.detail = detail
        self.message = message or detail.replace("_", " ")
        self.debug = debug or {}

    def to_payload(self, *, include_debug: bool = False) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.code, "detail": self.detail, "message": self.message}
        if include_debug and self.debug:
            payload["debug"] = self.debug
        return payload


class AuthenticationError(SchoolError):
    """Missing, malformed or rejected bearer token."""

    code = "unauthenticated"
    status_code = 401


class ProfileNotFoundError(SchoolError):
    """Token resolved to a user id without a matching profile row."""

    code = "not_found"
    status_code = 404


class AuthorizationError(SchoolError):
    """Principal lacks the role or assignment required for the operation."""

    code = "forbidden"
    status_code = 403


class ValidationError(SchoolError):
    """Missing or malformed input fields."""

    code = "bad_request"
    status_code = 400


class ConflictError(SchoolError):
    """Duplicate assignment or user."""

    code = "conflict"
    status_code = 409


class UpstreamStoreError(SchoolError):
    """The relational store, cache store or auth service failed."""

    code = "upstream_error"
    status_code = 500


__all__ = [
    "AuthenticationError",
    "AuthorizationError",
    "ConflictError",
    "ProfileNotFoundError",
    "SchoolError",
    "UpstreamStoreError",
    "ValidationError",
]
