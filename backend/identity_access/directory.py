"""
Directory adapter for auth user management (Supabase Admin API).

Why:
    Head teachers create accounts for teachers and students. The auth user is
    created first (email pre-confirmed) and its id becomes the profile id; if
    the profile insert fails the auth user is deleted again. This adapter
    wraps the two admin calls behind a small port.

Security:
    - The client must be initialized with the Service Role key.
    - Do not log passwords, tokens or full email addresses.
    - Intended for server-side use only.
"""
from __future__ import annotations

import logging
from typing import Any, Protocol

from backend.school.errors import ConflictError, UpstreamStoreError, ValidationError

logger = logging.getLogger("guarddog.identity_access")

_DUPLICATE_CODES = {"email_exists", "user_already_exists"}


class UserDirectoryProtocol(Protocol):
    def create_user(self, *, email: str, password: str) -> str:
        """Create a confirmed auth user and return its id."""
        ...

    def delete_user(self, user_id: str) -> None:
        ...


def _is_duplicate(exc: Exception) -> bool:
    code = str(getattr(exc, "code", "") or "").lower()
    if code in _DUPLICATE_CODES:
        return True
    return "already" in str(exc).lower() and "registered" in str(exc).lower()


def _client_status(exc: Exception) -> int | None:
    status = getattr(exc, "status", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


class SupabaseDirectory:
    """User directory backed by `client.auth.admin` (duck-typed supabase client)."""

    def __init__(self, client: Any):
        self._client = client

    def create_user(self, *, email: str, password: str) -> str:
        try:
            res = self._client.auth.admin.create_user(
                {"email": email, "password": password, "email_confirm": True}
            )
        except Exception as exc:
            if _is_duplicate(exc):
                raise ConflictError(
                    "duplicate_email", "A user with this email address has already been registered"
                ) from exc
            status = _client_status(exc)
            if status is not None and 400 <= status < 500:
                raise ValidationError("auth_rejected", str(exc) or "The auth service rejected the user") from exc
            logger.warning("auth admin create_user failed: %s", exc.__class__.__name__)
            raise UpstreamStoreError("auth_unavailable", "The auth service failed") from exc
        user = getattr(res, "user", None)
        user_id = getattr(user, "id", None)
        if not user_id:
            raise UpstreamStoreError("auth_user_missing", "Failed to create user")
        return str(user_id)

    def delete_user(self, user_id: str) -> None:
        try:
            self._client.auth.admin.delete_user(user_id)
        except Exception as exc:
            logger.error("auth admin delete_user failed id=%s error=%s", user_id[-6:], exc.__class__.__name__)
            raise UpstreamStoreError("auth_cleanup_failed", "Failed to remove the auth user") from exc


__all__ = ["SupabaseDirectory", "UserDirectoryProtocol"]
