"""
In-memory identity stores for development and tests: tokens and auth users.

Why: The web adapter talks to an auth collaborator through two small ports
(token verification and user directory). These stores implement both without
a network dependency; production wiring swaps in the Supabase adapters.

Security: Tokens are opaque random strings; passwords are never stored.
"""
from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
from typing import Dict, Optional
import secrets
import time
from uuid import uuid4

from backend.school.errors import ConflictError, ValidationError

from .tokens import TokenVerificationError


def _now() -> int:
    return int(time.time())


@dataclass
class TokenRecord:
    token: str
    user_id: str
    expires_at: Optional[int] = None


class InMemoryTokenStore:
    def __init__(self):
        self._data: Dict[str, TokenRecord] = {}
        self._lock = Lock()

    def issue(self, user_id: str, *, ttl_seconds: Optional[int] = None) -> str:
        token = secrets.token_urlsafe(24)
        expires_at = _now() + ttl_seconds if ttl_seconds is not None else None
        with self._lock:
            self._data[token] = TokenRecord(token=token, user_id=str(user_id), expires_at=expires_at)
        return token

    def verify(self, token: str) -> str:
        if not token:
            raise TokenVerificationError("missing_token")
        with self._lock:
            rec = self._data.get(token)
            if rec and rec.expires_at is not None and rec.expires_at < _now():
                self._data.pop(token, None)
                rec = None
        if rec is None:
            raise TokenVerificationError("invalid_token")
        return rec.user_id

    def revoke(self, token: str) -> None:
        with self._lock:
            self._data.pop(token, None)


class InMemoryDirectory:
    """Auth users keyed by email; mirrors the Supabase admin calls we use."""

    def __init__(self):
        self._by_email: Dict[str, str] = {}
        self._lock = Lock()

    def create_user(self, *, email: str, password: str) -> str:
        if len(password or "") < 6:
            raise ValidationError("weak_password", "Password should be at least 6 characters")
        key = email.strip().lower()
        with self._lock:
            if key in self._by_email:
                raise ConflictError("duplicate_email", "A user with this email address has already been registered")
            user_id = str(uuid4())
            self._by_email[key] = user_id
        return user_id

    def delete_user(self, user_id: str) -> None:
        with self._lock:
            for email, uid in list(self._by_email.items()):
                if uid == user_id:
                    del self._by_email[email]

    def has_user(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._by_email.values()


__all__ = ["InMemoryDirectory", "InMemoryTokenStore", "TokenRecord"]
