"""
Supabase directory adapter: admin error mapping.

Scenarios
- Users are created pre-confirmed and the auth id is returned.
- Duplicate email -> ConflictError; other 4xx -> ValidationError;
  anything else -> UpstreamStoreError.
- Cleanup failures surface as UpstreamStoreError.
"""
from __future__ import annotations

import types

import pytest

from backend.identity_access.directory import SupabaseDirectory
from backend.school.errors import ConflictError, UpstreamStoreError, ValidationError


class _AuthApiError(Exception):
    def __init__(self, message: str, *, status=None, code=None):
        super().__init__(message)
        self.status = status
        self.code = code


class _FakeAdmin:
    def __init__(self, *, exc: Exception | None = None, user_id: str | None = "auth-1"):
        self.exc = exc
        self.user_id = user_id
        self.created: list[dict] = []
        self.deleted: list[str] = []

    def create_user(self, attrs: dict):
        self.created.append(attrs)
        if self.exc is not None:
            raise self.exc
        return types.SimpleNamespace(user=types.SimpleNamespace(id=self.user_id) if self.user_id else None)

    def delete_user(self, user_id: str):
        if self.exc is not None:
            raise self.exc
        self.deleted.append(user_id)


def _directory(admin: _FakeAdmin) -> SupabaseDirectory:
    return SupabaseDirectory(types.SimpleNamespace(auth=types.SimpleNamespace(admin=admin)))


def test_create_user_confirms_email_and_returns_id():
    admin = _FakeAdmin()
    assert _directory(admin).create_user(email="a@b.test", password="secret1") == "auth-1"
    assert admin.created == [{"email": "a@b.test", "password": "secret1", "email_confirm": True}]


@pytest.mark.parametrize(
    "exc",
    [
        _AuthApiError("boom", status=422, code="email_exists"),
        _AuthApiError("A user with this email address has already been registered", status=422),
    ],
)
def test_create_user_duplicate_maps_to_conflict(exc):
    with pytest.raises(ConflictError):
        _directory(_FakeAdmin(exc=exc)).create_user(email="a@b.test", password="secret1")


def test_create_user_client_error_maps_to_validation():
    exc = _AuthApiError("Password should be at least 6 characters", status=422, code="weak_password")
    with pytest.raises(ValidationError) as err:
        _directory(_FakeAdmin(exc=exc)).create_user(email="a@b.test", password="x")
    assert err.value.detail == "auth_rejected"


@pytest.mark.parametrize("exc", [_AuthApiError("bad gateway", status=502), RuntimeError("connection reset")])
def test_create_user_other_failures_map_to_upstream(exc):
    with pytest.raises(UpstreamStoreError) as err:
        _directory(_FakeAdmin(exc=exc)).create_user(email="a@b.test", password="secret1")
    assert err.value.detail == "auth_unavailable"


def test_create_user_without_user_in_response():
    with pytest.raises(UpstreamStoreError):
        _directory(_FakeAdmin(user_id=None)).create_user(email="a@b.test", password="secret1")


def test_delete_user_success_and_failure():
    admin = _FakeAdmin()
    _directory(admin).delete_user("auth-1")
    assert admin.deleted == ["auth-1"]

    with pytest.raises(UpstreamStoreError) as err:
        _directory(_FakeAdmin(exc=RuntimeError("down"))).delete_user("auth-2")
    assert err.value.detail == "auth_cleanup_failed"
