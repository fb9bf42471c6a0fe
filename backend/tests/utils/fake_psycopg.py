"""
Lightweight psycopg stand-in for unit tests.

Provides ``install_fake_psycopg`` which monkeypatches a target module so that
``psycopg.connect`` returns a recording connection. Every ``execute`` is stored
as ``(sql, params)``; results for ``fetchone``/``fetchall`` are scripted in
call order so tests can assert the SQL shape of the Postgres adapters.
"""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
import types
from typing import Any, Deque, List, Optional, Tuple


class FakePsycopgError(Exception):
    """Stands in for ``psycopg.Error`` so adapters can map driver failures."""


@dataclass
class FakeDB:
    results: Deque[Any] = field(default_factory=deque)
    calls: List[Tuple[str, Any]] = field(default_factory=list)
    fail_with: Optional[Exception] = None
    dsns: List[str] = field(default_factory=list)

    def script(self, *results: Any) -> "FakeDB":
        """Queue one result per upcoming ``execute`` (row dict, list of rows or None)."""
        self.results.extend(results)
        return self

    def sql(self, index: int = -1) -> str:
        return " ".join(str(self.calls[index][0]).split()).lower()

    def params(self, index: int = -1) -> Any:
        return self.calls[index][1]


class _FakeCursor:
    def __init__(self, db: FakeDB) -> None:
        self._db = db
        self._result: Any = None
        self.rowcount = 0

    def execute(self, sql: Any, params: tuple | list | None = None) -> None:
        self._db.calls.append((sql, params))
        if self._db.fail_with is not None:
            raise self._db.fail_with
        self._result = self._db.results.popleft() if self._db.results else None
        if isinstance(self._result, list):
            self.rowcount = len(self._result)
        else:
            self.rowcount = 1 if self._result else 0

    def fetchone(self):
        if isinstance(self._result, list):
            return self._result[0] if self._result else None
        return self._result

    def fetchall(self):
        if self._result is None:
            return []
        return self._result if isinstance(self._result, list) else [self._result]

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class _FakeConn:
    def __init__(self, db: FakeDB) -> None:
        self._db = db

    def cursor(self):
        return _FakeCursor(self._db)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


def install_fake_psycopg(monkeypatch, target_module) -> FakeDB:
    """
    Patch ``target_module`` so psycopg operations go against a recording fake.

    Returns the ``FakeDB`` holding scripted results and recorded calls.
    """
    db = FakeDB()

    def fake_connect(dsn: str, row_factory: Any = None, **kwargs: Any):
        db.dsns.append(dsn)
        return _FakeConn(db)

    fake_psycopg = types.SimpleNamespace(connect=fake_connect, Error=FakePsycopgError)

    monkeypatch.setattr(target_module, "HAVE_PSYCOPG", True, raising=False)
    monkeypatch.setattr(target_module, "psycopg", fake_psycopg, raising=False)
    monkeypatch.setattr(target_module, "dict_row", object(), raising=False)
    return db


__all__ = ["FakeDB", "FakePsycopgError", "install_fake_psycopg"]
