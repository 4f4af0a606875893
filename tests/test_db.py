"""Tests for the admin console connection layer."""
from __future__ import annotations

import sys
from pathlib import Path

import psycopg
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import db
from db import AdminConnection, QueryResult
from errors import QueryError, ShapeError

from fakes import FailingRows


class _Column:
    def __init__(self, name: str) -> None:
        self.name = name


class _Cursor:
    def __init__(self, owner: _Connection) -> None:
        self.owner = owner
        self.description = None

    def __enter__(self) -> _Cursor:
        return self

    def __exit__(self, *exc) -> None:
        return None

    def execute(self, sql: str) -> None:
        self.owner.executed.append(sql)
        if self.owner.error is not None:
            raise self.owner.error
        self.description = [_Column("list"), _Column("items")]

    def fetchall(self) -> list[tuple]:
        return [("databases", 1)]


class _Connection:
    def __init__(self, error: Exception | None = None) -> None:
        self.executed: list[str] = []
        self.error = error
        self.closed = False

    def cursor(self) -> _Cursor:
        return _Cursor(self)

    def cancel(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True


def test_query_result_iterates_rows() -> None:
    result = QueryResult(["a", "b"], [(1, 2), (3, 4)])
    assert list(result) == [[1, 2], [3, 4]]
    assert result.iteration_error is None


def test_query_result_row_width_mismatch() -> None:
    with pytest.raises(ShapeError):
        list(QueryResult(["a", "b"], [(1,)]))


def test_query_result_keeps_iteration_error() -> None:
    result = QueryResult(["a"], FailingRows([(1,)]))
    assert list(result) == [[1]]
    assert isinstance(result.iteration_error, QueryError)


def test_admin_connection_query(monkeypatch) -> None:
    opened = []

    def connect(dsn, **kwargs):
        opened.append(kwargs)
        return _Connection()

    monkeypatch.setattr(db.psycopg, "connect", connect)
    conn = AdminConnection("postgres://u:p@localhost:6432/pgbouncer")
    with conn.session():
        result = conn.query("SHOW LISTS;")
        conn.query("SHOW LISTS;")
    assert result.columns == ["list", "items"]
    assert list(result) == [["databases", 1]]
    assert len(opened) == 1
    assert opened[0]["autocommit"] is True
    assert opened[0]["cursor_factory"] is psycopg.ClientCursor
    assert "p@" not in repr(conn)
    conn.close()


def test_admin_connection_drops_connection_on_error(monkeypatch) -> None:
    created: list[_Connection] = []

    def connect(dsn, **kwargs):
        c = _Connection(error=psycopg.OperationalError("server closed the connection"))
        created.append(c)
        return c

    monkeypatch.setattr(db.psycopg, "connect", connect)
    conn = AdminConnection("postgres://localhost/pgbouncer", query_timeout_sec=0)
    with pytest.raises(QueryError):
        conn.query("SHOW STATS;")
    assert created[0].closed
    with pytest.raises(QueryError):
        conn.ping()
    assert len(created) == 2


def test_admin_connection_connect_failure(monkeypatch) -> None:
    def connect(dsn, **kwargs):
        raise psycopg.OperationalError("connection refused")

    monkeypatch.setattr(db.psycopg, "connect", connect)
    with pytest.raises(QueryError, match="connection refused"):
        AdminConnection("postgres://localhost/pgbouncer").ping()


def test_admin_connection_recycles_after_lifetime(monkeypatch) -> None:
    created: list[_Connection] = []

    def connect(dsn, **kwargs):
        c = _Connection()
        created.append(c)
        return c

    clock = [100.0]
    monkeypatch.setattr(db.psycopg, "connect", connect)
    monkeypatch.setattr(db.time, "monotonic", lambda: clock[0])
    conn = AdminConnection("postgres://localhost/pgbouncer", query_timeout_sec=0, max_lifetime_sec=10)
    conn.query("SHOW LISTS;")
    clock[0] += 5
    conn.query("SHOW LISTS;")
    assert len(created) == 1
    clock[0] += 20
    conn.query("SHOW LISTS;")
    assert len(created) == 2
    assert created[0].closed
