"""Tests for the admin-console collectors."""
from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from packaging.version import Version

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from collectors.base import BaseCollector, CollectorResult
from collectors.config_collector import ConfigCollector
from collectors.lists_collector import ListsCollector
from collectors.process_collector import ProcessCollector
from collectors.servers_collector import ServersCollector
from collectors.version_collector import VersionCollector, parse_version
from errors import QueryError, ShapeError
from registry import CONFIG_METRICS, LIST_METRICS

from fakes import FakeConnection

SERVER_COLUMNS = [
    "type", "user", "database", "state", "addr", "port", "local_addr", "local_port",
    "connect_time", "request_time", "wait", "wait_us", "close_needed", "ptr", "link",
    "remote_pid", "tls", "application_name", "prepared_statements",
]


def _server_row(user: str = "postgres", state: str = "active", port: int = 5432, close_needed: int = 0) -> tuple:
    return (
        "S", user, "pg0", state, "10.0.0.1", port, "10.0.0.2", 40000,
        "2024-01-01 00:00:00", "2024-01-01 00:00:00", 0, 0, close_needed, "0x1", "0x2",
        1234, "", "app", 0,
    )


def test_collect_safe_captures_errors() -> None:
    class Broken(BaseCollector):
        name = "broken"

        def collect(self, sink, conn) -> CollectorResult:
            raise QueryError("nope")

    r = Broken("pgbouncer").collect_safe(lambda s: None, FakeConnection())
    assert not r.success
    assert isinstance(r.error, QueryError)


def test_lists_collector() -> None:
    conn = FakeConnection()
    conn.set("SHOW LISTS;", ["list", "items"], [("dns_queries", -1), ("databases", 1), ("pools", 0), ("users", 2)])
    samples = []
    r = ListsCollector("pgbouncer", LIST_METRICS).collect_safe(samples.append, conn)
    assert r.success
    assert [s.desc.name for s in samples] == [
        "pgbouncer_in_flight_dns_queries",
        "pgbouncer_databases",
        "pgbouncer_pools",
        "pgbouncer_users",
    ]
    assert [s.value for s in samples] == [-1, 1, 0, 2]
    assert all(s.label_values == () for s in samples)


def test_lists_collector_skips_unknown_and_bad_values() -> None:
    conn = FakeConnection()
    conn.set("SHOW LISTS;", ["list", "items"], [("peers", 3), ("users", "many"), ("pools", 4)])
    samples = []
    r = ListsCollector("pgbouncer", LIST_METRICS).collect_safe(samples.append, conn)
    assert r.success
    assert len(r.nonfatal) == 1
    assert [s.desc.name for s in samples] == ["pgbouncer_pools"]


def test_lists_collector_wrong_shape() -> None:
    conn = FakeConnection()
    conn.set("SHOW LISTS;", ["list", "items", "extra"], [])
    r = ListsCollector("pgbouncer", LIST_METRICS).collect_safe(lambda s: None, conn)
    assert not r.success
    assert isinstance(r.error, ShapeError)


@pytest.mark.parametrize("columns, rows", [
    (["key", "value", "default", "changeable"], [("max_client_conn", 1900, 100, True), ("auth_type", "md5", "md5", True)]),
    (["key", "value", "changeable"], [("max_client_conn", "1900", True), ("auth_type", "md5", True)]),
])
def test_config_collector(columns: list[str], rows: list[tuple]) -> None:
    conn = FakeConnection()
    conn.set("SHOW CONFIG;", columns, rows)
    samples = []
    r = ConfigCollector("pgbouncer", CONFIG_METRICS).collect_safe(samples.append, conn)
    assert r.success
    assert r.nonfatal == []
    assert len(samples) == 1
    assert samples[0].desc.name == "pgbouncer_config_max_client_connections"
    assert samples[0].value == 1900


def test_config_collector_non_numeric_allow_listed_value() -> None:
    conn = FakeConnection()
    conn.set("SHOW CONFIG;", ["key", "value", "changeable"], [("max_user_connections", "unlimited", True)])
    samples = []
    r = ConfigCollector("pgbouncer", CONFIG_METRICS).collect_safe(samples.append, conn)
    assert r.success
    assert len(r.nonfatal) == 1
    assert samples == []


def test_config_collector_enum_settings() -> None:
    conn = FakeConnection()
    conn.set("SHOW CONFIG;", ["key", "value", "changeable"], [("auth_type", "md5", True)])
    samples = []
    collector = ConfigCollector("pgbouncer", CONFIG_METRICS, {"auth_type": ("auth_type", "Authentication method")})
    collector.collect_safe(samples.append, conn)
    assert len(samples) == 1
    assert samples[0].desc.name == "pgbouncer_config_auth_type"
    assert samples[0].labels() == {"value": "md5"}
    assert samples[0].value == 1


def test_config_collector_wrong_shape() -> None:
    conn = FakeConnection()
    conn.set("SHOW CONFIG;", ["key", "value"], [])
    r = ConfigCollector("pgbouncer", CONFIG_METRICS).collect_safe(lambda s: None, conn)
    assert isinstance(r.error, ShapeError)


def test_servers_collector_groups_rows() -> None:
    conn = FakeConnection()
    conn.set("SHOW SERVERS;", SERVER_COLUMNS, [_server_row(), _server_row(), _server_row(state="idle", close_needed=1)])
    samples = []
    r = ServersCollector("pgbouncer").collect_safe(samples.append, conn)
    assert r.success
    assert r.data["connections"] == 3
    assert len(samples) == 2
    active = samples[0]
    assert active.desc.name == "pgbouncer_server_connections"
    assert active.value == 2
    assert active.labels() == {
        "user": "postgres",
        "database": "pg0",
        "state": "active",
        "addr": "10.0.0.1_5432",
        "close_needed": "false",
    }
    assert samples[1].value == 1
    assert samples[1].labels()["close_needed"] == "true"


def test_servers_collector_replication_layout() -> None:
    columns = SERVER_COLUMNS[:3] + ["replication"] + SERVER_COLUMNS[3:]
    row = _server_row()
    conn = FakeConnection()
    conn.set("SHOW SERVERS;", columns, [row[:3] + ("none",) + row[3:]])
    samples = []
    ServersCollector("pgbouncer").collect_safe(samples.append, conn)
    assert samples[0].labels()["state"] == "active"
    assert samples[0].labels()["addr"] == "10.0.0.1_5432"


def test_servers_collector_wrong_shape() -> None:
    conn = FakeConnection()
    conn.set("SHOW SERVERS;", SERVER_COLUMNS[:10], [])
    r = ServersCollector("pgbouncer").collect_safe(lambda s: None, conn)
    assert isinstance(r.error, ShapeError)


def test_parse_version() -> None:
    assert parse_version("PgBouncer 1.23.1") == Version("1.23.1")
    assert parse_version("PgBouncer 1.21.0 (dev)") == Version("1.21.0")
    assert parse_version("PgBouncer 1.7") == Version("1.7.0")
    assert parse_version("unknown") is None


def test_version_collector() -> None:
    conn = FakeConnection()
    conn.set("SHOW VERSION;", ["version"], [("PgBouncer 1.23.1",)])
    samples = []
    r = VersionCollector("pgbouncer").collect_safe(samples.append, conn)
    assert r.success
    assert r.data["version"] == Version("1.23.1")
    assert samples[0].desc.name == "pgbouncer_version_info"
    assert samples[0].labels() == {"version": "PgBouncer 1.23.1"}


def test_version_collector_wrong_column() -> None:
    conn = FakeConnection()
    conn.set("SHOW VERSION;", ["ver"], [("PgBouncer 1.23.1",)])
    r = VersionCollector("pgbouncer").collect_safe(lambda s: None, conn)
    assert isinstance(r.error, ShapeError)


def test_process_collector_reads_pid_file(tmp_path: Path) -> None:
    pid_file = tmp_path / "pgbouncer.pid"
    pid_file.write_text(f"{os.getpid()}\n", encoding="utf-8")
    samples = []
    r = ProcessCollector("pgbouncer", pid_file).collect_safe(samples.append, None)
    assert r.success
    assert r.data["pid"] == os.getpid()
    names = {s.desc.name for s in samples}
    assert "pgbouncer_process_cpu_seconds_total" in names
    assert "pgbouncer_process_resident_memory_bytes" in names
    assert "pgbouncer_process_start_time_seconds" in names


def test_process_collector_missing_pid_file(tmp_path: Path) -> None:
    r = ProcessCollector("pgbouncer", tmp_path / "missing.pid").collect_safe(lambda s: None, None)
    assert not r.success
    assert isinstance(r.error, FileNotFoundError)
