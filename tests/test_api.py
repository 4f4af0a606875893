"""Tests for the HTTP API."""
from __future__ import annotations

import sys
from pathlib import Path

from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from api import build_registry, create_app
from config import ExporterConfig
from credentials import Credentials
from errors import ConnectError
from exporter import Exporter

from fakes import healthy_connection


def _client(probe_factory=None, **config) -> TestClient:
    cfg = ExporterConfig.from_dict(config)
    exporter = Exporter(conn=healthy_connection())
    return TestClient(create_app(cfg, build_registry(exporter), collector=exporter, probe_factory=probe_factory))


def test_health() -> None:
    r = _client().get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_landing_page_links_paths() -> None:
    r = _client(web={"metrics_path": "/prom"}).get("/")
    assert r.status_code == 200
    assert 'href="/prom"' in r.text


def test_metrics() -> None:
    r = _client().get("/metrics")
    assert r.status_code == 200
    assert "pgbouncer_up 1.0" in r.text
    assert "pgbouncer_pools_client_active_connections" in r.text
    assert "python_info" in r.text


def test_probe_requires_target() -> None:
    r = _client().get("/probe")
    assert r.status_code == 400
    assert "target" in r.json()["error"]


def test_probe_unknown_credential() -> None:
    r = _client().get("/probe", params={"target": "postgres://localhost/pgbouncer", "credential": "nope"})
    assert r.status_code == 400
    assert "nope" in r.json()["error"]


def test_probe_applies_credentials() -> None:
    seen = []

    def factory(dsn: str) -> Exporter:
        seen.append(dsn)
        return Exporter(conn=healthy_connection())

    client = _client(factory, credentials=[{"key": "mon", "username": "monitor", "password": "pw"}])
    r = client.get("/probe", params={"target": "postgres://localhost:6432/pgbouncer", "credential": "mon"})
    assert r.status_code == 200
    assert "pgbouncer_up 1.0" in r.text
    assert seen == [Credentials(username="monitor", password="pw").update_dsn("postgres://localhost:6432/pgbouncer")]


def test_probe_connect_failure() -> None:
    def factory(dsn: str) -> Exporter:
        raise ConnectError("connection refused")

    r = _client(factory).get("/probe", params={"target": "postgres://localhost/pgbouncer"})
    assert r.status_code == 500
    assert "connection refused" in r.json()["error"]
