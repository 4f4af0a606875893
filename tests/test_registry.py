"""Tests for the schema registry and the descriptor compiler."""
from __future__ import annotations

import sys
from pathlib import Path

import pytest
from packaging.version import Version

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from descriptors import compile_namespaces, metric_name
from errors import RegistryError
from models import ColumnUsage, MetricKind
from registry import default_registry, load_registry_file


def test_default_registry_result_sets() -> None:
    registry = default_registry()
    assert registry.result_sets() == ["databases", "stats", "pools"]
    assert registry.list_metrics["dns_queries"][0] == "in_flight_dns_queries"
    assert registry.config_metrics["max_client_conn"][0] == "max_client_connections"


def test_registry_is_read_only() -> None:
    registry = default_registry()
    with pytest.raises(TypeError):
        registry.metric_maps["pools"]["cl_active"] = None  # type: ignore[index]
    with pytest.raises(TypeError):
        registry.list_metrics["new"] = ("x", "y")  # type: ignore[index]


def test_metric_name() -> None:
    assert metric_name("pgbouncer", "pools", "client_active_connections") == "pgbouncer_pools_client_active_connections"
    assert metric_name("", "up") == "up"


def test_compile_labels_and_descriptors() -> None:
    compiled = compile_namespaces(default_registry(), "pgbouncer")
    pools = compiled["pools"]
    assert pools.labels == ("database", "user")
    cl_active = pools.columns["cl_active"]
    assert cl_active.desc.name == "pgbouncer_pools_client_active_connections"
    assert cl_active.desc.kind is MetricKind.GAUGE
    assert cl_active.desc.label_names == ("database", "user")
    assert pools.columns["maxwait_us"].discard
    assert pools.columns["maxwait_us"].desc is None
    assert "database" not in pools.columns


def test_compile_applies_factor() -> None:
    compiled = compile_namespaces(default_registry(), "pgbouncer")
    column = compiled["stats"].columns["total_query_time"]
    assert column.desc.kind is MetricKind.COUNTER
    assert column.desc.name == "pgbouncer_stats_queries_duration_seconds_total"
    value, ok = column.conversion(2000000)
    assert ok
    assert value == pytest.approx(2.0)


def test_compile_without_version_keeps_everything() -> None:
    compiled = compile_namespaces(default_registry(), "pgbouncer")
    assert "total_server_assignment_count" in compiled["stats"].columns
    assert "cl_active_cancel_req" in compiled["pools"].columns


@pytest.mark.parametrize("version, assignments, parses, cancels", [
    ("1.17.0", False, False, False),
    ("1.18.0", False, False, True),
    ("1.21.0", False, True, True),
    ("1.23.1", True, True, True),
])
def test_compile_gates_on_version(version: str, assignments: bool, parses: bool, cancels: bool) -> None:
    compiled = compile_namespaces(default_registry(), "pgbouncer", Version(version))
    stats = compiled["stats"].columns
    assert ("total_server_assignment_count" in stats) is assignments
    assert ("total_client_parse_count" in stats) is parses
    assert ("total_bind_count" in stats) is parses
    assert ("cl_active_cancel_req" in compiled["pools"].columns) is cancels
    assert "total_query_count" in stats


def test_load_registry_file(tmp_path: Path) -> None:
    path = tmp_path / "metrics.yaml"
    path.write_text(
        "pools:\n"
        "  database: {usage: LABEL}\n"
        "  cl_active: {usage: gauge, metric: active, description: Active clients}\n"
        "  sv_fancy: {usage: GAUGE, metric: fancy, min_version: '1.30'}\n"
        "  pool_mode: {usage: DISCARD}\n",
        encoding="utf-8",
    )
    registry = load_registry_file(path)
    pools = registry.metric_maps["pools"]
    assert pools["database"].usage is ColumnUsage.LABEL
    assert pools["cl_active"].metric == "active"
    assert pools["sv_fancy"].min_version == Version("1.30")
    assert registry.list_metrics == default_registry().list_metrics

    compiled = compile_namespaces(registry, "pgb", Version("1.23.0"))
    assert set(compiled["pools"].columns) == {"cl_active", "pool_mode"}


@pytest.mark.parametrize("body", [
    "pools:\n  cl_active: {usage: SOMETIMES, metric: x}\n",
    "pools:\n  cl_active: {usage: GAUGE}\n",
    "pools:\n  cl_active: {usage: GAUGE, metric: x, factor: lots}\n",
    "pools:\n  cl_active: {usage: GAUGE, metric: x, min_version: not-a-version}\n",
    "pools:\n  cl_active: GAUGE\n",
    "[]\n",
])
def test_load_registry_file_rejects_bad_mappings(tmp_path: Path, body: str) -> None:
    path = tmp_path / "metrics.yaml"
    path.write_text(body, encoding="utf-8")
    with pytest.raises(RegistryError):
        load_registry_file(path)
