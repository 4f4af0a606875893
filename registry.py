"""
Metric schema registry: which admin-console columns become which metrics.

The generic mappings cover SHOW DATABASES, SHOW STATS and SHOW POOLS. SHOW
LISTS and SHOW CONFIG are key/value result-sets with their own fixed
descriptor tables. A registry is an immutable value; build it once with
default_registry() or load_registry_file() and pass it to the compiler.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import yaml
from packaging.version import InvalidVersion, Version

from errors import RegistryError
from models import ColumnMapping, ColumnUsage

LABEL = ColumnUsage.LABEL
COUNTER = ColumnUsage.COUNTER
GAUGE = ColumnUsage.GAUGE
DISCARD = ColumnUsage.DISCARD

V1_18 = Version("1.18.0")
V1_21 = Version("1.21.0")
V1_23 = Version("1.23.0")


def _label() -> ColumnMapping:
    return ColumnMapping(LABEL, "", 1.0, "")


METRIC_MAPS: dict[str, dict[str, ColumnMapping]] = {
    "databases": {
        "name": _label(),
        "host": _label(),
        "port": _label(),
        "database": _label(),
        "force_user": _label(),
        "pool_size": ColumnMapping(GAUGE, "pool_size", 1, "Maximum number of server connections"),
        "min_pool_size": ColumnMapping(GAUGE, "min_pool_size", 1, "Minimum number of server connections"),
        "reserve_pool": ColumnMapping(GAUGE, "reserve_pool", 1, "Maximum number of additional connections for this database"),
        "pool_mode": _label(),
        "max_connections": ColumnMapping(GAUGE, "max_connections", 1, "Maximum number of allowed connections for this database"),
        "current_connections": ColumnMapping(GAUGE, "current_connections", 1, "Current number of connections for this database"),
        "paused": ColumnMapping(GAUGE, "paused", 1, "1 if this database is currently paused, else 0"),
        "disabled": ColumnMapping(GAUGE, "disabled", 1, "1 if this database is currently disabled, else 0"),
    },
    "stats": {
        "database": _label(),
        "total_query_count": ColumnMapping(COUNTER, "queries_pooled_total", 1, "Total number of SQL queries pooled"),
        "total_query_time": ColumnMapping(COUNTER, "queries_duration_seconds_total", 1e-6, "Total number of seconds spent by pgbouncer when actively connected to PostgreSQL, executing queries"),
        "total_received": ColumnMapping(COUNTER, "received_bytes_total", 1, "Total volume in bytes of network traffic received by pgbouncer, shown as bytes"),
        "total_requests": ColumnMapping(COUNTER, "queries_total", 1, "Total number of SQL requests pooled by pgbouncer, shown as requests"),
        "total_sent": ColumnMapping(COUNTER, "sent_bytes_total", 1, "Total volume in bytes of network traffic sent by pgbouncer, shown as bytes"),
        "total_wait_time": ColumnMapping(COUNTER, "client_wait_seconds_total", 1e-6, "Time spent by clients waiting for a server in seconds"),
        "total_xact_count": ColumnMapping(COUNTER, "sql_transactions_pooled_total", 1, "Total number of SQL transactions pooled"),
        "total_xact_time": ColumnMapping(COUNTER, "server_in_transaction_seconds_total", 1e-6, "Total number of seconds spent by pgbouncer when connected to PostgreSQL in a transaction, either idle in transaction or executing queries"),
        "total_server_assignment_count": ColumnMapping(COUNTER, "server_assignments_total", 1, "Total number of times a server was assigned to a client", V1_23),
        "total_client_parse_count": ColumnMapping(COUNTER, "client_parses_total", 1, "Total number of prepared statements created by clients", V1_21),
        "total_server_parse_count": ColumnMapping(COUNTER, "server_parses_total", 1, "Total number of prepared statements created by pgbouncer on a server", V1_21),
        "total_bind_count": ColumnMapping(COUNTER, "binds_total", 1, "Total number of prepared statements readied for execution by clients and forwarded to PostgreSQL", V1_21),
    },
    "pools": {
        "database": _label(),
        "user": _label(),
        "cl_active": ColumnMapping(GAUGE, "client_active_connections", 1, "Client connections linked to server connection and able to process queries, shown as connection"),
        "cl_active_cancel_req": ColumnMapping(GAUGE, "client_active_cancel_connections", 1, "Client connections that have forwarded query cancellations to the server and are waiting for the server response", V1_18),
        "cl_waiting": ColumnMapping(GAUGE, "client_waiting_connections", 1, "Client connections waiting on a server connection, shown as connection"),
        "cl_waiting_cancel_req": ColumnMapping(GAUGE, "client_waiting_cancel_connections", 1, "Client connections that have not forwarded query cancellations to the server yet", V1_18),
        "sv_active": ColumnMapping(GAUGE, "server_active_connections", 1, "Server connections linked to a client connection, shown as connection"),
        "sv_active_cancel": ColumnMapping(GAUGE, "server_active_cancel_connections", 1, "Server connections that are currently forwarding a cancel request", V1_18),
        "sv_being_canceled": ColumnMapping(GAUGE, "server_being_canceled_connections", 1, "Servers that normally could become idle but are waiting to do so until all in-flight cancel requests have completed", V1_18),
        "sv_idle": ColumnMapping(GAUGE, "server_idle_connections", 1, "Server connections idle and ready for a client query, shown as connection"),
        "sv_used": ColumnMapping(GAUGE, "server_used_connections", 1, "Server connections idle more than server_check_delay, needing server_check_query, shown as connection"),
        "sv_tested": ColumnMapping(GAUGE, "server_testing_connections", 1, "Server connections currently running either server_reset_query or server_check_query, shown as connection"),
        "sv_login": ColumnMapping(GAUGE, "server_login_connections", 1, "Server connections currently in the process of logging in, shown as connection"),
        "maxwait": ColumnMapping(GAUGE, "client_maxwait_seconds", 1, "Age of oldest unserved client connection, shown as second"),
        "maxwait_us": ColumnMapping(DISCARD),
        "pool_mode": ColumnMapping(DISCARD),
    },
}

# SHOW LISTS key -> (metric suffix, help)
LIST_METRICS: dict[str, tuple[str, str]] = {
    "databases": ("databases", "Count of databases"),
    "users": ("users", "Count of users"),
    "pools": ("pools", "Count of pools"),
    "free_clients": ("free_clients", "Count of free clients"),
    "used_clients": ("used_clients", "Count of used clients"),
    "login_clients": ("login_clients", "Count of clients in login state"),
    "free_servers": ("free_servers", "Count of free servers"),
    "used_servers": ("used_servers", "Count of used servers"),
    "dns_names": ("cached_dns_names", "Count of DNS names in the cache"),
    "dns_zones": ("cached_dns_zones", "Count of DNS zones in the cache"),
    "dns_queries": ("in_flight_dns_queries", "Count of in-flight DNS queries"),
}

# SHOW CONFIG allow-list: key -> (metric suffix under <ns>_config_, help)
CONFIG_METRICS: dict[str, tuple[str, str]] = {
    "max_client_conn": ("max_client_connections", "Config maximum number of client connections"),
    "max_user_connections": ("max_user_connections", "Config maximum number of server connections per user"),
}

# pools columns counting live connections; all zero means the pool is idle
EMPTY_POOL_COLUMNS: tuple[str, ...] = (
    "cl_active",
    "cl_waiting",
    "sv_active",
    "sv_idle",
    "sv_used",
    "sv_tested",
    "sv_login",
)


@dataclass(frozen=True)
class SchemaRegistry:
    """Read-only view over the column mappings and key/value descriptor tables."""
    metric_maps: Mapping[str, Mapping[str, ColumnMapping]]
    list_metrics: Mapping[str, tuple[str, str]] = field(default_factory=lambda: MappingProxyType(dict(LIST_METRICS)))
    config_metrics: Mapping[str, tuple[str, str]] = field(default_factory=lambda: MappingProxyType(dict(CONFIG_METRICS)))

    def result_sets(self) -> list[str]:
        return list(self.metric_maps)


def _freeze(maps: dict[str, dict[str, ColumnMapping]]) -> Mapping[str, Mapping[str, ColumnMapping]]:
    return MappingProxyType({name: MappingProxyType(dict(cols)) for name, cols in maps.items()})


def default_registry() -> SchemaRegistry:
    return SchemaRegistry(metric_maps=_freeze(METRIC_MAPS))


def _parse_mapping(result_set: str, column: str, raw: Any) -> ColumnMapping:
    if not isinstance(raw, dict):
        raise RegistryError(f"{result_set}.{column}: mapping must be a dict, got {type(raw).__name__}")
    usage_raw = str(raw.get("usage", "")).upper()
    try:
        usage = ColumnUsage(usage_raw)
    except ValueError:
        raise RegistryError(f"{result_set}.{column}: wrong column usage given: {raw.get('usage')!r}") from None
    metric = str(raw.get("metric") or "")
    if usage in (COUNTER, GAUGE) and not metric:
        raise RegistryError(f"{result_set}.{column}: {usage.value} columns need a metric name")
    try:
        factor = float(raw.get("factor", 1.0))
    except (TypeError, ValueError):
        raise RegistryError(f"{result_set}.{column}: factor must be a number") from None
    min_version = None
    if raw.get("min_version"):
        try:
            min_version = Version(str(raw["min_version"]))
        except InvalidVersion as e:
            raise RegistryError(f"{result_set}.{column}: {e}") from e
    return ColumnMapping(usage, metric, factor, str(raw.get("description") or ""), min_version)


def load_registry_file(path: str | Path) -> SchemaRegistry:
    """
    Build a registry from a YAML file shaped like:

        pools:
          database: {usage: LABEL}
          cl_active: {usage: GAUGE, metric: client_active_connections, description: ...}

    The file replaces the generic mappings; list and config descriptors keep their defaults.
    """
    with open(Path(path), encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict) or not data:
        raise RegistryError(f"{path}: expected a mapping of result-set names")
    maps: dict[str, dict[str, ColumnMapping]] = {}
    for result_set, columns in data.items():
        if not isinstance(columns, dict):
            raise RegistryError(f"{path}: {result_set} must map column names to mappings")
        maps[str(result_set)] = {
            str(column): _parse_mapping(str(result_set), str(column), raw)
            for column, raw in columns.items()
        }
    return SchemaRegistry(metric_maps=_freeze(maps))
