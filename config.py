"""
Central configuration for the PgBouncer exporter.
Supports defaults, an optional YAML config file, and environment overrides.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from credentials import Credentials, CredentialsError
from utils import env_bool, env_float, env_int, env_str, ordinal

# -----------------------------------------------------------------------------
# Defaults
# -----------------------------------------------------------------------------

DEFAULTS: dict[str, Any] = {
    "namespace": "pgbouncer",
    "connection_string": "postgres://postgres:@localhost:6543/pgbouncer?sslmode=disable",
    "must_connect_on_startup": True,
    "filter_empty_pools": False,
    "min_version": None,
    "pid_file": "",
    "metrics_file": "",
    "extra_labels": {},
    "pgbouncers": [],
    "credentials": [],
    "connection": {
        "query_timeout_sec": 10.0,
        "max_idle_sec": 60.0,
        "max_lifetime_sec": 300.0,
    },
    "cache": {
        "interval_sec": 0.0,
    },
    "web": {
        "listen_host": "0.0.0.0",
        "listen_port": 9127,
        "metrics_path": "/metrics",
        "probe_path": "/probe",
        "tls_cert_file": "",
        "tls_key_file": "",
    },
    "logging": {
        "level": "INFO",
        "file": "",
    },
}

ENV_PREFIX = "PGBOUNCER_EXPORTER_"


class ConfigError(Exception):
    """The configuration is unusable."""


class NoConfigFileGivenError(ConfigError):
    def __init__(self) -> None:
        super().__init__("no config file given")


class DuplicateCredentialsKeyError(ConfigError):
    def __init__(self, key: str, index: int, first: int) -> None:
        self.key = key
        self.index = index
        self.first = first
        super().__init__(
            f"{ordinal(index)} credential has duplicate key '{key}' (already defined by {ordinal(first)} credential)"
        )


# -----------------------------------------------------------------------------
# Raw (dict) layering
# -----------------------------------------------------------------------------

def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for k, v in override.items():
        if k in out and isinstance(out[k], dict) and isinstance(v, dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _set_path(d: dict[str, Any], key_path: str, value: Any) -> None:
    keys = key_path.split(".")
    for k in keys[:-1]:
        d = d.setdefault(k, {})
    d[keys[-1]] = value


def get(data: dict[str, Any], key_path: str, default: Any = None) -> Any:
    """Get a value by dot path, e.g. 'web.listen_port'."""
    current: Any = data
    for k in key_path.split("."):
        if isinstance(current, dict) and k in current:
            current = current[k]
        else:
            return default
    return current


def read_config_file(path: str | Path) -> dict[str, Any]:
    """Parse a YAML config file. Missing files and YAML errors propagate."""
    if not str(path).strip():
        raise NoConfigFileGivenError()
    with open(Path(path), encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping")
    return data


# -----------------------------------------------------------------------------
# Environment overrides (take precedence over file)
# -----------------------------------------------------------------------------

_ENV_STR = {
    "CONNECTION_STRING": "connection_string",
    "NAMESPACE": "namespace",
    "PID_FILE": "pid_file",
    "METRICS_FILE": "metrics_file",
    "MIN_VERSION": "min_version",
    "LISTEN_HOST": "web.listen_host",
    "METRICS_PATH": "web.metrics_path",
    "PROBE_PATH": "web.probe_path",
    "LOG_LEVEL": "logging.level",
}
_ENV_BOOL = {
    "MUST_CONNECT_ON_STARTUP": "must_connect_on_startup",
    "FILTER_EMPTY_POOLS": "filter_empty_pools",
}
_ENV_INT = {
    "LISTEN_PORT": "web.listen_port",
}
_ENV_FLOAT = {
    "QUERY_TIMEOUT": "connection.query_timeout_sec",
    "CACHE_INTERVAL": "cache.interval_sec",
}


def env_overrides(environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Overrides from PGBOUNCER_EXPORTER_* variables that are actually set."""
    environ = os.environ if environ is None else environ
    out: dict[str, Any] = {}
    for suffix, path in _ENV_STR.items():
        if ENV_PREFIX + suffix in environ:
            _set_path(out, path, env_str(ENV_PREFIX + suffix, environ=environ))
    for suffix, path in _ENV_BOOL.items():
        if ENV_PREFIX + suffix in environ:
            _set_path(out, path, env_bool(ENV_PREFIX + suffix, bool(get(DEFAULTS, path)), environ))
    for suffix, path in _ENV_INT.items():
        if ENV_PREFIX + suffix in environ:
            _set_path(out, path, env_int(ENV_PREFIX + suffix, int(get(DEFAULTS, path)), environ))
    for suffix, path in _ENV_FLOAT.items():
        if ENV_PREFIX + suffix in environ:
            _set_path(out, path, env_float(ENV_PREFIX + suffix, float(get(DEFAULTS, path)), environ))
    return out


# -----------------------------------------------------------------------------
# Typed config
# -----------------------------------------------------------------------------

@dataclass
class PgBouncerConfig:
    dsn: str
    pid_file: str = ""
    extra_labels: dict[str, str] = field(default_factory=dict)


@dataclass
class ExporterConfig:
    namespace: str = "pgbouncer"
    connection_string: str = DEFAULTS["connection_string"]
    must_connect_on_startup: bool = True
    filter_empty_pools: bool = False
    min_version: str | None = None
    pid_file: str = ""
    metrics_file: str = ""
    extra_labels: dict[str, str] = field(default_factory=dict)
    pgbouncers: list[PgBouncerConfig] = field(default_factory=list)
    credentials: list[Credentials] = field(default_factory=list)
    query_timeout_sec: float = 10.0
    conn_max_idle_sec: float = 60.0
    conn_max_lifetime_sec: float = 300.0
    cache_interval_sec: float = 0.0
    listen_host: str = "0.0.0.0"
    listen_port: int = 9127
    metrics_path: str = "/metrics"
    probe_path: str = "/probe"
    tls_cert_file: str = ""
    tls_key_file: str = ""
    log_level: str = "INFO"
    log_file: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExporterConfig:
        merged = _deep_merge(DEFAULTS, data)
        pgbouncers = []
        for entry in merged.get("pgbouncers") or []:
            if not isinstance(entry, dict):
                raise ConfigError("every pgbouncers entry must be a mapping")
            pgbouncers.append(PgBouncerConfig(
                dsn=str(entry.get("dsn") or ""),
                pid_file=str(entry.get("pid_file") or entry.get("pid-file") or ""),
                extra_labels={str(k): str(v) for k, v in (entry.get("extra_labels") or {}).items()},
            ))
        min_version = merged.get("min_version")
        return cls(
            namespace=str(merged["namespace"]),
            connection_string=str(merged["connection_string"]),
            must_connect_on_startup=bool(merged["must_connect_on_startup"]),
            filter_empty_pools=bool(merged["filter_empty_pools"]),
            min_version=str(min_version) if min_version else None,
            pid_file=str(merged.get("pid_file") or ""),
            metrics_file=str(merged.get("metrics_file") or ""),
            extra_labels={str(k): str(v) for k, v in (merged.get("extra_labels") or {}).items()},
            pgbouncers=pgbouncers,
            credentials=[Credentials.from_dict(c or {}) for c in merged.get("credentials") or []],
            query_timeout_sec=float(get(merged, "connection.query_timeout_sec")),
            conn_max_idle_sec=float(get(merged, "connection.max_idle_sec")),
            conn_max_lifetime_sec=float(get(merged, "connection.max_lifetime_sec")),
            cache_interval_sec=float(get(merged, "cache.interval_sec")),
            listen_host=str(get(merged, "web.listen_host")),
            listen_port=int(get(merged, "web.listen_port")),
            metrics_path=str(get(merged, "web.metrics_path")),
            probe_path=str(get(merged, "web.probe_path")),
            tls_cert_file=str(get(merged, "web.tls_cert_file") or ""),
            tls_key_file=str(get(merged, "web.tls_key_file") or ""),
            log_level=str(get(merged, "logging.level")),
            log_file=str(get(merged, "logging.file") or ""),
        )

    def targets(self) -> list[PgBouncerConfig]:
        """Configured instances, or the single connection_string when none are listed."""
        if self.pgbouncers:
            return list(self.pgbouncers)
        return [PgBouncerConfig(dsn=self.connection_string, pid_file=self.pid_file)]

    def merged_extra_labels(self, extra_labels: dict[str, str]) -> dict[str, str]:
        merged = dict(self.extra_labels)
        merged.update(extra_labels)
        return merged

    def get_credentials(self, key: str) -> Credentials:
        for cred in self.credentials:
            if cred.get_key() == key:
                return cred
        raise KeyError(f"credential with key '{key}' not found")

    def validate_labels(self) -> None:
        seen: set[str] = set()
        key_counts: dict[str, int] = {}
        for instance in self.pgbouncers:
            labels = self.merged_extra_labels(instance.extra_labels)
            for k in labels:
                key_counts[k] = key_counts.get(k, 0) + 1
            combo = ",".join(sorted(f"{k}={v}" for k, v in labels.items()))
            if combo in seen:
                raise ConfigError(
                    "every pgbouncer instance must have unique label values, found the following "
                    f"label=value combination multiple times: '{combo}'"
                )
            seen.add(combo)
        for k, amount in key_counts.items():
            if amount != len(self.pgbouncers):
                raise ConfigError(
                    f"every pgbouncer instance must define the same extra labels, the label '{k}' "
                    f"is only found on {amount} of the {len(self.pgbouncers)} instances"
                )

    def validate_credentials(self) -> None:
        first_index: dict[str, int] = {}
        for i, cred in enumerate(self.credentials, start=1):
            try:
                cred.validate()
            except CredentialsError as e:
                e.index = i
                raise
            key = cred.get_key()
            if key in first_index:
                raise DuplicateCredentialsKeyError(key, i, first_index[key])
            first_index[key] = i

    def validate(self) -> None:
        for instance in self.pgbouncers:
            if not instance.dsn.strip():
                raise ConfigError("at least one pgbouncer instance has an empty dsn configured")
        self.validate_labels()
        self.validate_credentials()


def load_config(path: str | Path | None = None, environ: Mapping[str, str] | None = None) -> ExporterConfig:
    """Defaults, then the YAML file when a path is given, then environment overrides."""
    data: dict[str, Any] = {}
    if path is not None:
        data = _deep_merge(data, read_config_file(path))
    data = _deep_merge(data, env_overrides(environ))
    config = ExporterConfig.from_dict(data)
    config.validate()
    return config
