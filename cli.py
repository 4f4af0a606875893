"""
Command-line interface for the PgBouncer exporter: serve, collect (table/JSON), validate-config.
"""
from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Any

from config import ConfigError, ExporterConfig, load_config
from credentials import CredentialsError
from errors import ExporterError, RegistryError
from utils import get_logger, redact_dsn, setup_logging

logger = get_logger(__name__)


def _load(args: argparse.Namespace) -> ExporterConfig:
    environ: dict[str, str] | None = None
    if getattr(args, "connection_string", None):
        environ = dict(os.environ)
        environ["PGBOUNCER_EXPORTER_CONNECTION_STRING"] = args.connection_string
    config = load_config(args.config_file, environ=environ)
    if getattr(args, "log_level", None):
        config.log_level = args.log_level
    setup_logging(config.log_level, config.log_file or None)
    return config


def build_exporters(config: ExporterConfig) -> list[Any]:
    from exporter import Exporter
    from registry import default_registry, load_registry_file

    registry = load_registry_file(config.metrics_file) if config.metrics_file else default_registry()
    exporters = []
    for target in config.targets():
        logger.info("Adding pgbouncer %s", redact_dsn(target.dsn))
        exporters.append(Exporter(
            target.dsn,
            namespace=config.namespace,
            registry=registry,
            must_connect_on_startup=config.must_connect_on_startup,
            filter_empty_pools=config.filter_empty_pools,
            min_version=config.min_version,
            extra_labels=config.merged_extra_labels(target.extra_labels),
            pid_file=target.pid_file or None,
            query_timeout_sec=config.query_timeout_sec,
            conn_max_idle_sec=config.conn_max_idle_sec,
            conn_max_lifetime_sec=config.conn_max_lifetime_sec,
        ))
    return exporters


def build_collector(config: ExporterConfig) -> Any:
    """One collector for the whole process: a single exporter, a cached one, or a multi-instance group."""
    from exporter import CachedExporter, MultiExporter

    exporters = build_exporters(config)
    if len(exporters) == 1:
        if config.cache_interval_sec > 0:
            return CachedExporter(exporters[0], config.cache_interval_sec)
        return exporters[0]
    if config.cache_interval_sec > 0:
        logger.warning("cache.interval_sec is ignored with multiple pgbouncer instances")
    return MultiExporter(exporters)


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from api import build_registry, create_app

    try:
        config = _load(args)
        collector = build_collector(config)
    except (ConfigError, CredentialsError, RegistryError, ExporterError, OSError) as e:
        logger.error("%s", e)
        return 1
    registry = build_registry(collector)
    app = create_app(config, registry, collector=collector)
    logger.info("Listening on %s:%d", config.listen_host, config.listen_port)
    uvicorn.run(
        app,
        host=config.listen_host,
        port=config.listen_port,
        ssl_certfile=config.tls_cert_file or None,
        ssl_keyfile=config.tls_key_file or None,
        log_level=config.log_level.lower(),
    )
    return 0


def _print_table(samples: list[Any], extra_labels: dict[str, str]) -> None:
    from rich.console import Console
    from rich.table import Table

    table = Table(title="PgBouncer metrics")
    table.add_column("Metric", style="cyan")
    table.add_column("Labels", style="magenta")
    table.add_column("Value", style="green", justify="right")
    for s in samples:
        labels = {**s.labels(), **extra_labels}
        table.add_row(s.desc.name, ",".join(f"{k}={v}" for k, v in labels.items()), f"{s.value:g}")
    Console().print(table)


def cmd_collect(args: argparse.Namespace) -> int:
    try:
        config = _load(args)
        exporters = build_exporters(config)
    except (ConfigError, CredentialsError, RegistryError, ExporterError, OSError) as e:
        print(e, file=sys.stderr)
        return 1
    status = 0
    out = []
    try:
        for exporter in exporters:
            samples = exporter.samples()
            up = samples[-1].value if samples else 0.0
            if up != 1.0:
                status = 1
            if args.json:
                out.append({
                    "extra_labels": exporter.extra_labels,
                    "up": up,
                    "samples": [s.to_dict() for s in samples],
                })
            else:
                _print_table(samples, exporter.extra_labels)
    finally:
        for exporter in exporters:
            exporter.close()
    if args.json:
        print(json.dumps(out, indent=2 if args.pretty else None))
    return status


def cmd_validate_config(args: argparse.Namespace) -> int:
    try:
        config = _load(args)
    except (ConfigError, CredentialsError, OSError) as e:
        print(f"invalid config: {e}", file=sys.stderr)
        return 1
    print("Config OK")
    for target in config.targets():
        print(f"  pgbouncer: {redact_dsn(target.dsn)} {config.merged_extra_labels(target.extra_labels)}")
    print(f"  credentials: {len(config.credentials)}")
    print(f"  listen: {config.listen_host}:{config.listen_port}{config.metrics_path}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="pgbouncer_exporter", description="Prometheus exporter for PgBouncer")
    parser.add_argument("--config-file", default=None, help="YAML config file")
    parser.add_argument("--connection-string", default=None, help="PgBouncer admin DSN")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR")
    sub = parser.add_subparsers(dest="command", required=True)

    p_serve = sub.add_parser("serve", help="Serve metrics over HTTP")
    p_serve.set_defaults(run=cmd_serve)

    p_collect = sub.add_parser("collect", help="Scrape once and print (rich table) or --json")
    p_collect.add_argument("--json", action="store_true", help="Output JSON")
    p_collect.add_argument("--pretty", action="store_true", help="Pretty-print JSON")
    p_collect.set_defaults(run=cmd_collect)

    p_validate = sub.add_parser("validate-config", help="Validate and show config")
    p_validate.set_defaults(run=cmd_validate_config)

    args = parser.parse_args(argv)
    return args.run(args)


if __name__ == "__main__":
    sys.exit(main())
