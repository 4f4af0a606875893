"""
HTTP API for the PgBouncer exporter: metrics, multi-target probe and health endpoints.
"""
from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Any, Callable

from fastapi import FastAPI, Query
from fastapi.responses import HTMLResponse, JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest
from prometheus_client.gc_collector import GCCollector
from prometheus_client.platform_collector import PlatformCollector
from prometheus_client.process_collector import ProcessCollector

from config import ExporterConfig
from credentials import Credentials
from errors import ConnectError
from exporter import Exporter
from utils import get_logger, redact_dsn

logger = get_logger(__name__)

ProbeFactory = Callable[[str], Any]

LANDING_PAGE = """<html>
<head><title>PgBouncer Exporter</title></head>
<body>
<h1>PgBouncer Exporter</h1>
<p>Prometheus Exporter for PgBouncer servers</p>
<ul>
<li><a href="{metrics_path}">Metrics</a></li>
<li><a href="{probe_path}?target=postgres://user@host:6432/pgbouncer">Probe</a></li>
</ul>
</body>
</html>
"""


def build_registry(collector: Any) -> CollectorRegistry:
    """A fresh registry holding the exporter plus this process's own runtime collectors."""
    registry = CollectorRegistry()
    ProcessCollector(registry=registry)
    PlatformCollector(registry=registry)
    GCCollector(registry=registry)
    if collector is not None:
        registry.register(collector)
    return registry


def default_probe_factory(config: ExporterConfig) -> ProbeFactory:
    def factory(dsn: str) -> Exporter:
        return Exporter(
            dsn,
            namespace=config.namespace,
            must_connect_on_startup=True,
            filter_empty_pools=config.filter_empty_pools,
            min_version=config.min_version,
            query_timeout_sec=config.query_timeout_sec,
            conn_max_idle_sec=0,
            conn_max_lifetime_sec=0,
        )
    return factory


def create_app(
    config: ExporterConfig,
    registry: CollectorRegistry,
    collector: Any = None,
    probe_factory: ProbeFactory | None = None,
) -> FastAPI:
    probe_factory = probe_factory or default_probe_factory(config)

    @asynccontextmanager
    async def lifespan(app):
        yield
        if collector is not None:
            collector.close()

    app = FastAPI(
        title="PgBouncer Exporter",
        description="Prometheus exporter for PgBouncer",
        version="1.0.0",
        lifespan=lifespan,
    )

    @app.get("/", response_class=HTMLResponse)
    def landing() -> str:
        return LANDING_PAGE.format(metrics_path=config.metrics_path, probe_path=config.probe_path)

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok", "timestamp": time.time()}

    @app.get(config.metrics_path)
    def metrics() -> Response:
        return Response(content=generate_latest(registry), media_type=CONTENT_TYPE_LATEST)

    @app.get(config.probe_path)
    def probe(target: str = Query(default=""), credential: str = Query(default="")) -> Response:
        if not target:
            return JSONResponse({"error": "target parameter is missing"}, status_code=400)
        dsn = target
        if credential:
            try:
                cred: Credentials = config.get_credentials(credential)
            except KeyError as e:
                return JSONResponse({"error": str(e.args[0])}, status_code=400)
            dsn = cred.update_dsn(dsn)
        logger.debug("Probing %s", redact_dsn(dsn))
        try:
            exporter = probe_factory(dsn)
        except (ConnectError, ValueError) as e:
            logger.error("probe of %s failed: %s", redact_dsn(target), e)
            return JSONResponse({"error": str(e)}, status_code=500)
        try:
            body = generate_latest(exporter)
        finally:
            exporter.close()
        return Response(content=body, media_type=CONTENT_TYPE_LATEST)

    return app
