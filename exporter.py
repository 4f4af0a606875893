"""
Scrape orchestration and Prometheus collector glue.

Exporter runs one full scrape (version, lists, config, servers, then every
generic result-set) against a single admin connection and reports liveness
as `<namespace>_up`. The scrape itself only produces Sample objects; turning
them into prometheus_client metric families happens in build_families().
"""
from __future__ import annotations

import threading
import time
from typing import Any, Iterable, Iterator, Mapping

from packaging.version import Version
from prometheus_client.core import (
    CounterMetricFamily,
    GaugeMetricFamily,
    Metric,
    UnknownMetricFamily,
)

from collectors.base import BaseCollector, Sink
from collectors.config_collector import ConfigCollector
from collectors.lists_collector import ListsCollector
from collectors.process_collector import ProcessCollector
from collectors.resultset_collector import query_namespaces
from collectors.servers_collector import ServersCollector
from collectors.version_collector import VersionCollector
from db import AdminConnection
from descriptors import compile_namespaces, metric_name
from errors import ConnectError, QueryError
from models import CompiledNamespace, MetricDesc, MetricKind, Sample
from registry import SchemaRegistry, default_registry
from utils import get_logger, redact_dsn, timed_stage

logger = get_logger(__name__)

_FAMILIES = {
    MetricKind.GAUGE: GaugeMetricFamily,
    MetricKind.COUNTER: CounterMetricFamily,
    MetricKind.UNTYPED: UnknownMetricFamily,
}


def build_families(groups: Iterable[tuple[Iterable[Sample], Mapping[str, str]]]) -> list[Metric]:
    """
    Group samples into metric families, keeping first-emission order.

    Each group carries its own constant labels, appended after the sample's
    labels in sorted name order; all groups must use the same constant label names.
    """
    families: dict[str, Metric] = {}
    for samples, extra_labels in groups:
        extra_names = sorted(extra_labels)
        extra_values = [extra_labels[k] for k in extra_names]
        for sample in samples:
            desc = sample.desc
            family = families.get(desc.name)
            if family is None:
                family = _FAMILIES[desc.kind](
                    desc.name,
                    desc.documentation,
                    labels=list(desc.label_names) + extra_names,
                )
                families[desc.name] = family
            family.add_metric(list(sample.label_values) + extra_values, sample.value)
    return list(families.values())


def _without_samples(families: list[Metric]) -> list[Metric]:
    for family in families:
        family.samples = []
    return families


class Exporter:
    """
    Scrapes one PgBouncer instance.

    With must_connect_on_startup the admin console is pinged during
    construction and ConnectError is raised when it does not answer; otherwise
    the first scrape opens the connection.
    """

    def __init__(
        self,
        connection_string: str | None = None,
        namespace: str = "pgbouncer",
        registry: SchemaRegistry | None = None,
        must_connect_on_startup: bool = True,
        filter_empty_pools: bool = False,
        min_version: Version | str | None = None,
        extra_labels: Mapping[str, str] | None = None,
        pid_file: str | None = None,
        conn: Any = None,
        query_timeout_sec: float = 10.0,
        conn_max_idle_sec: float = 60.0,
        conn_max_lifetime_sec: float = 300.0,
    ) -> None:
        if conn is None:
            if not connection_string:
                raise ValueError("either connection_string or conn is required")
            conn = AdminConnection(
                connection_string,
                query_timeout_sec=query_timeout_sec,
                max_idle_sec=conn_max_idle_sec,
                max_lifetime_sec=conn_max_lifetime_sec,
            )
        self.conn = conn
        self.namespace = namespace
        self.registry = registry or default_registry()
        self.filter_empty_pools = filter_empty_pools
        self.min_version = Version(str(min_version)) if min_version else None
        self.extra_labels = dict(extra_labels or {})

        self.version_collector = VersionCollector(namespace)
        self.stage_collectors: list[BaseCollector] = [
            ListsCollector(namespace, self.registry.list_metrics),
            ConfigCollector(namespace, self.registry.config_metrics),
            ServersCollector(namespace),
        ]
        self.process_collector = ProcessCollector(namespace, pid_file) if pid_file else None
        self.up_desc = MetricDesc(metric_name(namespace, "up"), "The pgbouncer scrape succeeded")

        self.version: Version | None = None
        self._compiled: dict[str, CompiledNamespace] | None = None
        self._compiled_for: Version | None = None

        if must_connect_on_startup:
            target = redact_dsn(connection_string) if connection_string else repr(conn)
            try:
                self.conn.ping()
            except QueryError as e:
                raise ConnectError(f"error setting up DB connection to {target}: {e}") from e

    def _namespaces(self, version: Version | None) -> dict[str, CompiledNamespace]:
        gate = version or self.min_version
        if self._compiled is None or gate != self._compiled_for:
            logger.debug("Compiling descriptors for pgbouncer %s", gate or "(any version)")
            self._compiled = compile_namespaces(self.registry, self.namespace, gate)
            self._compiled_for = gate
        return self._compiled

    def scrape(self, sink: Sink) -> float:
        """Run one scrape, pushing every sample to sink. Returns the liveness value."""
        logger.info("Starting scrape")
        up = 1.0
        with self.conn.session():
            with timed_stage(logger, "version"):
                result = self.version_collector.collect_safe(sink, self.conn)
            if result.success:
                self.version = result.data.get("version") or self.version
            else:
                logger.error("error getting version: %s", result.error)
                up = 0.0

            for collector in self.stage_collectors:
                with timed_stage(logger, collector.name):
                    result = collector.collect_safe(sink, self.conn)
                if not result.success:
                    logger.error("error getting SHOW %s: %s", collector.name.upper(), result.error)
                    up = 0.0

            compiled = self._namespaces(self.version)
            errors = query_namespaces(sink, self.conn, compiled, self.filter_empty_pools)

        if errors:
            logger.error("error querying namespace mappings: %s", errors)
            up = 0.0
        if len(errors) == len(compiled):
            up = 0.0

        if self.process_collector is not None:
            result = self.process_collector.collect_safe(sink, None)
            if not result.success:
                logger.warning("error reading pgbouncer process stats: %s", result.error)

        sink(Sample(self.up_desc, up))
        return up

    def samples(self) -> list[Sample]:
        collected: list[Sample] = []
        self.scrape(collected.append)
        return collected

    def collect(self) -> Iterator[Metric]:
        yield from build_families([(self.samples(), self.extra_labels)])

    def describe(self) -> list[Metric]:
        """
        The metric set depends on what the console returns, so describing
        means running a full scrape and keeping only the family metadata.
        """
        return _without_samples(list(self.collect()))

    def close(self) -> None:
        close = getattr(self.conn, "close", None)
        if close is not None:
            close()


class MultiExporter:
    """Serves several exporters as one collector so shared metric families are registered once."""

    def __init__(self, exporters: list[Exporter]) -> None:
        self.exporters = exporters

    def collect(self) -> Iterator[Metric]:
        yield from build_families((e.samples(), e.extra_labels) for e in self.exporters)

    def describe(self) -> list[Metric]:
        return _without_samples(list(self.collect()))

    def close(self) -> None:
        for e in self.exporters:
            e.close()


class CachedExporter:
    """
    Serves the last completed scrape and refreshes it in a background thread
    every interval seconds. Adds `<namespace>_cache_age_seconds`.
    """

    def __init__(self, exporter: Exporter, interval_sec: float) -> None:
        self.exporter = exporter
        self.interval_sec = interval_sec
        self._samples: list[Sample] = []
        self._last_updated = 0.0
        self._updating = False
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self.age_desc = MetricDesc(
            metric_name(exporter.namespace, "cache_age_seconds"),
            "Number of seconds since the metrics cache was last updated",
        )
        self.update()
        self._thread = threading.Thread(target=self._loop, name="pgbouncer-cache", daemon=True)
        self._thread.start()

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_sec):
            self.update()

    def update(self) -> None:
        with self._lock:
            if self._updating:
                return
            self._updating = True
        try:
            samples = self.exporter.samples()
        except Exception as e:
            logger.error("error refreshing metrics cache: %s", e)
            with self._lock:
                self._updating = False
            return
        with self._lock:
            self._samples = samples
            self._last_updated = time.time()
            self._updating = False

    def cache_age(self) -> float:
        with self._lock:
            return time.time() - self._last_updated

    def collect(self) -> Iterator[Metric]:
        with self._lock:
            samples = list(self._samples)
            age = time.time() - self._last_updated
        # up stays last
        samples.insert(max(len(samples) - 1, 0), Sample(self.age_desc, age))
        yield from build_families([(samples, self.exporter.extra_labels)])

    def describe(self) -> list[Metric]:
        return _without_samples(list(self.collect()))

    def close(self) -> None:
        self._stop.set()
        self.exporter.close()
