"""
SHOW VERSION collector: exposes the version string and parses it for descriptor gating.
"""
from __future__ import annotations

import re

from packaging.version import Version

from coercion import label_text
from collectors.base import BaseCollector, CollectorResult, Queryable, Sink
from descriptors import metric_name
from errors import ShapeError
from models import MetricDesc, MetricKind, Sample

_VERSION_RE = re.compile(r"(\d+)\.(\d+)(?:\.(\d+))?")


def parse_version(text: str) -> Version | None:
    """Pull "1.23.1" out of strings like "PgBouncer 1.23.1" or "PgBouncer 1.21.0 (dev)"."""
    m = _VERSION_RE.search(text or "")
    if not m:
        return None
    major, minor, patch = m.group(1), m.group(2), m.group(3) or "0"
    return Version(f"{major}.{minor}.{patch}")


class VersionCollector(BaseCollector):
    name = "version"

    def __init__(self, namespace: str) -> None:
        super().__init__(namespace)
        self.desc = MetricDesc(
            metric_name(namespace, "version", "info"),
            "The pgbouncer version info",
            MetricKind.GAUGE,
            ("version",),
        )

    def collect(self, sink: Sink, conn: Queryable) -> CollectorResult:
        result = conn.query("SHOW VERSION;")
        if result.columns != ["version"]:
            raise ShapeError("show version didn't return version column")

        raw = ""
        for (value,) in result:
            raw, _ = label_text(value)
            sink(Sample(self.desc, 1.0, (raw,)))
        return CollectorResult(success=True, data={"raw": raw, "version": parse_version(raw)})
