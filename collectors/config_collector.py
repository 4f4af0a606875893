"""
SHOW CONFIG collector: exposes a fixed allow-list of numeric settings.
"""
from __future__ import annotations

from typing import Mapping

from coercion import label_text, to_float
from collectors.base import BaseCollector, CollectorResult, Queryable, Sink
from descriptors import metric_name
from errors import RowError, ShapeError
from models import MetricDesc, MetricKind, Sample

# column count -> (key index, value index); 4 columns on pgbouncer versions reporting defaults
CONFIG_SHAPES: dict[int, tuple[int, int]] = {
    3: (0, 1),  # key, value, changeable
    4: (0, 1),  # key, value, default, changeable
}


class ConfigCollector(BaseCollector):
    """
    Numeric settings in `config_metrics` become unlabelled gauges. Settings in
    `enum_metrics` (e.g. auth_type) are emitted as `<metric>{value="<setting>"} 1`;
    none are enabled by default.
    """

    name = "config"

    def __init__(
        self,
        namespace: str,
        config_metrics: Mapping[str, tuple[str, str]],
        enum_metrics: Mapping[str, tuple[str, str]] | None = None,
    ) -> None:
        super().__init__(namespace)
        self.descs = {
            key: MetricDesc(metric_name(namespace, "config", suffix), doc, MetricKind.GAUGE)
            for key, (suffix, doc) in config_metrics.items()
        }
        self.enum_descs = {
            key: MetricDesc(metric_name(namespace, "config", suffix), doc, MetricKind.GAUGE, ("value",))
            for key, (suffix, doc) in (enum_metrics or {}).items()
        }

    def collect(self, sink: Sink, conn: Queryable) -> CollectorResult:
        result = conn.query("SHOW CONFIG;")
        shape = CONFIG_SHAPES.get(len(result.columns))
        if shape is None:
            raise ShapeError(f"invalid number of SHOW CONFIG columns: {len(result.columns)}")
        key_idx, value_idx = shape

        nonfatal: list[Exception] = []
        for row in result:
            key = str(row[key_idx])
            raw = row[value_idx]
            if key in self.enum_descs:
                text, ok = label_text(raw)
                if not ok:
                    nonfatal.append(RowError(f"SHOW CONFIG {key} has an invalid value: {raw!r}"))
                    continue
                sink(Sample(self.enum_descs[key], 1.0, (text,)))
                continue
            desc = self.descs.get(key)
            if desc is None:
                continue
            value, ok = to_float(raw)
            if not ok:
                nonfatal.append(RowError(f"error parsing SHOW CONFIG column: {key}, value: {raw!r}"))
                continue
            sink(Sample(desc, value))
        if result.iteration_error is not None:
            nonfatal.append(RowError(f"failed to consume all SHOW CONFIG rows: {result.iteration_error}"))
        return CollectorResult(success=True, nonfatal=nonfatal)
