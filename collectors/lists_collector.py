"""
SHOW LISTS collector: one (name, count) row per internal object list.
"""
from __future__ import annotations

from typing import Mapping

from coercion import to_float
from collectors.base import BaseCollector, CollectorResult, Queryable, Sink
from descriptors import metric_name
from errors import ShapeError, RowError
from models import MetricDesc, MetricKind, Sample
from utils import get_logger

logger = get_logger(__name__)


class ListsCollector(BaseCollector):
    name = "lists"

    def __init__(self, namespace: str, list_metrics: Mapping[str, tuple[str, str]]) -> None:
        super().__init__(namespace)
        self.descs = {
            key: MetricDesc(metric_name(namespace, suffix), doc, MetricKind.GAUGE)
            for key, (suffix, doc) in list_metrics.items()
        }

    def collect(self, sink: Sink, conn: Queryable) -> CollectorResult:
        result = conn.query("SHOW LISTS;")
        if len(result.columns) != 2:
            raise ShapeError(f"SHOW LISTS returned {len(result.columns)} columns, expected 2")

        nonfatal: list[Exception] = []
        for list_name, items in result:
            desc = self.descs.get(str(list_name))
            if desc is None:
                logger.debug("SHOW LISTS unknown list %s", list_name)
                continue
            value, ok = to_float(items)
            if not ok:
                nonfatal.append(RowError(f"error parsing SHOW LISTS column: {list_name}, value: {items!r}"))
                continue
            sink(Sample(desc, value))
        if result.iteration_error is not None:
            nonfatal.append(RowError(f"failed to consume all SHOW LISTS rows: {result.iteration_error}"))
        return CollectorResult(success=True, nonfatal=nonfatal)
