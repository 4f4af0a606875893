"""
Descriptor compiler: expand a SchemaRegistry into the concrete metric
descriptors emitted for each result-set.
"""
from __future__ import annotations

from functools import partial

from packaging.version import Version

from coercion import to_float
from models import (
    ColumnUsage,
    CompiledColumn,
    CompiledNamespace,
    MetricDesc,
    MetricKind,
)
from registry import SchemaRegistry
from utils import get_logger

logger = get_logger(__name__)

_KINDS = {
    ColumnUsage.COUNTER: MetricKind.COUNTER,
    ColumnUsage.GAUGE: MetricKind.GAUGE,
}


def metric_name(*parts: str) -> str:
    """Join non-empty name parts with underscores."""
    return "_".join(p for p in parts if p)


def compile_namespaces(
    registry: SchemaRegistry,
    namespace: str,
    version: Version | None = None,
) -> dict[str, CompiledNamespace]:
    """
    Build one CompiledNamespace per result-set.

    Labels are collected first so every value column of a result-set shares the
    same label list. With a version, columns whose min_version is newer are left
    out entirely; without one every column is kept.
    """
    compiled: dict[str, CompiledNamespace] = {}
    for result_set, mappings in registry.metric_maps.items():
        labels: list[str] = []
        for column, mapping in mappings.items():
            if mapping.usage is ColumnUsage.LABEL and mapping.supported_by(version):
                logger.debug("Adding label %s to %s", column, result_set)
                labels.append(column)
        label_names = tuple(labels)

        columns: dict[str, CompiledColumn] = {}
        for column, mapping in mappings.items():
            if not mapping.supported_by(version):
                logger.debug("Skipping %s.%s, needs pgbouncer %s", result_set, column, mapping.min_version)
                continue
            if mapping.usage is ColumnUsage.DISCARD:
                columns[column] = CompiledColumn(desc=None, discard=True)
            elif mapping.usage in _KINDS:
                desc = MetricDesc(
                    name=metric_name(namespace, result_set, mapping.metric),
                    documentation=mapping.description,
                    kind=_KINDS[mapping.usage],
                    label_names=label_names,
                )
                columns[column] = CompiledColumn(
                    desc=desc,
                    conversion=partial(to_float, factor=mapping.factor),
                )
        compiled[result_set] = CompiledNamespace(columns=columns, labels=label_names)
    return compiled
