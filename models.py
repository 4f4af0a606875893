"""
Data models for the PgBouncer exporter: column mappings, compiled metric
descriptors and samples.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from packaging.version import Version


class ColumnUsage(str, Enum):
    DISCARD = "DISCARD"
    LABEL = "LABEL"
    COUNTER = "COUNTER"
    GAUGE = "GAUGE"


class MetricKind(str, Enum):
    COUNTER = "counter"
    GAUGE = "gauge"
    UNTYPED = "untyped"


@dataclass(frozen=True)
class ColumnMapping:
    """How a single admin-console column turns into a metric (or a label)."""
    usage: ColumnUsage
    metric: str = ""
    factor: float = 1.0
    description: str = ""
    min_version: Version | None = None

    def supported_by(self, version: Version | None) -> bool:
        """True when the column exists on the given PgBouncer version. No version means no gating."""
        if version is None or self.min_version is None:
            return True
        return self.min_version <= version

    def to_dict(self) -> dict[str, Any]:
        return {
            "usage": self.usage.value,
            "metric": self.metric,
            "factor": self.factor,
            "description": self.description,
            "min_version": str(self.min_version) if self.min_version else None,
        }


@dataclass(frozen=True)
class MetricDesc:
    """Name, help text, type and label names of one emitted metric family."""
    name: str
    documentation: str
    kind: MetricKind = MetricKind.GAUGE
    label_names: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "documentation": self.documentation,
            "kind": self.kind.value,
            "label_names": list(self.label_names),
        }


@dataclass(frozen=True)
class CompiledColumn:
    """A value column bound to its descriptor and scale-factor-aware conversion."""
    desc: MetricDesc | None
    conversion: Callable[[Any], tuple[float, bool]] | None = None
    discard: bool = False


@dataclass(frozen=True)
class CompiledNamespace:
    """All compiled columns of one result-set plus the label names they share."""
    columns: dict[str, CompiledColumn] = field(default_factory=dict)
    labels: tuple[str, ...] = ()


@dataclass(frozen=True)
class Sample:
    """One observation handed to the sink."""
    desc: MetricDesc
    value: float
    label_values: tuple[str, ...] = ()

    def labels(self) -> dict[str, str]:
        return dict(zip(self.desc.label_names, self.label_values))

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.desc.name,
            "kind": self.desc.kind.value,
            "value": self.value,
            "labels": self.labels(),
        }

