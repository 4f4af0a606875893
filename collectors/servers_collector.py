"""
SHOW SERVERS collector: counts server connections per
(user, database, state, address, close_needed) instead of exposing each row.
"""
from __future__ import annotations

import math
from collections import Counter
from typing import Any, NamedTuple

from coercion import label_text, to_float
from collectors.base import BaseCollector, CollectorResult, Queryable, Sink
from descriptors import metric_name
from errors import RowError, ShapeError
from models import MetricDesc, MetricKind, Sample

SERVER_LABELS = ("user", "database", "state", "addr", "close_needed")

_BASE_COLUMNS = [
    "type", "user", "database", "state", "addr", "port", "local_addr", "local_port",
    "connect_time", "request_time", "wait", "wait_us", "close_needed", "ptr", "link",
    "remote_pid", "tls", "application_name", "prepared_statements",
]
_REPLICATION_COLUMNS = _BASE_COLUMNS[:3] + ["replication"] + _BASE_COLUMNS[3:]

# column count -> positional layout
SERVER_SHAPES: dict[int, dict[str, int]] = {
    19: {name: i for i, name in enumerate(_BASE_COLUMNS)},
    20: {name: i for i, name in enumerate(_REPLICATION_COLUMNS)},
}


class ServerKey(NamedTuple):
    user: str
    database: str
    state: str
    addr: str
    port: int
    close_needed: int

    def label_values(self) -> tuple[str, ...]:
        return (
            self.user,
            self.database,
            self.state,
            f"{self.addr}_{self.port}",
            "true" if self.close_needed == 1 else "false",
        )


def _as_int(value: Any) -> int:
    number, ok = to_float(value)
    if not ok or math.isnan(number):
        return 0
    return int(number)


class ServersCollector(BaseCollector):
    name = "servers"

    def __init__(self, namespace: str) -> None:
        super().__init__(namespace)
        self.desc = MetricDesc(
            metric_name(namespace, "server_connections"),
            "Server connections with state information",
            MetricKind.GAUGE,
            SERVER_LABELS,
        )

    def collect(self, sink: Sink, conn: Queryable) -> CollectorResult:
        result = conn.query("SHOW SERVERS;")
        layout = SERVER_SHAPES.get(len(result.columns))
        if layout is None:
            raise ShapeError(f"invalid number of SHOW SERVERS columns: {len(result.columns)}")

        nonfatal: list[Exception] = []
        counts: Counter[ServerKey] = Counter()
        for row in result:
            texts = []
            for column in ("user", "database", "state", "addr"):
                text, ok = label_text(row[layout[column]])
                if not ok:
                    nonfatal.append(RowError(f"SHOW SERVERS column {column} has an invalid value: {row[layout[column]]!r}"))
                texts.append(text)
            key = ServerKey(
                *texts,
                port=_as_int(row[layout["port"]]),
                close_needed=_as_int(row[layout["close_needed"]]),
            )
            counts[key] += 1

        for key, count in counts.items():
            sink(Sample(self.desc, float(count), key.label_values()))
        if result.iteration_error is not None:
            nonfatal.append(RowError(f"failed to consume all SHOW SERVERS rows: {result.iteration_error}"))
        return CollectorResult(success=True, nonfatal=nonfatal, data={"connections": sum(counts.values())})
