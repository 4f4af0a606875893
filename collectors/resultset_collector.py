"""
Generic tabular collector: runs `SHOW <result-set>;` and maps every row onto
the compiled descriptors of that result-set.
"""
from __future__ import annotations

import math
from typing import Any

from coercion import label_text, to_float
from collectors.base import Queryable, Sink
from errors import QueryError, RowError
from models import CompiledColumn, CompiledNamespace, Sample
from registry import EMPTY_POOL_COLUMNS
from utils import get_logger, timed_stage

logger = get_logger(__name__)

FILTERED_RESULT_SET = "pools"


def _is_empty_pool(row: list[Any], column_idx: dict[str, int]) -> bool:
    total = 0.0
    for column in EMPTY_POOL_COLUMNS:
        idx = column_idx.get(column)
        if idx is None:
            continue
        value, ok = to_float(row[idx])
        if ok and not math.isnan(value):
            total += value
    return total == 0


def query_namespace(
    sink: Sink,
    conn: Queryable,
    result_set: str,
    compiled: CompiledNamespace,
    filter_empty_pools: bool = False,
) -> tuple[list[Exception], Exception | None]:
    """
    Scrape one result-set. Returns (non-fatal errors, fatal error).

    A failing query, an unreadable column list or a malformed row is fatal for
    this result-set only. Unconvertible values and invalid label text are
    non-fatal: the offending column is skipped and the rest of the row is
    emitted.
    """
    try:
        result = conn.query(f"SHOW {result_set.upper()};")
    except QueryError as e:
        return [], QueryError(f"error running query on database: {result_set}, error: {e}")

    columns = result.columns
    if not columns:
        return [], QueryError(f"error retrieving column list for: {result_set}")
    column_idx = {name: i for i, name in enumerate(columns)}

    # Resolve column roles once for the whole result-set.
    label_idx: list[int | None] = [column_idx.get(label) for label in compiled.labels]
    value_columns: list[tuple[int, str, CompiledColumn]] = [
        (i, name, compiled.columns[name])
        for i, name in enumerate(columns)
        if name in compiled.columns and not compiled.columns[name].discard
    ]
    apply_filter = filter_empty_pools and result_set == FILTERED_RESULT_SET

    nonfatal: list[Exception] = []
    try:
        for row in result:
            if apply_filter and _is_empty_pool(row, column_idx):
                continue

            label_values: list[str] = []
            for label, idx in zip(compiled.labels, label_idx):
                if idx is None:
                    label_values.append("")
                    continue
                text, ok = label_text(row[idx])
                if not ok:
                    nonfatal.append(RowError(
                        f"column {label} in {result_set} has an invalid value for a label: {row[idx]!r}"
                    ))
                label_values.append(text)
            labels = tuple(label_values)

            for idx, name, column in value_columns:
                value, ok = column.conversion(row[idx])
                if not ok:
                    nonfatal.append(RowError(
                        f"unexpected error parsing namespace: {result_set}, column: {name}, value: {row[idx]!r}"
                    ))
                    continue
                sink(Sample(column.desc, value, labels))
    except QueryError as e:
        return nonfatal, QueryError(f"error retrieving rows: {result_set}, error: {e}")

    if result.iteration_error is not None:
        logger.error("Failed scanning all rows of %s: %s", result_set, result.iteration_error)
        nonfatal.append(RowError(f"failed to consume all rows due to: {result.iteration_error}"))
    return nonfatal, None


def query_namespaces(
    sink: Sink,
    conn: Queryable,
    compiled: dict[str, CompiledNamespace],
    filter_empty_pools: bool = False,
) -> dict[str, Exception]:
    """Scrape every result-set in order. Returns result-set name -> fatal error for the ones that failed."""
    errors: dict[str, Exception] = {}
    for result_set, mapping in compiled.items():
        logger.debug("Querying namespace %s", result_set)
        with timed_stage(logger, result_set):
            nonfatal, fatal = query_namespace(sink, conn, result_set, mapping, filter_empty_pools)
        if fatal is not None:
            errors[result_set] = fatal
            logger.info("namespace %s disappeared: %s", result_set, fatal)
        for err in nonfatal:
            logger.info("error parsing %s: %s", result_set, err)
    return errors
