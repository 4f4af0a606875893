"""
Value coercion: turn whatever the driver hands back for a column into a float
(for samples) or a string (for labels).

Values are classified once into a closed set of kinds at the point they are
read from the connection; everything downstream dispatches on the kind.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

INVALID_LABEL = "<invalid>"


class ScalarKind(str, Enum):
    INTEGER = "integer"
    FLOAT = "float"
    TEXT = "text"
    BYTES = "bytes"
    TIMESTAMP = "timestamp"
    NULL = "null"
    OTHER = "other"


@dataclass(frozen=True)
class Scalar:
    kind: ScalarKind
    raw: Any = None


def classify(value: Any) -> Scalar:
    """Wrap a raw driver value in its Scalar kind."""
    if value is None:
        return Scalar(ScalarKind.NULL)
    if isinstance(value, Scalar):
        return value
    # bool is an int subclass; it reads as 0/1
    if isinstance(value, int):
        return Scalar(ScalarKind.INTEGER, int(value))
    if isinstance(value, (float, Decimal)):
        return Scalar(ScalarKind.FLOAT, float(value))
    if isinstance(value, str):
        return Scalar(ScalarKind.TEXT, value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return Scalar(ScalarKind.BYTES, bytes(value))
    if isinstance(value, datetime):
        return Scalar(ScalarKind.TIMESTAMP, value)
    return Scalar(ScalarKind.OTHER, value)


def _parse_float(text: str) -> float | None:
    if "_" in text or text != text.strip():
        return None
    try:
        return float(text)
    except ValueError:
        return None


def to_float(value: Any, factor: float = 1.0) -> tuple[float, bool]:
    """
    Convert a column value to a float scaled by factor.

    NULL gives (nan, True): a legitimately absent value. Unparseable text and
    unknown kinds give (nan, False). Timestamps become Unix epoch seconds and
    are never scaled.
    """
    scalar = classify(value)
    kind = scalar.kind
    if kind is ScalarKind.INTEGER or kind is ScalarKind.FLOAT:
        return float(scalar.raw) * factor, True
    if kind is ScalarKind.TIMESTAMP:
        ts: datetime = scalar.raw
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return float(math.floor(ts.timestamp())), True
    if kind is ScalarKind.TEXT:
        parsed = _parse_float(scalar.raw)
        if parsed is None:
            return math.nan, False
        return parsed * factor, True
    if kind is ScalarKind.BYTES:
        try:
            text = scalar.raw.decode("utf-8")
        except UnicodeDecodeError:
            return math.nan, False
        parsed = _parse_float(text)
        if parsed is None:
            return math.nan, False
        return parsed * factor, True
    if kind is ScalarKind.NULL:
        return math.nan, True
    return math.nan, False


def _valid_utf8(text: str) -> bool:
    try:
        text.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def label_text(value: Any) -> tuple[str, bool]:
    """Render a column value as label text. Returns (INVALID_LABEL, False) when it cannot be."""
    scalar = classify(value)
    kind = scalar.kind
    if kind is ScalarKind.INTEGER:
        return str(scalar.raw), True
    if kind is ScalarKind.FLOAT:
        return f"{scalar.raw:f}", True
    if kind is ScalarKind.TEXT:
        if not _valid_utf8(scalar.raw):
            return INVALID_LABEL, False
        return scalar.raw, True
    if kind is ScalarKind.BYTES:
        try:
            return scalar.raw.decode("utf-8"), True
        except UnicodeDecodeError:
            return INVALID_LABEL, False
    if kind is ScalarKind.NULL:
        return "", True
    return INVALID_LABEL, False
