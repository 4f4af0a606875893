"""
Base collector interface: every admin-console feed implements this.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from db import QueryResult
from models import Sample
from utils import get_logger

logger = get_logger(__name__)

Sink = Callable[[Sample], None]


class Queryable(Protocol):
    def query(self, sql: str) -> QueryResult: ...


@dataclass
class CollectorResult:
    """Outcome of one collector run: success flag, fatal error, non-fatal errors and extra data."""
    success: bool = True
    error: Exception | None = None
    nonfatal: list[Exception] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


class BaseCollector(ABC):
    """Abstract base for admin-console collectors."""

    name: str = "base"

    def __init__(self, namespace: str) -> None:
        self.namespace = namespace

    @abstractmethod
    def collect(self, sink: Sink, conn: Queryable) -> CollectorResult:
        """Query the console and push samples to sink. May raise QueryError for a fatal failure."""
        ...

    def collect_safe(self, sink: Sink, conn: Queryable) -> CollectorResult:
        """Wrapper that turns any exception into a failed result."""
        try:
            result = self.collect(sink, conn)
        except Exception as e:
            return CollectorResult(success=False, error=e)
        for err in result.nonfatal:
            logger.info("error parsing %s: %s", self.name, err)
        return result
