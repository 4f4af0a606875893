"""
Admin console connection: a single psycopg connection to the PgBouncer
`pgbouncer` database, shared by at most one scrape at a time.
"""
from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Any, Iterable, Iterator, Sequence

import psycopg

from errors import QueryError, ShapeError
from utils import get_logger, redact_dsn

logger = get_logger(__name__)


class QueryResult:
    """
    Column names plus a lazily consumed row stream.

    A failure while pulling rows ends iteration and is kept in
    iteration_error; rows already yielded stay valid.
    """

    def __init__(self, columns: Sequence[str], rows: Iterable[Sequence[Any]]) -> None:
        self.columns = list(columns)
        self._rows = rows
        self.iteration_error: Exception | None = None

    def __iter__(self) -> Iterator[list[Any]]:
        width = len(self.columns)
        try:
            for row in self._rows:
                values = list(row)
                if len(values) != width:
                    raise ShapeError(f"row has {len(values)} values for {width} columns")
                yield values
        except ShapeError:
            raise
        except QueryError as e:
            self.iteration_error = e


class AdminConnection:
    """
    Lazily opened, serialized connection to the PgBouncer admin console.

    The console only speaks the simple query protocol, so the connection uses
    client-side cursors in autocommit mode. The connection is recycled when it
    has been idle or alive for too long, and dropped after any driver error.
    """

    def __init__(
        self,
        dsn: str,
        query_timeout_sec: float = 10.0,
        connect_timeout_sec: int = 10,
        max_idle_sec: float = 60.0,
        max_lifetime_sec: float = 300.0,
    ) -> None:
        self.dsn = dsn
        self.query_timeout_sec = query_timeout_sec
        self.connect_timeout_sec = connect_timeout_sec
        self.max_idle_sec = max_idle_sec
        self.max_lifetime_sec = max_lifetime_sec
        self._conn: psycopg.Connection | None = None
        self._opened_at = 0.0
        self._last_used = 0.0
        self._lock = threading.RLock()

    def __repr__(self) -> str:
        return f"AdminConnection({redact_dsn(self.dsn)!r})"

    @contextmanager
    def session(self) -> Iterator[AdminConnection]:
        """Hold the connection for the duration of one scrape."""
        with self._lock:
            yield self

    def _expired(self, now: float) -> bool:
        if self.max_lifetime_sec > 0 and now - self._opened_at > self.max_lifetime_sec:
            return True
        if self.max_idle_sec > 0 and now - self._last_used > self.max_idle_sec:
            return True
        return False

    def _connection(self) -> psycopg.Connection:
        now = time.monotonic()
        if self._conn is not None and (self._conn.closed or self._expired(now)):
            logger.debug("Recycling admin connection to %s", redact_dsn(self.dsn))
            self.close()
        if self._conn is None:
            try:
                self._conn = psycopg.connect(
                    self.dsn,
                    autocommit=True,
                    connect_timeout=self.connect_timeout_sec,
                    cursor_factory=psycopg.ClientCursor,
                )
            except psycopg.Error as e:
                raise QueryError(f"error connecting to pgbouncer: {e}") from e
            self._opened_at = now
        self._last_used = now
        return self._conn

    def query(self, sql: str) -> QueryResult:
        """Run one admin command and return its result. Raises QueryError on failure or timeout."""
        with self._lock:
            conn = self._connection()
            timer: threading.Timer | None = None
            if self.query_timeout_sec > 0:
                timer = threading.Timer(self.query_timeout_sec, conn.cancel)
                timer.daemon = True
                timer.start()
            try:
                with conn.cursor() as cur:
                    cur.execute(sql)
                    if cur.description is None:
                        raise ShapeError(f"{sql} returned no result set")
                    columns = [col.name for col in cur.description]
                    rows = cur.fetchall()
            except psycopg.errors.QueryCanceled as e:
                self.close()
                raise QueryError(f"{sql} timed out after {self.query_timeout_sec}s") from e
            except psycopg.Error as e:
                self.close()
                raise QueryError(f"error running {sql}: {e}") from e
            finally:
                if timer is not None:
                    timer.cancel()
            return QueryResult(columns, rows)

    def ping(self) -> None:
        """Verify the console answers SHOW STATS."""
        result = self.query("SHOW STATS;")
        for _ in result:
            pass

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                try:
                    self._conn.close()
                except psycopg.Error as e:
                    logger.debug("Error closing admin connection: %s", e)
                self._conn = None
