"""
Base classes for database connection pooling.

Provides a thread-safe connection pool that creates connections lazily,
validates them on checkout and recycles stale ones. Batch workers of a
reconciliation run share one pool per datasource.
"""

import logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from queue import Empty, Queue
from typing import Any

from prometheus_client import Counter, Gauge, Histogram

from utils.metrics import get_or_create_metric

logger = logging.getLogger(__name__)


CONNECTION_POOL_SIZE = get_or_create_metric(
    lambda: Gauge(
        "db_connection_pool_size",
        "Current size of database connection pool",
        ["database_type", "pool_name"],
    ),
    "db_connection_pool_size",
)

CONNECTION_POOL_ACTIVE = get_or_create_metric(
    lambda: Gauge(
        "db_connection_pool_active",
        "Number of connections checked out of the pool",
        ["database_type", "pool_name"],
    ),
    "db_connection_pool_active",
)

CONNECTION_POOL_TIMEOUTS = get_or_create_metric(
    lambda: Counter(
        "db_connection_pool_timeouts_total",
        "Number of connection pool timeout errors",
        ["database_type", "pool_name"],
    ),
    "db_connection_pool_timeouts_total",
)

CONNECTION_POOL_ERRORS = get_or_create_metric(
    lambda: Counter(
        "db_connection_pool_errors_total",
        "Number of connection pool errors",
        ["database_type", "pool_name", "error_type"],
    ),
    "db_connection_pool_errors_total",
)

CONNECTION_ACQUIRE_TIME = get_or_create_metric(
    lambda: Histogram(
        "db_connection_acquire_seconds",
        "Time to acquire a connection from pool",
        ["database_type", "pool_name"],
        buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    ),
    "db_connection_acquire_seconds",
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class PooledConnection:
    """Wrapper for a pooled database connection with metadata."""

    connection: Any
    created_at: datetime = field(default_factory=_utcnow)
    last_used: datetime = field(default_factory=_utcnow)
    use_count: int = 0

    def mark_used(self) -> None:
        self.last_used = _utcnow()
        self.use_count += 1


class ConnectionPoolError(Exception):
    """Base exception for connection pool errors."""


class PoolExhaustedError(ConnectionPoolError):
    """Raised when no connection becomes available within the timeout."""


class PoolClosedError(ConnectionPoolError):
    """Raised when attempting to use a closed pool."""


class BaseConnectionPool:
    """
    Base class for database connection pools.

    Subclasses implement connection creation, the liveness probe and
    closing for a specific driver.
    """

    db_type = "unknown"

    def __init__(
        self,
        min_size: int = 0,
        max_size: int = 10,
        max_idle_time: int = 300,
        max_lifetime: int = 3600,
        acquire_timeout: float = 30.0,
        pool_name: str = "default",
    ):
        """
        Initialize connection pool.

        Args:
            min_size: Connections opened eagerly at construction
            max_size: Maximum number of connections allowed
            max_idle_time: Maximum idle time in seconds before recycling
            max_lifetime: Maximum connection lifetime in seconds
            acquire_timeout: Timeout for acquiring connection in seconds
            pool_name: Name of the pool for metrics and logs
        """
        if max_size < 1:
            raise ValueError(f"max_size must be at least 1, got {max_size}")
        if min_size > max_size:
            raise ValueError(f"min_size ({min_size}) cannot exceed max_size ({max_size})")

        self.min_size = min_size
        self.max_size = max_size
        self.max_idle_time = timedelta(seconds=max_idle_time)
        self.max_lifetime = timedelta(seconds=max_lifetime)
        self.acquire_timeout = acquire_timeout
        self.pool_name = pool_name

        self._idle: Queue[PooledConnection] = Queue(maxsize=max_size)
        self._all_connections: list[PooledConnection] = []
        self._lock = threading.RLock()
        self._closed = False

        for _ in range(min_size):
            self._idle.put(self._open())

        logger.info(
            f"Initialized {self.__class__.__name__} '{pool_name}' "
            f"(min={min_size}, max={max_size})"
        )

    def _create_connection(self) -> Any:
        raise NotImplementedError

    def _is_connection_healthy(self, conn: Any) -> bool:
        raise NotImplementedError

    def _close_connection(self, conn: Any) -> None:
        raise NotImplementedError

    def _labels(self) -> dict[str, str]:
        return {"database_type": self.db_type, "pool_name": self.pool_name}

    def _open(self) -> PooledConnection:
        try:
            pooled_conn = PooledConnection(connection=self._create_connection())
        except Exception:
            CONNECTION_POOL_ERRORS.labels(**self._labels(), error_type="creation").inc()
            raise

        with self._lock:
            self._all_connections.append(pooled_conn)
        self._update_metrics()
        return pooled_conn

    def _recycle(self, pooled_conn: PooledConnection) -> None:
        try:
            self._close_connection(pooled_conn.connection)
        except Exception as e:
            logger.warning(f"Error closing connection in pool '{self.pool_name}': {e}")
        finally:
            with self._lock:
                if pooled_conn in self._all_connections:
                    self._all_connections.remove(pooled_conn)
            self._update_metrics()

    def _is_reusable(self, pooled_conn: PooledConnection) -> bool:
        now = _utcnow()

        if now - pooled_conn.created_at > self.max_lifetime:
            logger.debug("Connection exceeded max lifetime, recycling")
            return False

        if now - pooled_conn.last_used > self.max_idle_time:
            logger.debug("Connection exceeded max idle time, recycling")
            return False

        if not self._is_connection_healthy(pooled_conn.connection):
            CONNECTION_POOL_ERRORS.labels(**self._labels(), error_type="health_check").inc()
            return False

        return True

    def _update_metrics(self) -> None:
        with self._lock:
            total_size = len(self._all_connections)
            active_size = total_size - self._idle.qsize()

        CONNECTION_POOL_SIZE.labels(**self._labels()).set(total_size)
        CONNECTION_POOL_ACTIVE.labels(**self._labels()).set(active_size)

    def _checkout(self) -> PooledConnection:
        deadline = time.monotonic() + self.acquire_timeout

        while True:
            try:
                pooled_conn = self._idle.get_nowait()
            except Empty:
                with self._lock:
                    can_grow = len(self._all_connections) < self.max_size
                if can_grow:
                    return self._open()

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    CONNECTION_POOL_TIMEOUTS.labels(**self._labels()).inc()
                    raise PoolExhaustedError(
                        f"No connection available in pool '{self.pool_name}' "
                        f"within {self.acquire_timeout}s"
                    )
                try:
                    pooled_conn = self._idle.get(timeout=remaining)
                except Empty:
                    continue

            if self._is_reusable(pooled_conn):
                return pooled_conn

            logger.info(f"Recycling stale connection in pool '{self.pool_name}'")
            self._recycle(pooled_conn)

    @contextmanager
    def acquire(self) -> Iterator[Any]:
        """
        Acquire a connection from the pool.

        Yields:
            Database connection

        Raises:
            PoolClosedError: If pool is closed
            PoolExhaustedError: If no connection available within timeout
        """
        if self._closed:
            raise PoolClosedError(f"Connection pool '{self.pool_name}' is closed")

        start_time = time.monotonic()
        pooled_conn = self._checkout()
        pooled_conn.mark_used()
        self._update_metrics()
        CONNECTION_ACQUIRE_TIME.labels(**self._labels()).observe(time.monotonic() - start_time)

        try:
            yield pooled_conn.connection
        finally:
            if self._closed:
                self._recycle(pooled_conn)
            else:
                self._idle.put_nowait(pooled_conn)
                self._update_metrics()

    def close(self) -> None:
        """Close all connections and shutdown the pool."""
        if self._closed:
            return

        logger.info(f"Closing connection pool '{self.pool_name}'")
        self._closed = True

        while True:
            try:
                self._recycle(self._idle.get_nowait())
            except Empty:
                break

    def get_stats(self) -> dict[str, Any]:
        """Get pool statistics."""
        with self._lock:
            total_size = len(self._all_connections)
            idle_size = self._idle.qsize()

        return {
            "pool_name": self.pool_name,
            "database_type": self.db_type,
            "total_connections": total_size,
            "idle_connections": idle_size,
            "active_connections": total_size - idle_size,
            "max_size": self.max_size,
            "closed": self._closed,
        }
