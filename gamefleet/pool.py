"""Fixed-size blocking pools of database and cache connections."""

from __future__ import annotations

import logging
import re
import threading
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional

import redis

PG_POOL_SIZE = 25
REDIS_POOL_SIZE = 25
DEFAULT_REDIS_PORT = 6379
MAX_HOST_LEN = 255

_logger = logging.getLogger(__name__)
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


class PoolError(Exception):
    """Raised when a pool cannot be built or is used after shutdown."""


def _close(conn: Any) -> None:
    conn.close()


class ConnectionPool:
    """A fixed set of connections handed out one caller at a time.

    acquire blocks until a connection is free; the lowest free slot is used.
    """

    def __init__(
        self,
        factory: Callable[[], Any],
        size: int,
        closer: Optional[Callable[[Any], None]] = None,
    ) -> None:
        if size < 1:
            raise ValueError("pool size must be at least 1")
        self._closer = closer or _close
        self._cond = threading.Condition()
        self._closed = False
        self._connections: list = []
        try:
            for _ in range(size):
                self._connections.append(factory())
        except Exception as exc:
            failed = len(self._connections)
            for conn in self._connections:
                self._closer(conn)
            self._connections = []
            raise PoolError(f"connection {failed} failed: {exc}") from exc
        self._available = [True] * size
        _logger.info("pool initialized with %d connections", size)

    def acquire(self) -> Any:
        """Take a free connection, waiting until one is released."""
        with self._cond:
            while True:
                if self._closed:
                    raise PoolError("pool is shut down")
                slot = next(
                    (index for index, free in enumerate(self._available) if free), None
                )
                if slot is not None:
                    self._available[slot] = False
                    return self._connections[slot]
                self._cond.wait()

    def release(self, conn: Any) -> None:
        """Return a connection; connections not from this pool are ignored."""
        with self._cond:
            for slot, candidate in enumerate(self._connections):
                if candidate is conn:
                    self._available[slot] = True
                    self._cond.notify()
                    break

    @contextmanager
    def connection(self) -> Iterator[Any]:
        """Hold a connection for the duration of a with block."""
        conn = self.acquire()
        try:
            yield conn
        finally:
            self.release(conn)

    def shutdown(self) -> None:
        """Close every connection and wake any waiting callers."""
        with self._cond:
            if self._closed:
                return
            self._closed = True
            connections, self._connections = self._connections, []
            self._available = []
            self._cond.notify_all()
        for conn in connections:
            self._closer(conn)
        _logger.info("pool shut down")


def parse_redis_address(conn_str: str) -> tuple:
    """Split "host:port" into (host, port); the port defaults to 6379."""
    host, colon, port_text = conn_str.partition(":")
    if not colon:
        return conn_str[:MAX_HOST_LEN], DEFAULT_REDIS_PORT
    match = _LEADING_INT.match(port_text)
    return host, int(match.group(1)) if match else 0


def postgres_pool(
    connect: Callable[[str], Any], dsn: str, size: int = PG_POOL_SIZE
) -> ConnectionPool:
    """Build a pool of database connections made by connect(dsn)."""
    _logger.info("initializing postgres connection pool...")
    return ConnectionPool(lambda: connect(dsn), size)


def redis_pool(conn_str: str, size: int = REDIS_POOL_SIZE) -> ConnectionPool:
    """Build a pool of checked cache clients for a "host:port" address."""
    _logger.info("initializing redis connection pool...")
    host, port = parse_redis_address(conn_str)

    def connect() -> redis.Redis:
        client = redis.Redis(host=host, port=port)
        try:
            client.ping()
        except redis.RedisError:
            client.close()
            raise
        return client

    return ConnectionPool(connect, size)