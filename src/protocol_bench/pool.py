"""
Bounded connection pool owned by a Session.

Acquisition and release are serialised by one Condition. Physical connects
and closes always happen outside the lock so a slow network call never
blocks other workers from releasing connections.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

import structlog

from protocol_bench.errors import ConnectFailure, PoolClosed, PoolTimeout
from protocol_bench.profile import PoolLimits

logger = structlog.get_logger()


@dataclass(frozen=True)
class PoolStats:
    open: int
    idle: int
    in_use: int
    closed: bool


class PooledConnection:
    """A physical connection plus the bookkeeping the pool needs."""

    __slots__ = ("handle", "created_at", "conn_id", "statements")

    def __init__(self, handle: Any, conn_id: int):
        self.handle = handle
        self.conn_id = conn_id
        self.created_at = time.monotonic()
        # PreparedHandle id -> driver statement prepared on this connection
        self.statements = {}

    def expired(self, max_lifetime: Optional[float]) -> bool:
        return max_lifetime is not None and time.monotonic() - self.created_at >= max_lifetime


class ConnectionPool:
    """Thread-safe pool enforcing max_open / max_idle / max_lifetime."""

    def __init__(
        self,
        connect: Callable[[], Any],
        close: Callable[[PooledConnection], None],
        limits: PoolLimits,
        name: str = "pool",
    ):
        self._connect = connect
        self._close = close
        self.limits = limits
        self.name = name

        self._cond = threading.Condition(threading.Lock())
        self._idle: List[PooledConnection] = []
        self._open = 0
        self._in_use = 0
        self._closed = False
        self._next_id = 0

    def acquire(self) -> PooledConnection:
        """
        Lease a connection.

        Raises:
            PoolTimeout: acquire_timeout elapsed with the pool at max_open
            ConnectFailure: a new physical connection could not be opened
            PoolClosed: pool already closed
        """
        deadline = time.monotonic() + self.limits.acquire_timeout
        while True:
            stale = None
            with self._cond:
                while True:
                    if self._closed:
                        raise PoolClosed(f"{self.name}: pool is closed")
                    if self._idle:
                        conn = self._idle.pop()
                        if conn.expired(self.limits.max_lifetime):
                            self._open -= 1
                            stale = conn
                            break
                        self._in_use += 1
                        return conn
                    if self._open < self.limits.max_open:
                        # Reserve the slot, connect outside the lock
                        self._open += 1
                        self._in_use += 1
                        self._next_id += 1
                        conn_id = self._next_id
                        break
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise PoolTimeout(
                            f"{self.name}: no connection available within "
                            f"{self.limits.acquire_timeout}s (max_open={self.limits.max_open})"
                        )
                    self._cond.wait(remaining)

            if stale is not None:
                self._discard(stale)
                continue

            try:
                handle = self._connect()
            except Exception as e:
                with self._cond:
                    self._open -= 1
                    self._in_use -= 1
                    self._cond.notify()
                if isinstance(e, ConnectFailure):
                    raise
                raise ConnectFailure(f"{self.name}: connect failed: {e}") from e

            logger.debug("Pool opened connection", pool=self.name, conn_id=conn_id)
            return PooledConnection(handle, conn_id)

    def release(self, conn: PooledConnection, broken: bool = False) -> None:
        """Return a leased connection; broken, expired or surplus ones are closed."""
        with self._cond:
            self._in_use -= 1
            keep = (
                not broken
                and not self._closed
                and len(self._idle) < self.limits.max_idle
                and not conn.expired(self.limits.max_lifetime)
            )
            if keep:
                self._idle.append(conn)
            else:
                self._open -= 1
            self._cond.notify()

        if not keep:
            self._discard(conn)

    def close(self) -> None:
        """Close idle connections now; leased ones are closed on release. Idempotent."""
        with self._cond:
            if self._closed:
                return
            self._closed = True
            idle, self._idle = self._idle, []
            self._open -= len(idle)
            self._cond.notify_all()

        for conn in idle:
            self._discard(conn)

        logger.debug("Pool closed", pool=self.name, closed_idle=len(idle))

    def stats(self) -> PoolStats:
        with self._cond:
            return PoolStats(
                open=self._open,
                idle=len(self._idle),
                in_use=self._in_use,
                closed=self._closed,
            )

    def _discard(self, conn: PooledConnection) -> None:
        try:
            self._close(conn)
        except Exception as e:
            logger.warning("Error closing pooled connection",
                           pool=self.name, conn_id=conn.conn_id, error=str(e))
