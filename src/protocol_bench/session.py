"""
Session: a live, pooled handle bound to one ConnectionProfile.

Every timed call measures only the driver round-trip; time spent waiting for
a pooled connection is reported separately as ``acquire_duration`` so the
caller decides whether it belongs in the measurement.
"""

import itertools
import time
from contextlib import contextmanager
from typing import Any, Iterator, NamedTuple, Optional, Sequence, Tuple

import structlog

from protocol_bench.drivers import DatabaseDriver, get_driver
from protocol_bench.errors import (
    ConnectFailure,
    InvalidProfile,
    PoolClosed,
    PrepareFailure,
    QueryFailure,
)
from protocol_bench.pool import ConnectionPool, PooledConnection, PoolStats
from protocol_bench.profile import ConnectionProfile

logger = structlog.get_logger()

_prepared_ids = itertools.count(1)


class Execution(NamedTuple):
    """Outcome of one timed call. Durations are in seconds."""
    value: Any
    duration: float
    acquire_duration: float


class PreparedHandle:
    """
    Statement prepared once and executed many times.

    The statement is prepared eagerly on one connection by Session.prepare;
    any other pooled connection that later serves it prepares it lazily,
    before the timer starts.
    """

    def __init__(self, session: "Session", sql: str):
        self.session = session
        self.sql = sql
        self.handle_id = next(_prepared_ids)
        self.closed = False

    def execute(self, args: Sequence[Any] = ()) -> Execution:
        if self.closed:
            raise QueryFailure("prepared statement is closed")
        return self.session._execute_bound(self, tuple(args))

    def close(self) -> None:
        # Driver statements are closed together with their connections
        self.closed = True

    def __repr__(self):
        return f"PreparedHandle(id={self.handle_id}, sql={self.sql!r})"


class Session:
    """Pooled connections conforming to one profile. Use Session.open()."""

    def __init__(self, profile: ConnectionProfile, driver: DatabaseDriver,
                 operation_timeout: Optional[float] = None):
        self.profile = profile
        self.driver = driver
        self.operation_timeout = operation_timeout
        self._pool = ConnectionPool(
            connect=self._connect,
            close=self._close_connection,
            limits=profile.pool,
            name=profile.name,
        )
        self._closed = False

    @classmethod
    def open(cls, profile: ConnectionProfile, driver: Optional[DatabaseDriver] = None,
             operation_timeout: Optional[float] = None) -> "Session":
        """
        Build the pool and verify liveness before returning.

        ``operation_timeout`` (seconds) is handed to the driver for every
        connection the pool opens, so a hung call ends on its own.

        Raises:
            InvalidProfile: driver cannot honour the profile's options
            ConnectFailure: connect or liveness check failed
        """
        driver = driver or get_driver(profile.driver)
        errors = driver.unsupported_options(profile)
        if errors:
            raise InvalidProfile(errors, name=profile.name)

        session = cls(profile, driver, operation_timeout)
        try:
            session._check_liveness()
        except BaseException:
            session.close()
            raise

        logger.info("Session opened", **profile.describe())
        return session

    def _check_liveness(self) -> None:
        conn = self._pool.acquire()
        try:
            self.driver.ping(conn.handle)
        except Exception as e:
            self._pool.release(conn, broken=True)
            raise ConnectFailure(f"{self.profile.name}: liveness check failed: {e}") from e
        self._pool.release(conn)

    def _connect(self) -> Any:
        try:
            handle = self.driver.connect(self.profile)
        except Exception as e:
            raise ConnectFailure(
                f"{self.profile.name}: cannot connect to {self.profile.address}: {e}"
            ) from e

        if self.operation_timeout is not None:
            try:
                self.driver.apply_timeout(handle, self.operation_timeout)
            except Exception as e:
                # Emulating servers may reject the setting; slow calls are
                # still recorded as failed samples
                logger.warning("Cannot apply operation timeout",
                               profile=self.profile.name, error=str(e))
        return handle

    def _close_connection(self, conn: PooledConnection) -> None:
        for stmt in conn.statements.values():
            try:
                self.driver.close_statement(stmt)
            except Exception as e:
                logger.debug("Error closing statement", conn_id=conn.conn_id, error=str(e))
        conn.statements.clear()
        self.driver.close(conn.handle)

    @contextmanager
    def _lease(self) -> Iterator[Tuple[PooledConnection, float]]:
        if self._closed:
            raise PoolClosed(f"{self.profile.name}: session is closed")
        start = time.perf_counter()
        conn = self._pool.acquire()
        acquired = time.perf_counter() - start
        broken = False
        try:
            yield conn, acquired
        except QueryFailure as e:
            broken = e.connection_broken
            raise
        except BaseException:
            broken = True
            raise
        finally:
            self._pool.release(conn, broken=broken)

    def _timed(self, call, *args) -> Execution:
        with self._lease() as (conn, acquire_duration):
            start = time.perf_counter()
            try:
                value = call(conn.handle, *args)
            except Exception as e:
                raise self._query_failure(conn, e) from e
            duration = time.perf_counter() - start
        return Execution(value, duration, acquire_duration)

    def _query_failure(self, conn: PooledConnection, error: Exception) -> QueryFailure:
        try:
            broken = self.driver.connection_broken(conn.handle, error)
        except Exception:
            broken = True
        return QueryFailure(str(error) or type(error).__name__, connection_broken=broken)

    def execute_scalar(self, sql: str) -> Execution:
        """Ad-hoc query returning one value. Raises QueryFailure."""
        return self._timed(self.driver.execute_scalar, sql)

    def execute_rows(self, sql: str) -> Execution:
        """Ad-hoc query fetching every row; value is the row count."""
        return self._timed(self.driver.execute_rows, sql)

    def ping(self) -> Execution:
        return self._timed(lambda handle: self.driver.ping(handle))

    def prepare(self, sql: str) -> PreparedHandle:
        """Prepare once. Raises PrepareFailure."""
        handle = PreparedHandle(self, sql)
        with self._lease() as (conn, _):
            self._prepare_on(conn, handle)
        logger.debug("Statement prepared", profile=self.profile.name, sql=sql)
        return handle

    def _prepare_on(self, conn: PooledConnection, handle: PreparedHandle) -> Any:
        try:
            stmt = self.driver.prepare(conn.handle, handle.sql)
        except Exception as e:
            raise PrepareFailure(f"{self.profile.name}: cannot prepare {handle.sql!r}: {e}") from e
        conn.statements[handle.handle_id] = stmt
        return stmt

    def _execute_bound(self, handle: PreparedHandle, args: tuple) -> Execution:
        with self._lease() as (conn, acquire_duration):
            stmt = conn.statements.get(handle.handle_id)
            if stmt is None:
                stmt = self._prepare_on(conn, handle)
            start = time.perf_counter()
            try:
                value = self.driver.execute_bound(stmt, args)
            except Exception as e:
                raise self._query_failure(conn, e) from e
            duration = time.perf_counter() - start
        return Execution(value, duration, acquire_duration)

    def pool_stats(self) -> PoolStats:
        return self._pool.stats()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Close every pooled connection. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._pool.close()
        logger.debug("Session closed", profile=self.profile.name)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
