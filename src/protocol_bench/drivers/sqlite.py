"""
SQLite driver (stdlib sqlite3).

``host`` is the database path (``:memory:`` allowed); ``port`` and
credentials are ignored. Useful for local smoke runs of a suite.
"""

import sqlite3
import time
from contextlib import contextmanager
from typing import Any, Optional, Sequence

from protocol_bench.drivers.base import CursorStatement, DbapiDriver
from protocol_bench.profile import ConnectionProfile

# SQLite VM instructions between deadline checks
PROGRESS_STEPS = 1000


class TimedConnection(sqlite3.Connection):
    """sqlite3 connection that carries its own statement deadline."""

    statement_timeout: Optional[float] = None
    deadline: Optional[float] = None

    def past_deadline(self) -> int:
        # Non-zero interrupts the running statement
        return int(self.deadline is not None and time.perf_counter() > self.deadline)


class SQLiteDriver(DbapiDriver):
    name = "sqlite"

    def connect(self, profile: ConnectionProfile) -> Any:
        return sqlite3.connect(
            profile.host,
            timeout=profile.connect_timeout,
            isolation_level=None,
            check_same_thread=False,
            factory=TimedConnection,
        )

    def apply_timeout(self, handle: TimedConnection, seconds: float) -> None:
        handle.statement_timeout = seconds
        handle.set_progress_handler(handle.past_deadline, PROGRESS_STEPS)

    @contextmanager
    def _deadline(self, handle: TimedConnection):
        timeout = getattr(handle, "statement_timeout", None)
        if timeout is None:
            yield
            return
        handle.deadline = time.perf_counter() + timeout
        try:
            yield
        finally:
            handle.deadline = None

    def execute_scalar(self, handle: Any, sql: str) -> Any:
        with self._deadline(handle):
            return super().execute_scalar(handle, sql)

    def execute_rows(self, handle: Any, sql: str) -> int:
        with self._deadline(handle):
            return super().execute_rows(handle, sql)

    def execute_bound(self, stmt: CursorStatement, args: Sequence[Any]) -> Any:
        with self._deadline(stmt.connection):
            return super().execute_bound(stmt, args)
