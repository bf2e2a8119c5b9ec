"""
Narrow driver interface consumed by Session.

Any SQL-speaking transport that can connect, execute a scalar query, prepare
a statement and execute it with bound arguments is pluggable.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Sequence

from protocol_bench.profile import ConnectionProfile


class DatabaseDriver(ABC):
    """Transport adapter. Implementations hold no per-connection state."""

    name = "abstract"
    supports_compression = False

    @abstractmethod
    def connect(self, profile: ConnectionProfile) -> Any:
        """Open one physical connection."""

    @abstractmethod
    def ping(self, handle: Any) -> None:
        """Liveness check. Raises on a dead connection."""

    @abstractmethod
    def execute_scalar(self, handle: Any, sql: str) -> Any:
        """Execute ``sql`` and return the first column of the first row."""

    @abstractmethod
    def execute_rows(self, handle: Any, sql: str) -> int:
        """Execute ``sql``, fetch every row and return the row count."""

    @abstractmethod
    def prepare(self, handle: Any, sql: str) -> Any:
        """Prepare ``sql`` on ``handle``. The result is passed to execute_bound."""

    @abstractmethod
    def execute_bound(self, stmt: Any, args: Sequence[Any]) -> Any:
        """Execute a prepared statement and return its first column."""

    def apply_timeout(self, handle: Any, seconds: float) -> None:
        """
        Bound every later call on ``handle`` to ``seconds``.

        Called once per physical connection when an operation timeout is
        configured. The default does nothing; the caller still records slow
        successes as failed samples.
        """

    def close_statement(self, stmt: Any) -> None:
        pass

    def connection_broken(self, handle: Any, error: Exception) -> bool:
        """Whether ``handle`` is unusable after ``error``. Unknown means broken."""
        return True

    @abstractmethod
    def close(self, handle: Any) -> None:
        """Close one physical connection."""

    def unsupported_options(self, profile: ConnectionProfile) -> list:
        """Profile options this driver cannot honour."""
        errors = []
        if profile.compression and not self.supports_compression:
            errors.append(f"driver {self.name!r} does not support protocol compression")
        return errors


@dataclass
class CursorStatement:
    """Prepared statement for DBAPI drivers: a dedicated cursor plus its SQL."""
    cursor: Any
    sql: str
    connection: Any = field(repr=False, default=None)


class DbapiDriver(DatabaseDriver):
    """
    Shared DBAPI 2.0 behaviour.

    Subclasses implement ``connect`` and may override ``_execute_prepared``
    for driver-specific prepared execution.
    """

    liveness_sql = "SELECT 1"

    def connection_broken(self, handle: Any, error: Exception) -> bool:
        return bool(getattr(handle, "closed", False) or getattr(handle, "broken", False))

    def ping(self, handle: Any) -> None:
        self.execute_scalar(handle, self.liveness_sql)

    def execute_scalar(self, handle: Any, sql: str) -> Any:
        cursor = handle.cursor()
        try:
            cursor.execute(sql)
            row = cursor.fetchone()
            # Drain remaining rows so the connection is reusable
            if row is not None and cursor.description is not None:
                cursor.fetchall()
            return row[0] if row else None
        finally:
            cursor.close()

    def execute_rows(self, handle: Any, sql: str) -> int:
        cursor = handle.cursor()
        try:
            cursor.execute(sql)
            if cursor.description is None:
                return max(cursor.rowcount, 0)
            return len(cursor.fetchall())
        finally:
            cursor.close()

    def prepare(self, handle: Any, sql: str) -> CursorStatement:
        return CursorStatement(cursor=handle.cursor(), sql=sql, connection=handle)

    def execute_bound(self, stmt: CursorStatement, args: Sequence[Any]) -> Any:
        self._execute_prepared(stmt, tuple(args))
        rows = stmt.cursor.fetchall() if stmt.cursor.description is not None else []
        return rows[0][0] if rows else None

    def _execute_prepared(self, stmt: CursorStatement, args: tuple) -> None:
        stmt.cursor.execute(stmt.sql, args)

    def close_statement(self, stmt: CursorStatement) -> None:
        stmt.cursor.close()

    def close(self, handle: Any) -> None:
        handle.close()
