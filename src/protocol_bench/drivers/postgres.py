"""
PostgreSQL driver (psycopg 3).

Serves both native PostgreSQL and servers that emulate its wire protocol.
"""

from typing import Any, Sequence

from protocol_bench.drivers.base import CursorStatement, DbapiDriver
from protocol_bench.profile import ConnectionProfile


class PostgresDriver(DbapiDriver):
    """Execute queries via psycopg 3."""

    name = "postgres"

    def connect(self, profile: ConnectionProfile) -> Any:
        import psycopg

        return psycopg.connect(
            host=profile.host,
            port=profile.port,
            dbname=profile.database or None,
            user=profile.username,
            password=profile.password or None,
            connect_timeout=max(int(profile.connect_timeout), 1),
            autocommit=True,
            **profile.option_map,
        )

    def apply_timeout(self, handle: Any, seconds: float) -> None:
        # Server cancels the statement and raises QueryCanceled
        handle.execute(f"SET statement_timeout = {max(int(seconds * 1000), 1)}")

    def _execute_prepared(self, stmt: CursorStatement, args: tuple) -> None:
        # prepare=True makes psycopg use a server-side prepared statement
        # from the first execution on this connection
        stmt.cursor.execute(stmt.sql, args or None, prepare=True)

    def execute_bound(self, stmt: CursorStatement, args: Sequence[Any]) -> Any:
        self._execute_prepared(stmt, tuple(args))
        if stmt.cursor.description is None:
            return None
        row = stmt.cursor.fetchone()
        return row[0] if row else None
