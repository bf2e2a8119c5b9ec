"""
MySQL driver (mysql-connector-python).

The only built-in driver that honours ``compression``: the client then
negotiates the compressed protocol during the handshake.
"""

from typing import Any

from protocol_bench.drivers.base import CursorStatement, DbapiDriver
from protocol_bench.profile import ConnectionProfile


class MySQLDriver(DbapiDriver):
    """Execute queries via mysql-connector-python."""

    name = "mysql"
    supports_compression = True

    def connect(self, profile: ConnectionProfile) -> Any:
        import mysql.connector

        return mysql.connector.connect(
            host=profile.host,
            port=profile.port,
            user=profile.username,
            password=profile.password,
            database=profile.database or None,
            compress=profile.compression,
            connection_timeout=max(int(profile.connect_timeout), 1),
            autocommit=True,
            **profile.option_map,
        )

    def ping(self, handle: Any) -> None:
        handle.ping(reconnect=False)

    def apply_timeout(self, handle: Any, seconds: float) -> None:
        # Enforced by the server for SELECT statements
        cursor = handle.cursor()
        try:
            cursor.execute(f"SET SESSION max_execution_time = {max(int(seconds * 1000), 1)}")
        finally:
            cursor.close()

    def connection_broken(self, handle: Any, error: Exception) -> bool:
        return not handle.is_connected()

    def prepare(self, handle: Any, sql: str) -> CursorStatement:
        # The binary protocol statement is prepared on first execution and
        # reused for as long as the SQL text is unchanged
        return CursorStatement(cursor=handle.cursor(prepared=True), sql=sql, connection=handle)
