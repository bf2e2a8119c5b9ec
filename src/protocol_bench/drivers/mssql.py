"""
Microsoft SQL Server driver (pyodbc).
"""

import math
from typing import Any

from protocol_bench.drivers.base import CursorStatement, DbapiDriver
from protocol_bench.profile import ConnectionProfile

DEFAULT_ODBC_DRIVER = "ODBC Driver 18 for SQL Server"


def quote_value(value: str) -> str:
    """Brace-quote an ODBC attribute value; a closing brace is doubled."""
    return "{" + str(value).replace("}", "}}") + "}"


class MSSQLDriver(DbapiDriver):
    """Execute queries via pyodbc."""

    name = "mssql"

    def connection_string(self, profile: ConnectionProfile) -> str:
        options = profile.option_map
        odbc_driver = options.pop("odbc_driver", DEFAULT_ODBC_DRIVER)
        options.setdefault("TrustServerCertificate", "yes")

        conn_str = (
            f"Driver={{{odbc_driver}}};"
            f"Server={profile.host},{profile.port};"
            f"UID={quote_value(profile.username)};PWD={quote_value(profile.password)};"
        )
        if profile.database:
            conn_str += f"Database={quote_value(profile.database)};"
        for key, value in options.items():
            conn_str += f"{key}={value};"
        return conn_str

    def connect(self, profile: ConnectionProfile) -> Any:
        import pyodbc

        return pyodbc.connect(
            self.connection_string(profile),
            autocommit=True,
            timeout=max(int(profile.connect_timeout), 1),
        )

    def apply_timeout(self, handle: Any, seconds: float) -> None:
        # Query timeout in whole seconds; 0 would disable it
        handle.timeout = max(math.ceil(seconds), 1)

    def _execute_prepared(self, stmt: CursorStatement, args: tuple) -> None:
        # pyodbc reuses the prepared statement while the SQL text is identical
        stmt.cursor.execute(stmt.sql, *args)
