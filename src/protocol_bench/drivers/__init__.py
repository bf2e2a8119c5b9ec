"""
Driver registry.

Driver libraries are imported when a connection is first opened, so only
the driver a suite actually uses needs to be installed.
"""

from typing import Dict, List, Type

from protocol_bench.drivers.base import CursorStatement, DatabaseDriver, DbapiDriver
from protocol_bench.drivers.mssql import MSSQLDriver
from protocol_bench.drivers.mysql import MySQLDriver
from protocol_bench.drivers.postgres import PostgresDriver
from protocol_bench.drivers.sqlite import SQLiteDriver
from protocol_bench.errors import UnknownDriver

_REGISTRY: Dict[str, Type[DatabaseDriver]] = {
    "postgres": PostgresDriver,
    "mysql": MySQLDriver,
    "mssql": MSSQLDriver,
    "sqlite": SQLiteDriver,
}


def register_driver(name: str, driver_cls: Type[DatabaseDriver]) -> None:
    """Plug in a transport under ``name`` (replaces any existing entry)."""
    _REGISTRY[name] = driver_cls


def available_drivers() -> List[str]:
    return sorted(_REGISTRY)


def get_driver(name: str) -> DatabaseDriver:
    try:
        return _REGISTRY[name]()
    except KeyError:
        raise UnknownDriver(name, list(_REGISTRY)) from None


__all__ = [
    "CursorStatement",
    "DatabaseDriver",
    "DbapiDriver",
    "MSSQLDriver",
    "MySQLDriver",
    "PostgresDriver",
    "SQLiteDriver",
    "available_drivers",
    "get_driver",
    "register_driver",
]
