"""
Error taxonomy for protocol-bench.

- InvalidProfile: raised at construction, never reaches a run
- ConnectFailure: fatal to the run containing it
- PrepareFailure: fatal to that configuration's run only
- QueryFailure: recorded as a failed Sample, the run continues
- ComparisonFailure: refuses to emit a misleading comparison
"""

from typing import List, Optional


class BenchmarkError(Exception):
    """Base class for all protocol-bench errors."""


class InvalidProfile(BenchmarkError, ValueError):
    """ConnectionProfile failed validation."""

    def __init__(self, errors: List[str], name: Optional[str] = None):
        self.errors = list(errors)
        self.name = name
        prefix = f"Invalid profile {name!r}" if name else "Invalid profile"
        super().__init__(prefix + ":\n" + "\n".join(f"  - {e}" for e in self.errors))


class UnknownDriver(InvalidProfile):
    """Profile names a driver that is not registered."""

    def __init__(self, driver: str, available: List[str]):
        self.driver = driver
        super().__init__(
            [f"Unknown driver {driver!r} (available: {', '.join(sorted(available))})"]
        )


class ConnectFailure(BenchmarkError):
    """Connection could not be established or failed its liveness check."""


class PrepareFailure(BenchmarkError):
    """Statement could not be prepared."""


class QueryFailure(BenchmarkError):
    """A single operation failed; becomes a failed Sample."""

    def __init__(self, message: str, connection_broken: bool = False):
        super().__init__(message)
        self.connection_broken = connection_broken


class PoolTimeout(QueryFailure):
    """No pooled connection became available within acquire_timeout."""


class PoolClosed(BenchmarkError):
    """Pool was used after close()."""


class ComparisonFailure(BenchmarkError):
    """RunResults cannot be compared fairly."""


class SuiteError(BenchmarkError, ValueError):
    """Benchmark suite file is malformed."""
