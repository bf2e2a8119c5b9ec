"""
Operation specs and the driver that executes one of them per call.

OperationDriver never retries: a failed call is a failed Sample, and retry
policy (if any) belongs to the runner.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union

from protocol_bench.config import Sample
from protocol_bench.errors import QueryFailure
from protocol_bench.session import Execution, PreparedHandle, Session


@dataclass(frozen=True)
class ScalarQuery:
    """Ad-hoc query returning a single value."""
    sql: str
    kind: str = field(default="scalar", init=False)

    def describe(self) -> Dict[str, Any]:
        return {"kind": self.kind, "sql": self.sql}


@dataclass(frozen=True)
class PreparedQuery:
    """Statement prepared once and executed with bound arguments."""
    sql: str
    args: Tuple[Any, ...] = ()
    kind: str = field(default="prepared", init=False)

    def __post_init__(self):
        object.__setattr__(self, "args", tuple(self.args))

    def describe(self) -> Dict[str, Any]:
        return {"kind": self.kind, "sql": self.sql, "args": list(self.args)}


@dataclass(frozen=True)
class MultiRowQuery:
    """Ad-hoc query whose full result set is fetched."""
    sql: str
    kind: str = field(default="multi_row", init=False)

    def describe(self) -> Dict[str, Any]:
        return {"kind": self.kind, "sql": self.sql}


@dataclass(frozen=True)
class LivenessCheck:
    """Driver-level ping."""
    kind: str = field(default="liveness", init=False)

    def describe(self) -> Dict[str, Any]:
        return {"kind": self.kind}


OperationSpec = Union[ScalarQuery, PreparedQuery, MultiRowQuery, LivenessCheck]

OPERATION_KINDS = {
    "scalar": ScalarQuery,
    "prepared": PreparedQuery,
    "multi_row": MultiRowQuery,
    "liveness": LivenessCheck,
}


class OperationDriver:
    """
    Execute one OperationSpec against a Session and return a Sample.

    Args:
        session: open Session
        operation: what to execute
        include_acquire: count pool acquisition time in the sample
        timeout: seconds; a slower success is recorded as a failed sample
    """

    def __init__(
        self,
        session: Session,
        operation: OperationSpec,
        include_acquire: bool = False,
        timeout: Optional[float] = None,
    ):
        if not isinstance(operation, tuple(OPERATION_KINDS.values())):
            raise TypeError(f"Unsupported operation: {operation!r}")
        self.session = session
        self.operation = operation
        self.include_acquire = include_acquire
        self.timeout = timeout
        self._prepared: Optional[PreparedHandle] = None

    def setup(self) -> None:
        """Prepare the statement for PreparedQuery. Raises PrepareFailure."""
        if isinstance(self.operation, PreparedQuery) and self._prepared is None:
            self._prepared = self.session.prepare(self.operation.sql)

    def _call(self) -> Execution:
        op = self.operation
        if isinstance(op, ScalarQuery):
            return self.session.execute_scalar(op.sql)
        if isinstance(op, PreparedQuery):
            if self._prepared is None:
                self.setup()
            return self._prepared.execute(op.args)
        if isinstance(op, MultiRowQuery):
            return self.session.execute_rows(op.sql)
        return self.session.ping()

    def execute(self, worker: int = 0) -> Sample:
        """
        Execute exactly one operation.

        QueryFailure becomes a failed Sample. ConnectFailure and
        PrepareFailure propagate: they are fatal to the run.
        """
        started_at = time.perf_counter()
        try:
            execution = self._call()
        except QueryFailure as e:
            return Sample(
                duration_ms=(time.perf_counter() - started_at) * 1000.0,
                success=False,
                error=str(e),
                worker=worker,
                started_at=started_at,
            )

        elapsed = execution.duration
        if self.include_acquire:
            elapsed += execution.acquire_duration

        if self.timeout is not None and elapsed > self.timeout:
            return Sample(
                duration_ms=elapsed * 1000.0,
                success=False,
                error=f"operation exceeded timeout of {self.timeout}s",
                worker=worker,
                started_at=started_at,
            )

        return Sample(
            duration_ms=elapsed * 1000.0,
            success=True,
            worker=worker,
            started_at=started_at,
        )

    def close(self) -> None:
        if self._prepared is not None:
            self._prepared.close()
            self._prepared = None
