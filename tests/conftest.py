"""
Pytest configuration for protocol-bench tests

Unit and contract tests run against ScriptedDriver, an in-process driver
with deterministic failure injection. Integration tests run against real
servers named by environment variables and are skipped otherwise.
"""

import socket
import threading
import time
from typing import Any, Iterable, Optional

import pytest

from protocol_bench.config import RunResult, RunState, Sample, StopReason
from protocol_bench.drivers import DatabaseDriver
from protocol_bench.operations import ScalarQuery
from protocol_bench.profile import ConnectionProfile, PoolLimits


def wait_for_port(host: str, port: int, timeout: float = 5) -> bool:
    """Wait for a port to become available"""
    start_time = time.time()
    while time.time() - start_time < timeout:
        try:
            with socket.create_connection((host, port), timeout=1):
                return True
        except OSError:
            time.sleep(0.1)
    return False


class FakeConnection:
    def __init__(self, conn_id: int):
        self.conn_id = conn_id
        self.closed = False
        self.timeout = None


class ScriptedDriver(DatabaseDriver):
    """
    In-process driver.

    Args:
        fail_queries: 1-based query call numbers that raise
        fail_connect: every connect raises
        max_connects: connects beyond this number raise
        fail_ping: liveness checks raise
        fail_prepare: prepare raises
        delay: seconds each query sleeps, cut short by an applied timeout
        broken_on_failure: failed queries report the connection as broken
    """

    name = "scripted"
    supports_compression = True

    def __init__(
        self,
        fail_queries: Iterable[int] = (),
        fail_connect: bool = False,
        max_connects: Optional[int] = None,
        fail_ping: bool = False,
        fail_prepare: bool = False,
        delay: float = 0.0,
        value: Any = 1,
        broken_on_failure: bool = False,
    ):
        self.fail_queries = set(fail_queries)
        self.fail_connect = fail_connect
        self.max_connects = max_connects
        self.fail_ping = fail_ping
        self.fail_prepare = fail_prepare
        self.delay = delay
        self.value = value
        self.broken_on_failure = broken_on_failure

        self.lock = threading.Lock()
        self.connects = 0
        self.query_calls = 0
        self.prepares = 0
        self.pings = 0
        self.open_handles = set()
        self.in_flight = 0
        self.max_in_flight = 0
        self.applied_timeouts = []

    def connect(self, profile: ConnectionProfile) -> FakeConnection:
        with self.lock:
            self.connects += 1
            conn_id = self.connects
            refused = self.fail_connect or (
                self.max_connects is not None and conn_id > self.max_connects
            )
            if not refused:
                self.open_handles.add(conn_id)
        if refused:
            raise OSError(f"connection refused ({profile.address})")
        return FakeConnection(conn_id)

    def ping(self, handle: FakeConnection) -> None:
        with self.lock:
            self.pings += 1
        if self.fail_ping:
            raise OSError("server has gone away")

    def _query(self, handle: FakeConnection) -> Any:
        with self.lock:
            self.query_calls += 1
            call = self.query_calls
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if handle.timeout is not None and self.delay > handle.timeout:
                time.sleep(handle.timeout)
                raise TimeoutError(f"statement timeout after {handle.timeout}s")
            if self.delay:
                time.sleep(self.delay)
            if call in self.fail_queries:
                raise RuntimeError(f"injected failure on call {call}")
            return self.value
        finally:
            with self.lock:
                self.in_flight -= 1

    def execute_scalar(self, handle: FakeConnection, sql: str) -> Any:
        return self._query(handle)

    def execute_rows(self, handle: FakeConnection, sql: str) -> int:
        self._query(handle)
        return 3

    def prepare(self, handle: FakeConnection, sql: str) -> Any:
        if self.fail_prepare:
            raise RuntimeError(f"syntax error in {sql!r}")
        with self.lock:
            self.prepares += 1
        return (handle, sql)

    def execute_bound(self, stmt: Any, args) -> Any:
        return self._query(stmt[0])

    def apply_timeout(self, handle: FakeConnection, seconds: float) -> None:
        handle.timeout = seconds
        with self.lock:
            self.applied_timeouts.append((handle.conn_id, seconds))

    def connection_broken(self, handle: FakeConnection, error: Exception) -> bool:
        return self.broken_on_failure

    def close(self, handle: FakeConnection) -> None:
        handle.closed = True
        with self.lock:
            self.open_handles.discard(handle.conn_id)


def make_profile(name: str = "scripted", **overrides) -> ConnectionProfile:
    fields = dict(
        name=name,
        driver="scripted",
        host="localhost",
        port=3306,
        username="root",
        password="let-me-in",
        database="protocols",
        pool=PoolLimits(max_open=10, max_idle=5, acquire_timeout=5.0),
    )
    fields.update(overrides)
    return ConnectionProfile(**fields)


@pytest.fixture
def driver() -> ScriptedDriver:
    return ScriptedDriver()


@pytest.fixture
def profile() -> ConnectionProfile:
    return make_profile()


@pytest.fixture
def single_conn_profile() -> ConnectionProfile:
    return make_profile(
        "single", pool=PoolLimits(max_open=1, max_idle=1, acquire_timeout=5.0)
    )


def make_result(label: str, count: int, latency_ms: float = 1.0, failures: int = 0,
                profile: Optional[ConnectionProfile] = None,
                state: RunState = RunState.DONE,
                stop_reason: StopReason = StopReason.BUDGET) -> RunResult:
    """RunResult with ``count`` samples of identical latency."""
    samples = [Sample(duration_ms=latency_ms, success=True) for _ in range(count - failures)]
    samples += [Sample(duration_ms=latency_ms, success=False, error="boom")
                for _ in range(failures)]
    return RunResult(
        label=label,
        profile=profile or make_profile(label),
        operation=ScalarQuery("select 1"),
        concurrency=1,
        iterations=count,
        state=state,
        stop_reason=stop_reason,
        samples=tuple(samples),
        wall_seconds=count * latency_ms / 1000.0,
    )
