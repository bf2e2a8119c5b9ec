"""
Benchmark runner.

Implements:
- Untimed warm-up iterations
- Sequential timed loop (concurrency == 1)
- Parallel workers sharing one iteration budget and/or a wall-clock deadline
- Run state machine: IDLE -> WARMING_UP -> RUNNING -> DRAINING -> DONE | ABORTED

Workers only share the Session's pool. Samples travel through one queue to
a single aggregator (the calling thread), so the result set is never
mutated concurrently.
"""

import queue
import threading
import time
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

import structlog

from protocol_bench.config import (
    BenchmarkCase,
    RunConfig,
    RunResult,
    RunState,
    Sample,
    StopReason,
)
from protocol_bench.drivers import DatabaseDriver
from protocol_bench.errors import ConnectFailure, PoolClosed, PrepareFailure
from protocol_bench.operations import OperationDriver, OperationSpec
from protocol_bench.profile import ConnectionProfile
from protocol_bench.session import Session

logger = structlog.get_logger()

_FATAL = (ConnectFailure, PrepareFailure, PoolClosed)

_ABORTING = {
    StopReason.CONNECT_FAILURE,
    StopReason.PREPARE_FAILURE,
    StopReason.ERROR_RATE,
}


class _Budget:
    """Shared iteration budget. ``None`` total means unbounded."""

    def __init__(self, total: Optional[int]):
        self._remaining = total
        self._lock = threading.Lock()

    def claim(self) -> bool:
        if self._remaining is None:
            return True
        with self._lock:
            if self._remaining <= 0:
                return False
            self._remaining -= 1
            return True


class _WorkerDone:
    __slots__ = ("worker",)

    def __init__(self, worker: int):
        self.worker = worker


class _WorkerFailure:
    __slots__ = ("worker", "error")

    def __init__(self, worker: int, error: BaseException):
        self.worker = worker
        self.error = error


def _failure_reason(error: BaseException) -> StopReason:
    if isinstance(error, PrepareFailure):
        return StopReason.PREPARE_FAILURE
    return StopReason.CONNECT_FAILURE


class BenchmarkRunner:
    """
    Drive one OperationSpec against one ConnectionProfile per run.

    A runner instance executes one run at a time; ``cancel()`` may be called
    from any thread while a run is in progress.
    """

    def __init__(self, config: RunConfig):
        """
        Args:
            config: Run configuration

        Raises:
            ValueError: If configuration validation fails
        """
        errors = config.validate()
        if errors:
            raise ValueError("Invalid configuration:\n" + "\n".join(errors))

        self.config = config
        self._state = RunState.IDLE
        self._state_lock = threading.Lock()
        self._cancel = threading.Event()

    @property
    def state(self) -> RunState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: RunState) -> None:
        with self._state_lock:
            self._state = state

    def cancel(self) -> None:
        """Stop issuing new operations; the current run drains and returns."""
        logger.info("Cancellation requested")
        self._cancel.set()

    def run(
        self,
        label: str,
        profile: ConnectionProfile,
        operation: OperationSpec,
        driver: Optional[DatabaseDriver] = None,
    ) -> RunResult:
        """
        Execute one benchmark run.

        ConnectFailure and PrepareFailure never escape: they produce an
        ABORTED RunResult holding every sample collected before the abort.
        """
        started_at = datetime.now()
        wall_start = time.perf_counter()
        samples: List[Sample] = []
        self._set_state(RunState.IDLE)

        logger.info("Run starting",
                    label=label,
                    profile=profile.name,
                    operation=operation.kind,
                    iterations=self.config.iterations,
                    concurrency=self.config.concurrency,
                    duration=self.config.duration)

        try:
            try:
                session = Session.open(
                    profile, driver, operation_timeout=self.config.operation_timeout
                )
            except ConnectFailure as e:
                stop_reason, abort_reason = StopReason.CONNECT_FAILURE, str(e)
            else:
                with session:
                    stop_reason, abort_reason, wall_start = self._run_session(
                        session, operation, samples
                    )
        finally:
            self._cancel.clear()

        wall_seconds = time.perf_counter() - wall_start
        state = self._final_state(stop_reason, samples)
        self._set_state(state)

        result = RunResult(
            label=label,
            profile=profile,
            operation=operation,
            concurrency=self.config.concurrency,
            iterations=self.config.iterations,
            state=state,
            stop_reason=stop_reason,
            samples=tuple(samples),
            abort_reason=abort_reason,
            started_at=started_at,
            finished_at=datetime.now(),
            wall_seconds=wall_seconds,
        )

        if state is RunState.ABORTED:
            logger.warning("Run aborted",
                           label=label,
                           reason=stop_reason.value,
                           error=abort_reason,
                           samples_collected=len(samples))
        else:
            stats = result.stats()
            logger.info("Run complete",
                        label=label,
                        stop_reason=stop_reason.value,
                        samples=stats.count,
                        failed=stats.failures,
                        p50_ms=round(stats.p50_ms, 3),
                        p99_ms=round(stats.p99_ms, 3))
        return result

    def run_many(self, cases: Iterable[BenchmarkCase],
                 driver: Optional[DatabaseDriver] = None) -> List[RunResult]:
        """Run each case in isolation, in order."""
        return [
            self.run(case.label, case.profile, case.operation, driver=driver)
            for case in cases
        ]

    def _final_state(self, stop_reason: StopReason, samples: List[Sample]) -> RunState:
        if stop_reason in _ABORTING:
            return RunState.ABORTED
        if stop_reason is StopReason.CANCELLED and not samples:
            return RunState.ABORTED
        return RunState.DONE

    def _run_session(
        self,
        session: Session,
        operation: OperationSpec,
        samples: List[Sample],
    ) -> Tuple[StopReason, Optional[str], float]:
        op_driver = OperationDriver(
            session,
            operation,
            include_acquire=self.config.include_acquire,
            timeout=self.config.operation_timeout,
        )
        try:
            try:
                op_driver.setup()
                self._warmup(op_driver)
            except _FATAL as e:
                return _failure_reason(e), str(e), time.perf_counter()

            self._set_state(RunState.RUNNING)
            wall_start = time.perf_counter()
            if self.config.concurrency == 1:
                stop_reason, abort_reason = self._run_sequential(op_driver, samples, wall_start)
            else:
                stop_reason, abort_reason = self._run_parallel(op_driver, samples, wall_start)
            return stop_reason, abort_reason, wall_start
        finally:
            op_driver.close()

    def _warmup(self, op_driver: OperationDriver) -> None:
        if not self.config.warmup_iterations:
            return
        self._set_state(RunState.WARMING_UP)
        for _ in range(self.config.warmup_iterations):
            if self._cancel.is_set():
                return
            # Failed warm-up samples are discarded; fatal errors propagate
            op_driver.execute()

    def _deadline(self, wall_start: float) -> Optional[float]:
        if self.config.duration is None:
            return None
        return wall_start + self.config.duration

    def _error_rate_exceeded(self, failures: int, count: int) -> bool:
        threshold = self.config.max_error_rate
        if threshold is None or count < self.config.error_rate_min_samples:
            return False
        return failures / count > threshold

    def _run_sequential(
        self,
        op_driver: OperationDriver,
        samples: List[Sample],
        wall_start: float,
    ) -> Tuple[StopReason, Optional[str]]:
        budget = _Budget(self.config.iterations)
        deadline = self._deadline(wall_start)
        failures = 0

        while True:
            if self._cancel.is_set():
                stop_reason = StopReason.CANCELLED
                break
            if deadline is not None and time.perf_counter() >= deadline:
                stop_reason = StopReason.DEADLINE
                break
            if not budget.claim():
                stop_reason = StopReason.BUDGET
                break

            try:
                sample = op_driver.execute()
            except _FATAL as e:
                self._set_state(RunState.DRAINING)
                return _failure_reason(e), str(e)

            samples.append(sample)
            if not sample.success:
                failures += 1
                if self._error_rate_exceeded(failures, len(samples)):
                    self._set_state(RunState.DRAINING)
                    return StopReason.ERROR_RATE, self._error_rate_message(failures, len(samples))

        self._set_state(RunState.DRAINING)
        return stop_reason, None

    def _run_parallel(
        self,
        op_driver: OperationDriver,
        samples: List[Sample],
        wall_start: float,
    ) -> Tuple[StopReason, Optional[str]]:
        budget = _Budget(self.config.iterations)
        deadline = self._deadline(wall_start)
        results: "queue.Queue" = queue.Queue()
        stop = threading.Event()

        def worker(idx: int) -> None:
            try:
                while not stop.is_set() and not self._cancel.is_set():
                    if deadline is not None and time.perf_counter() >= deadline:
                        break
                    if not budget.claim():
                        break
                    results.put(op_driver.execute(worker=idx))
            except BaseException as e:
                results.put(_WorkerFailure(idx, e))
            finally:
                results.put(_WorkerDone(idx))

        threads = [
            threading.Thread(target=worker, args=(idx,), name=f"bench-worker-{idx}", daemon=True)
            for idx in range(self.config.concurrency)
        ]
        for thread in threads:
            thread.start()

        active = len(threads)
        failures = 0
        stop_reason: Optional[StopReason] = None
        abort_reason: Optional[str] = None
        unexpected: Optional[BaseException] = None

        while active:
            item = results.get()

            if isinstance(item, _WorkerDone):
                active -= 1
                self._set_state(RunState.DRAINING)
                continue

            if isinstance(item, _WorkerFailure):
                if stop_reason not in _ABORTING:
                    if isinstance(item.error, _FATAL):
                        stop_reason = _failure_reason(item.error)
                        abort_reason = str(item.error)
                    else:
                        unexpected = unexpected or item.error
                stop.set()
                self._set_state(RunState.DRAINING)
                continue

            # Samples keep arriving while draining: operations that started
            # before the boundary are still counted
            samples.append(item)
            if not item.success:
                failures += 1
                if stop_reason is None and self._error_rate_exceeded(failures, len(samples)):
                    stop_reason = StopReason.ERROR_RATE
                    abort_reason = self._error_rate_message(failures, len(samples))
                    stop.set()
                    self._set_state(RunState.DRAINING)

        for thread in threads:
            thread.join()

        if unexpected is not None:
            raise unexpected

        if stop_reason is None:
            budget_spent = (
                self.config.iterations is not None and len(samples) >= self.config.iterations
            )
            if budget_spent:
                stop_reason = StopReason.BUDGET
            elif self._cancel.is_set():
                stop_reason = StopReason.CANCELLED
            elif deadline is not None and time.perf_counter() >= deadline:
                stop_reason = StopReason.DEADLINE
            else:
                stop_reason = StopReason.BUDGET

        return stop_reason, abort_reason

    def _error_rate_message(self, failures: int, count: int) -> str:
        return (
            f"error rate {failures / count:.1%} exceeded max_error_rate "
            f"{self.config.max_error_rate:.1%} after {count} samples"
        )
