"""
Run configuration and data models for protocol-bench.

Samples are immutable; a RunResult's statistics are always recomputed from
its sample sequence.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from protocol_bench.metrics import RunStats, summarize
from protocol_bench.profile import ConnectionProfile


class RunState(Enum):
    """Benchmark run states"""
    IDLE = "idle"
    WARMING_UP = "warming_up"
    RUNNING = "running"
    DRAINING = "draining"
    DONE = "done"
    ABORTED = "aborted"


class StopReason(Enum):
    """Why the timed phase ended"""
    BUDGET = "budget"
    DEADLINE = "deadline"
    CANCELLED = "cancelled"
    ERROR_RATE = "error_rate"
    CONNECT_FAILURE = "connect_failure"
    PREPARE_FAILURE = "prepare_failure"


@dataclass
class RunConfig:
    """Configuration for one benchmark run"""
    iterations: Optional[int] = 1000
    concurrency: int = 1
    warmup_iterations: int = 0
    duration: Optional[float] = None
    include_acquire: bool = False
    operation_timeout: Optional[float] = None
    max_error_rate: Optional[float] = None
    error_rate_min_samples: int = 20

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation error messages (empty if valid)
        """
        errors = []

        if self.iterations is None and self.duration is None:
            errors.append("either iterations or duration must be set")

        if self.iterations is not None and self.iterations <= 0:
            errors.append(f"iterations must be > 0, got {self.iterations}")

        if self.duration is not None and self.duration <= 0:
            errors.append(f"duration must be > 0, got {self.duration}")

        if self.concurrency <= 0:
            errors.append(f"concurrency must be > 0, got {self.concurrency}")

        if self.warmup_iterations < 0:
            errors.append(f"warmup_iterations cannot be negative, got {self.warmup_iterations}")

        if self.operation_timeout is not None and self.operation_timeout <= 0:
            errors.append(f"operation_timeout must be > 0, got {self.operation_timeout}")

        if self.max_error_rate is not None and not (0.0 <= self.max_error_rate <= 1.0):
            errors.append(f"max_error_rate must be within 0.0-1.0, got {self.max_error_rate}")

        if self.error_rate_min_samples < 1:
            errors.append(
                f"error_rate_min_samples must be >= 1, got {self.error_rate_min_samples}"
            )

        return errors


@dataclass(frozen=True)
class Sample:
    """One measured outcome of a single operation"""
    duration_ms: float
    success: bool
    error: Optional[str] = None
    worker: int = 0
    started_at: float = 0.0

    def validate(self) -> List[str]:
        errors = []

        if self.duration_ms < 0:
            errors.append(f"duration_ms cannot be negative, got {self.duration_ms}")

        if not self.success and self.error is None:
            errors.append("error required when success is False")

        return errors


@dataclass(frozen=True)
class BenchmarkCase:
    """One configuration under test: a label, a profile and an operation"""
    label: str
    profile: ConnectionProfile
    operation: Any


@dataclass(frozen=True)
class RunResult:
    """Samples for one (profile, operation, concurrency) triple"""
    label: str
    profile: ConnectionProfile
    operation: Any
    concurrency: int
    iterations: Optional[int]
    state: RunState
    stop_reason: StopReason
    samples: Tuple[Sample, ...] = ()
    abort_reason: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: datetime = field(default_factory=datetime.now)
    wall_seconds: float = 0.0

    @property
    def sample_count(self) -> int:
        return len(self.samples)

    @property
    def aborted(self) -> bool:
        return self.state is RunState.ABORTED

    @property
    def complete(self) -> bool:
        """Every budgeted iteration produced a sample."""
        return (
            self.state is RunState.DONE
            and self.iterations is not None
            and len(self.samples) == self.iterations
        )

    def stats(self) -> RunStats:
        return summarize(self.samples, self.wall_seconds)

    def to_json(self) -> Dict:
        stats = self.stats()
        return {
            "label": self.label,
            "profile": self.profile.describe(),
            "operation": self.operation.describe(),
            "concurrency": self.concurrency,
            "iterations": self.iterations,
            "state": self.state.value,
            "stop_reason": self.stop_reason.value,
            "abort_reason": self.abort_reason,
            "started_at": self.started_at.isoformat(),
            "duration_seconds": self.wall_seconds,
            "results": stats.to_json(),
        }
