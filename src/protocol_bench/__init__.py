"""
Cross-Protocol Client Benchmark

Measures the per-operation cost of protocol-level choices, each isolated
from the others:
- compressed vs. uncompressed transport
- ad-hoc query vs. prepared statement
- native server vs. protocol-emulating server
"""

__version__ = "0.1.0"

from protocol_bench.config import BenchmarkCase, RunConfig, RunResult, RunState, Sample, StopReason
from protocol_bench.errors import (
    BenchmarkError,
    ComparisonFailure,
    ConnectFailure,
    InvalidProfile,
    PrepareFailure,
    QueryFailure,
)
from protocol_bench.operations import (
    LivenessCheck,
    MultiRowQuery,
    OperationDriver,
    PreparedQuery,
    ScalarQuery,
)
from protocol_bench.profile import ConnectionProfile, PoolLimits
from protocol_bench.report import Comparator, ComparisonReport
from protocol_bench.runner import BenchmarkRunner
from protocol_bench.session import Session

__all__ = [
    "__version__",
    "BenchmarkCase",
    "BenchmarkError",
    "BenchmarkRunner",
    "Comparator",
    "ComparisonFailure",
    "ComparisonReport",
    "ConnectFailure",
    "ConnectionProfile",
    "InvalidProfile",
    "LivenessCheck",
    "MultiRowQuery",
    "OperationDriver",
    "PoolLimits",
    "PreparedQuery",
    "PrepareFailure",
    "QueryFailure",
    "RunConfig",
    "RunResult",
    "RunState",
    "Sample",
    "ScalarQuery",
    "Session",
    "StopReason",
]
