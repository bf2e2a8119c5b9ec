"""
Comparator and ComparisonReport.

Statistics are recomputed from each RunResult's samples; the comparator
refuses to put side by side runs whose sample counts differ by more than the
configured tolerance, since unequal sample sizes bias percentile comparisons.
"""

from datetime import datetime
from typing import Dict, Iterator, List, Optional, Tuple

import structlog

from protocol_bench.config import RunResult
from protocol_bench.errors import ComparisonFailure
from protocol_bench.metrics import RunStats, relative_change

logger = structlog.get_logger()

TABLE_HEADERS = [
    "Configuration", "Samples", "Errors", "Error %", "Mean (ms)",
    "P50 (ms)", "P95 (ms)", "P99 (ms)", "QPS",
]


class ComparisonReport:
    """Ordered mapping label -> RunResult with derived statistics."""

    def __init__(self, results: Dict[str, RunResult], tolerance: float = 0.0,
                 created_at: Optional[datetime] = None):
        self._results = dict(results)
        self._stats = {label: result.stats() for label, result in self._results.items()}
        self.tolerance = tolerance
        self.created_at = created_at or datetime.now()
        self.report_id = f"comparison_{self.created_at.strftime('%Y%m%d_%H%M%S')}"

    def __getitem__(self, label: str) -> RunResult:
        return self._results[label]

    def __iter__(self) -> Iterator[str]:
        return iter(self._results)

    def __len__(self) -> int:
        return len(self._results)

    def labels(self) -> List[str]:
        return list(self._results)

    def items(self) -> Iterator[Tuple[str, RunResult]]:
        return iter(self._results.items())

    def stats(self, label: str) -> RunStats:
        return self._stats[label]

    def relative_to(self, baseline_label: str) -> Dict[str, Dict[str, float]]:
        """
        Latency ratios of every configuration against ``baseline_label``.

        A ratio above 1.0 means slower than the baseline.
        """
        if baseline_label not in self._stats:
            raise KeyError(f"Unknown baseline {baseline_label!r}")
        base = self._stats[baseline_label]
        return {
            label: {
                "mean": relative_change(stats.mean_ms, base.mean_ms),
                "p50": relative_change(stats.p50_ms, base.p50_ms),
                "p95": relative_change(stats.p95_ms, base.p95_ms),
                "p99": relative_change(stats.p99_ms, base.p99_ms),
            }
            for label, stats in self._stats.items()
        }

    def rows(self) -> List[List]:
        """
        Export report as table rows for console display.

        Returns:
            List of rows matching TABLE_HEADERS
        """
        return [
            [
                label,
                stats.count,
                stats.failures,
                f"{stats.error_rate * 100:.2f}",
                f"{stats.mean_ms:.3f}",
                f"{stats.p50_ms:.3f}",
                f"{stats.p95_ms:.3f}",
                f"{stats.p99_ms:.3f}",
                f"{stats.qps:.1f}",
            ]
            for label, stats in self._stats.items()
        ]

    def to_json(self) -> Dict:
        """
        Export report as JSON.

        Returns:
            Dict suitable for json.dumps()
        """
        return {
            "report_id": self.report_id,
            "timestamp": self.created_at.isoformat(),
            "tolerance": self.tolerance,
            "results": {
                label: result.to_json() for label, result in self._results.items()
            },
        }


class Comparator:
    """
    Collect RunResults keyed by configuration label and build a report.

    Args:
        tolerance: maximum relative difference between sample counts
            (0.0 requires identical counts)
    """

    def __init__(self, tolerance: float = 0.0):
        if not 0.0 <= tolerance <= 1.0:
            raise ValueError(f"tolerance must be within 0.0-1.0, got {tolerance}")
        self.tolerance = tolerance
        self._results: Dict[str, RunResult] = {}

    def add(self, label: str, result: RunResult) -> None:
        if label in self._results:
            raise ValueError(f"Duplicate configuration label: {label!r}")

        for other_label, other in self._results.items():
            if (other.profile == result.profile
                    and other.operation == result.operation
                    and other.concurrency == result.concurrency):
                logger.warning("Same configuration benchmarked under two labels",
                               label=label, duplicate_of=other_label)

        self._results[label] = result

    def add_all(self, results: List[RunResult]) -> None:
        for result in results:
            self.add(result.label, result)

    def check_sample_counts(self) -> None:
        """Raise ComparisonFailure when counts differ beyond tolerance."""
        counts = {label: r.sample_count for label, r in self._results.items()}
        largest = max(counts.values())
        smallest = min(counts.values())
        if largest == 0:
            raise ComparisonFailure("No samples collected in any configuration")

        spread = (largest - smallest) / largest
        if spread > self.tolerance:
            detail = ", ".join(f"{label}={count}" for label, count in counts.items())
            raise ComparisonFailure(
                f"Sample counts differ by {spread:.1%} (tolerance {self.tolerance:.1%}): {detail}"
            )

    def build(self) -> ComparisonReport:
        """
        Raises:
            ComparisonFailure: nothing to compare or sample counts out of tolerance
        """
        if not self._results:
            raise ComparisonFailure("No results to compare")

        self.check_sample_counts()

        aborted = [label for label, r in self._results.items() if r.aborted]
        if aborted:
            logger.warning("Comparison includes aborted runs", labels=aborted)

        return ComparisonReport(self._results, tolerance=self.tolerance)
