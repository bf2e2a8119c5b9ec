"""
Metrics calculation utilities.

Calculates, from an immutable sample sequence:
- Latency percentiles (P50, P95, P99), mean, min, max, stdev
- Error rate
- QPS (Queries Per Second)
"""

from dataclasses import asdict, dataclass
from typing import Dict, List, Sequence

import numpy as np


@dataclass(frozen=True)
class RunStats:
    """Aggregate statistics for one RunResult. Latencies in milliseconds."""
    count: int
    successes: int
    failures: int
    error_rate: float
    mean_ms: float
    min_ms: float
    max_ms: float
    stdev_ms: float
    p50_ms: float
    p95_ms: float
    p99_ms: float
    qps: float

    def to_json(self) -> Dict[str, float]:
        return asdict(self)


def calculate_metrics(timings: List[float]) -> Dict[str, float]:
    """
    Calculate latency metrics from timing measurements.

    Args:
        timings: List of operation times in milliseconds

    Returns:
        Dictionary with p50_ms, p95_ms, p99_ms, mean_ms, min_ms, max_ms,
        stdev_ms, qps (serial rate implied by the timings) and count

    Example:
        >>> metrics = calculate_metrics([10.0, 12.0, 15.0, 11.0, 13.0])
        >>> metrics['p50_ms']
        12.0
    """
    if not timings:
        return {
            'p50_ms': 0.0,
            'p95_ms': 0.0,
            'p99_ms': 0.0,
            'mean_ms': 0.0,
            'min_ms': 0.0,
            'max_ms': 0.0,
            'stdev_ms': 0.0,
            'qps': 0.0,
            'count': 0
        }

    timings_array = np.asarray(timings, dtype=float)

    # One call keeps p50 <= p95 <= p99 for linear interpolation
    p50, p95, p99 = (float(v) for v in np.percentile(timings_array, [50, 95, 99]))

    total_time_s = float(timings_array.sum()) / 1000.0
    qps = len(timings) / total_time_s if total_time_s > 0 else 0.0

    return {
        'p50_ms': p50,
        'p95_ms': p95,
        'p99_ms': p99,
        'mean_ms': float(timings_array.mean()),
        'min_ms': float(timings_array.min()),
        'max_ms': float(timings_array.max()),
        'stdev_ms': float(timings_array.std(ddof=1)) if len(timings) > 1 else 0.0,
        'qps': qps,
        'count': len(timings)
    }


def summarize(samples: Sequence, wall_seconds: float = 0.0) -> RunStats:
    """
    Aggregate a sample sequence.

    Latency statistics use successful samples only. QPS is samples per
    wall-clock second when the wall time is known (concurrent runs),
    otherwise the serial rate implied by the latencies.
    """
    count = len(samples)
    timings = [s.duration_ms for s in samples if s.success]
    failures = count - len(timings)
    metrics = calculate_metrics(timings)

    if wall_seconds > 0:
        qps = count / wall_seconds
    else:
        qps = metrics['qps']

    return RunStats(
        count=count,
        successes=len(timings),
        failures=failures,
        error_rate=failures / count if count else 0.0,
        mean_ms=metrics['mean_ms'],
        min_ms=metrics['min_ms'],
        max_ms=metrics['max_ms'],
        stdev_ms=metrics['stdev_ms'],
        p50_ms=metrics['p50_ms'],
        p95_ms=metrics['p95_ms'],
        p99_ms=metrics['p99_ms'],
        qps=qps,
    )


def relative_change(value: float, baseline: float) -> float:
    """Ratio of ``value`` to ``baseline`` (0.0 when the baseline is zero)."""
    if baseline == 0:
        return 0.0
    return value / baseline
