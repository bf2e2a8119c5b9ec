"""
Console table export for comparison reports, formatted with tabulate.
"""

from datetime import datetime
from pathlib import Path
from typing import Optional

from tabulate import tabulate

from protocol_bench.report import TABLE_HEADERS, ComparisonReport


def render_table(report: ComparisonReport, baseline: Optional[str] = None) -> str:
    """
    Format a report as a console table.

    Example:
        >>> print(render_table(report))
        Configuration      Samples    Errors    Error %    Mean (ms)  ...
        ---------------  ---------  --------  ---------  -----------
        plain/query           1000         0       0.00        0.412  ...
    """
    output = []
    output.append("=" * 70)
    output.append("Protocol Benchmark Comparison")
    output.append("=" * 70)
    output.append(f"Report ID: {report.report_id}")
    output.append(f"Timestamp: {report.created_at.isoformat()}")
    output.append("")
    output.append(tabulate(report.rows(), headers=TABLE_HEADERS, tablefmt="simple"))

    if baseline is not None:
        ratios = report.relative_to(baseline)
        output.append("")
        output.append(f"Relative to {baseline}:")
        output.append(tabulate(
            [[label, r["mean"], r["p50"], r["p95"], r["p99"]] for label, r in ratios.items()],
            headers=["Configuration", "Mean", "P50", "P95", "P99"],
            tablefmt="simple",
            floatfmt=".2f",
        ))

    for label, result in report.items():
        if result.aborted:
            output.append("")
            output.append(
                f"! {label}: aborted after {result.sample_count} samples "
                f"({result.stop_reason.value}: {result.abort_reason})"
            )

    output.append("=" * 70)
    return "\n".join(output)


def export_table(report: ComparisonReport, output_dir: str = "results/tables",
                 baseline: Optional[str] = None) -> str:
    """
    Render the report and save it to a timestamped text file.

    Returns:
        Formatted table string
    """
    full_output = render_table(report, baseline=baseline)

    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
    filepath = output_path / f"comparison_{timestamp}.txt"

    with open(filepath, 'w') as f:
        f.write(full_output)

    return full_output
