"""
JSON export for comparison reports.
"""

import json
from datetime import datetime
from pathlib import Path

from protocol_bench.report import ComparisonReport


def export_json(report: ComparisonReport, output_dir: str = "results/json") -> str:
    """
    Export comparison report as JSON file.

    Args:
        report: ComparisonReport to export
        output_dir: Directory for JSON output

    Returns:
        Path to created JSON file

    Example:
        >>> filepath = export_json(report)
        >>> # Creates: results/json/comparison_TIMESTAMP.json
    """
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
    filepath = output_path / f"comparison_{timestamp}.json"

    with open(filepath, 'w') as f:
        json.dump(report.to_json(), f, indent=2, default=str)

    return str(filepath)
