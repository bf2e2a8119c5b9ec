"""Reporting sinks for ComparisonReport."""

from protocol_bench.output.json_exporter import export_json
from protocol_bench.output.table_exporter import export_table, render_table

__all__ = ["export_json", "export_table", "render_table"]
