"""
Command line entry point.

Runs every case of a YAML suite, compares the results and prints/exports
the comparison. Exit codes: 0 success, 1 aborted run or refused
comparison, 2 invalid suite.
"""

import argparse
import dataclasses
import sys
from typing import List, Optional

import structlog

from protocol_bench import __version__
from protocol_bench.errors import BenchmarkError, ComparisonFailure, InvalidProfile, SuiteError
from protocol_bench.logging_config import configure_logging
from protocol_bench.output import export_json, export_table, render_table
from protocol_bench.report import Comparator
from protocol_bench.runner import BenchmarkRunner
from protocol_bench.session import Session
from protocol_bench.suite import Suite, check_tolerance, load_suite

logger = structlog.get_logger()

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="protocol-bench",
        description="Cross-protocol database client benchmark",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run every case of a suite
  protocol-bench run suites/mysql.yaml

  # Override iteration count and use 8 concurrent workers
  protocol-bench run suites/mysql.yaml --iterations 5000 --concurrency 8

  # Only compare compression on/off
  protocol-bench run suites/mysql.yaml --only plain/query compressed/query

  # Verify every profile is reachable
  protocol-bench check suites/mysql.yaml
        """
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument(
        '--log-level',
        type=str,
        default=None,
        help='Log level (default: $PROTOCOL_BENCH_LOG_LEVEL or INFO)'
    )
    parser.add_argument(
        '--json-logs',
        action='store_true',
        help='Emit logs as JSON lines'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    run = subparsers.add_parser('run', help='Run a benchmark suite')
    run.add_argument('suite', help='Path to YAML suite file')
    run.add_argument('--iterations', type=int, help='Timed iterations per case')
    run.add_argument('--warmup', type=int, help='Untimed warm-up iterations per case')
    run.add_argument('--concurrency', type=int, help='Concurrent workers per case')
    run.add_argument('--duration', type=float, help='Wall-clock limit per case in seconds')
    run.add_argument('--timeout', type=float, help='Per-operation timeout in seconds')
    run.add_argument(
        '--include-acquire',
        action='store_true',
        help='Count pool acquisition time in each sample'
    )
    run.add_argument(
        '--tolerance',
        type=float,
        help='Allowed relative difference in sample counts (default: suite value or 0.0)'
    )
    run.add_argument('--baseline', type=str, help='Case label to compute ratios against')
    run.add_argument('--only', nargs='+', metavar='LABEL', help='Run only these case labels')
    run.add_argument('--output-json', type=str, help='Directory for JSON output')
    run.add_argument('--output-table', type=str, help='Directory for table output')

    check = subparsers.add_parser('check', help='Open and close a session for every profile')
    check.add_argument('suite', help='Path to YAML suite file')

    return parser


def apply_overrides(suite: Suite, args: argparse.Namespace) -> Suite:
    """Apply command line overrides to the suite's run settings."""
    overrides = {}
    if args.iterations is not None:
        overrides['iterations'] = args.iterations
    if args.warmup is not None:
        overrides['warmup_iterations'] = args.warmup
    if args.concurrency is not None:
        overrides['concurrency'] = args.concurrency
    if args.duration is not None:
        overrides['duration'] = args.duration
    if args.timeout is not None:
        overrides['operation_timeout'] = args.timeout
    if args.include_acquire:
        overrides['include_acquire'] = True

    run_config = dataclasses.replace(suite.run_config, **overrides)
    errors = run_config.validate()
    if errors:
        raise SuiteError("Invalid run settings:\n" + "\n".join(errors))

    suite = dataclasses.replace(suite, run_config=run_config)
    if args.tolerance is not None:
        suite = dataclasses.replace(suite, tolerance=check_tolerance(args.tolerance))
    if args.only:
        suite = suite.select(args.only)
    if args.baseline is not None:
        if args.baseline not in {case.label for case in suite.cases}:
            raise SuiteError(f"Baseline {args.baseline!r} is not a case label")
        suite = dataclasses.replace(suite, baseline=args.baseline)
    return suite


def cmd_run(args: argparse.Namespace) -> int:
    suite = apply_overrides(load_suite(args.suite), args)

    runner = BenchmarkRunner(suite.run_config)
    try:
        results = runner.run_many(suite.cases)
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return EXIT_FAILED

    comparator = Comparator(tolerance=suite.tolerance)
    comparator.add_all(results)
    try:
        report = comparator.build()
    except ComparisonFailure as e:
        logger.error("Comparison refused", error=str(e))
        for result in results:
            print(f"{result.label}: {result.state.value}, {result.sample_count} samples"
                  + (f" ({result.abort_reason})" if result.abort_reason else ""))
        return EXIT_FAILED

    if args.output_table:
        print(export_table(report, args.output_table, baseline=suite.baseline))
    else:
        print(render_table(report, baseline=suite.baseline))

    if args.output_json:
        path = export_json(report, args.output_json)
        logger.info("JSON report written", path=path)

    return EXIT_FAILED if any(r.aborted for r in results) else EXIT_OK


def cmd_check(args: argparse.Namespace) -> int:
    suite = load_suite(args.suite)
    failures = 0
    for name, profile in suite.profiles.items():
        try:
            with Session.open(profile):
                pass
        except BenchmarkError as e:
            failures += 1
            print(f"FAIL {name} ({profile.address}): {e}")
        else:
            print(f"OK   {name} ({profile.address})")
    return EXIT_FAILED if failures else EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        configure_logging(args.log_level, json_logs=args.json_logs)
    except ValueError as e:
        parser.error(str(e))

    commands = {'run': cmd_run, 'check': cmd_check}
    try:
        return commands[args.command](args)
    except (SuiteError, InvalidProfile) as e:
        print(f"Invalid suite: {e}", file=sys.stderr)
        return EXIT_INVALID


if __name__ == "__main__":
    sys.exit(main())
