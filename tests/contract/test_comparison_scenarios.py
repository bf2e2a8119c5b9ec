"""
Contract Test: end-to-end benchmark scenarios

REQUIREMENT: A run produces exactly one Sample per budgeted iteration, failed
operations are recorded rather than retried, and the comparator refuses
unequal sample counts unless a tolerance allows them.

Runs against ScriptedDriver so outcomes are deterministic.
"""

import pytest

from protocol_bench.config import BenchmarkCase, RunConfig, RunState, StopReason
from protocol_bench.errors import ComparisonFailure
from protocol_bench.operations import PreparedQuery, ScalarQuery
from protocol_bench.profile import PoolLimits
from protocol_bench.report import Comparator
from protocol_bench.runner import BenchmarkRunner
from protocol_bench.session import Session

from conftest import ScriptedDriver, make_profile


class TestSingleConfiguration:
    """Contract: one configuration, one sample per iteration"""

    def test_hundred_scalar_queries_single_connection(self):
        """100 x 'select 1' over max_open=1 yields 100 successful samples"""
        profile = make_profile(pool=PoolLimits(max_open=1, max_idle=1))
        driver = ScriptedDriver()

        result = BenchmarkRunner(RunConfig(iterations=100)).run(
            "plain", profile, ScalarQuery("select 1"), driver=driver
        )
        stats = result.stats()

        assert result.state is RunState.DONE
        assert stats.count == 100
        assert stats.successes == 100
        assert stats.p99_ms >= stats.p50_ms
        assert driver.connects == 1

    def test_single_injected_failure(self):
        """Failure at call 50 of 100: 99 ok, 1 failed, run still DONE"""
        driver = ScriptedDriver(fail_queries={50})

        result = BenchmarkRunner(RunConfig(iterations=100)).run(
            "flaky", make_profile(), ScalarQuery("select 1"), driver=driver
        )
        stats = result.stats()

        assert result.state is RunState.DONE
        assert result.stop_reason is StopReason.BUDGET
        assert stats.successes == 99
        assert stats.failures == 1
        assert stats.error_rate == pytest.approx(0.01)
        assert result.samples[49].success is False
        assert driver.query_calls == 100

    def test_open_then_close_has_no_side_effects(self):
        driver = ScriptedDriver()
        session = Session.open(make_profile(), driver)
        session.close()

        assert driver.open_handles == set()
        assert driver.query_calls == 0

    def test_prepared_statement_reused(self):
        """A prepared statement is prepared once per connection, not per iteration"""
        profile = make_profile(pool=PoolLimits(max_open=1, max_idle=1))
        driver = ScriptedDriver()

        result = BenchmarkRunner(RunConfig(iterations=200, warmup_iterations=10)).run(
            "bind", profile, PreparedQuery("select title from products where id = ?", (1,)),
            driver=driver,
        )

        assert result.sample_count == 200
        assert driver.prepares == 1


class TestComparison:
    """Contract: comparisons are keyed by label and guarded by sample counts"""

    def test_compression_on_off(self):
        """Compression on/off, 1000 samples each: both labels in insertion order"""
        plain = make_profile("plain")
        cases = [
            BenchmarkCase("plain/query", plain, ScalarQuery("select 123 as id")),
            BenchmarkCase("compressed/query", plain.with_compression(True, name="compressed"),
                          ScalarQuery("select 123 as id")),
        ]
        results = BenchmarkRunner(RunConfig(iterations=1000)).run_many(
            cases, driver=ScriptedDriver()
        )

        comparator = Comparator()
        comparator.add_all(results)
        report = comparator.build()

        assert report.labels() == ["plain/query", "compressed/query"]
        assert all(report.stats(label).count == 1000 for label in report)

    def test_unequal_sample_counts_refused(self):
        """1000 vs 500 samples with zero tolerance raises ComparisonFailure"""
        profile = make_profile()
        big = BenchmarkRunner(RunConfig(iterations=1000)).run(
            "big", profile, ScalarQuery("select 1"), driver=ScriptedDriver()
        )
        small = BenchmarkRunner(RunConfig(iterations=500)).run(
            "small", profile.with_target(port=3307), ScalarQuery("select 1"),
            driver=ScriptedDriver(),
        )

        comparator = Comparator(tolerance=0.0)
        comparator.add("big", big)
        comparator.add("small", small)

        with pytest.raises(ComparisonFailure):
            comparator.build()

    def test_native_vs_emulated_concurrent(self):
        """Same workload against two targets at concurrency 4"""
        native = make_profile("native")
        emulated = native.with_target(port=3307, name="emulated")
        runner = BenchmarkRunner(RunConfig(iterations=400, concurrency=4))

        results = runner.run_many([
            BenchmarkCase("native", native, ScalarQuery("select 1")),
            BenchmarkCase("emulated", emulated, ScalarQuery("select 1")),
        ], driver=ScriptedDriver(delay=0.0005))

        comparator = Comparator()
        comparator.add_all(results)
        report = comparator.build()

        assert [report[label].sample_count for label in report] == [400, 400]
        ratios = report.relative_to("native")
        assert ratios["native"]["p50"] == 1.0
