"""
Integration Tests for StressTestRunner

Runs the three stress sections against a dataset file, with the seeded
search replaced by a prepared finder and the real backtest engine used for
blind backtests and walk-forward optimization.

Usage:
    pytest tests/validation/test_stress_test_runner.py -v
"""

import asyncio
import json

import numpy as np
import pytest

from robust_validation.engines import resolve_strategies
from robust_validation.exceptions import DatasetError, UnknownStrategyError
from robust_validation.validation import StressTestOptions, StressTestRunner
from tests.conftest import PreparedFinder, build_bars, passing_run


# ============================================================================
# Fixtures
# ============================================================================

def write_dataset(path, count):
    np.random.seed(42)
    t = np.arange(count)
    closes = 100 + 0.01 * t + 5 * np.sin(t / 12.0) + np.random.normal(0, 0.3, count)
    rows = [[b.time, b.open, b.high, b.low, b.close, b.volume] for b in build_bars(closes)]
    path.write_text(json.dumps({"symbol": "SOLUSDT", "interval": "1h", "data": rows}))
    return path


@pytest.fixture
def dataset_path(tmp_path):
    """1200 closed hourly SOLUSDT bars."""
    return write_dataset(tmp_path / "SOLUSDT-1h.json", 1200)


@pytest.fixture
def prepared_finder():
    """Seeds 1-3 pass with SMA defaults, the rest find nothing."""
    defaults = resolve_strategies(["sma_crossover"])[0].default_params
    return PreparedFinder({seed: passing_run(seed, dict(defaults)) for seed in (1, 2, 3)})


def make_options(data_path, out_dir, **overrides):
    options = dict(
        data_path=str(data_path),
        strategy_key="sma_crossover",
        seeds=[1, 2, 3, 4],
        out_dir=str(out_dir),
        wf_optimization_window_bars=600,
        wf_test_window_bars=300,
        wf_max_combinations=80,
    )
    options.update(overrides)
    return StressTestOptions(**options)


# ============================================================================
# Options
# ============================================================================

class TestStressTestOptions:
    """Test option normalization."""

    def test_search_sizes_clamped(self, tmp_path):
        options = StressTestOptions(
            data_path="x.json",
            finder_max_runs=5,
            wf_max_combinations=10,
            wf_optimization_window_bars=10,
            wf_test_window_bars=10,
        )
        assert options.finder_settings().max_runs == 20
        wf = options.walk_forward_settings()
        assert wf.max_combinations == 80
        assert wf.optimization_window_bars == 100
        assert wf.test_window_bars == 50

    def test_defaults(self):
        options = StressTestOptions(data_path="x.json", tick_size=0, seeds=[])
        assert options.tick_size == 0.01
        assert options.seeds == [1337, 7331, 2026, 4242, 9001]
        assert options.strategy_key == "sma_crossover"

    def test_settings_overrides(self):
        options = StressTestOptions(data_path="x.json", settings_overrides={"trade_direction": "short"})
        assert options.backtest_settings().trade_direction == "short"

    def test_requires_data_path(self):
        with pytest.raises(ValueError):
            StressTestOptions(data_path="")


# ============================================================================
# Runs
# ============================================================================

class TestStressTestRunner:
    """Test full stress runs."""

    def test_run_writes_report(self, dataset_path, tmp_path, prepared_finder):
        runner = StressTestRunner(finder=prepared_finder)
        out_dir = tmp_path / "out"

        report, path = asyncio.run(runner.run(make_options(dataset_path, out_dir)))

        assert path == out_dir / "solusdt-1h-sma_crossover-stress.json"
        payload = json.loads(path.read_text())
        assert payload["inputs"]["symbol"] == "SOLUSDT"
        assert payload["inputs"]["split"]["trainBars"] == 840
        assert payload["inputs"]["split"]["blindBars"] == 360
        assert payload["inputs"]["trading"]["slippageBps"] >= 1.0
        assert payload["oos70_30"]["trainSeedPassCount"] == 3
        assert payload["feeSlippageSensitivity"]["seedPassCount"] == 3
        assert payload["walkForward3m1m"]["totalWindows"] == 2
        assert payload["overall"]["verdict"] == report.verdict
        for reason in report.fail_reasons:
            assert reason.split(":")[0] in ("oos70_30", "walkForward3m1m", "feeSlippageSensitivity")

        # OOS searches see the train split, sensitivity searches the full series
        assert [call[0] for call in prepared_finder.calls] == [840] * 4 + [1200] * 4
        assert {call[3] for call in prepared_finder.calls} == {"1h"}

    def test_second_run_writes_sibling(self, dataset_path, tmp_path, prepared_finder):
        runner = StressTestRunner(finder=prepared_finder)
        out_dir = tmp_path / "out"

        _, first = asyncio.run(runner.run(make_options(dataset_path, out_dir)))
        _, second = asyncio.run(runner.run(make_options(dataset_path, out_dir)))

        assert first != second
        assert second.name == "solusdt-1h-sma_crossover-stress-2.json"

    def test_too_few_bars(self, tmp_path, prepared_finder):
        path = write_dataset(tmp_path / "short.json", 500)
        with pytest.raises(DatasetError, match="Not enough bars"):
            asyncio.run(StressTestRunner(finder=prepared_finder).run(make_options(path, tmp_path)))

    def test_unknown_strategy(self, dataset_path, tmp_path, prepared_finder):
        with pytest.raises(UnknownStrategyError):
            asyncio.run(StressTestRunner(finder=prepared_finder).run(
                make_options(dataset_path, tmp_path, strategy_key="nope")
            ))
