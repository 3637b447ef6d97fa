"""
Unit Tests for SimpleBacktestEngine

Test Coverage:
  - Next-bar-open fills for long and short trades
  - Warm-up bars (start_index) never open trades
  - End-of-data close
  - Reversals in combined direction mode
  - Determinism

Usage:
    pytest tests/engines/test_backtest_engine.py -v
"""

import pytest

from robust_validation.engines import SimpleBacktestEngine, resolve_strategies
from tests.conftest import ScriptedStrategy


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def engine():
    """Fresh engine instance."""
    return SimpleBacktestEngine()


@pytest.fixture
def entry_exit_strategy():
    """Entry signal on bar 1, exit signal on bar 3."""
    return ScriptedStrategy(entry_bars=[1], exit_bars=[3])


# ============================================================================
# Fills
# ============================================================================

class TestFills:
    """Test trade fills."""

    def test_long_trade_fills_next_open(self, engine, entry_exit_strategy, ramp_bars, settings):
        """Signals on bars 1/3 fill at the opens of bars 2/4."""
        result = engine.run(ramp_bars, entry_exit_strategy, {"length": 10}, settings)

        assert result.total_trades == 1
        trade = result.trades[0]
        assert trade.entry_price == pytest.approx(102.0)
        assert trade.exit_price == pytest.approx(104.0)
        assert trade.exit_reason == "signal"
        assert trade.pnl == pytest.approx(2.0 * 10_000 / 102)
        assert result.final_capital == pytest.approx(10_000 + 2.0 * 10_000 / 102)

    def test_short_trade(self, engine, entry_exit_strategy, ramp_bars, settings):
        """A rising market loses money on the short side."""
        short = settings.with_overrides(trade_direction="short")
        result = engine.run(ramp_bars, entry_exit_strategy, {"length": 10}, short)

        assert result.total_trades == 1
        assert result.trades[0].direction == "short"
        assert result.trades[0].pnl == pytest.approx(-2.0 * 10_000 / 102)

    def test_costs_reduce_pnl(self, engine, entry_exit_strategy, ramp_bars, settings):
        costly = settings.with_overrides(commission_percent=0.1, slippage_bps=5)
        free = engine.run(ramp_bars, entry_exit_strategy, {"length": 10}, settings)
        paid = engine.run(ramp_bars, entry_exit_strategy, {"length": 10}, costly)
        assert paid.net_profit < free.net_profit

    def test_end_of_data_close(self, engine, ramp_bars, settings):
        """An open position closes at the final close."""
        strategy = ScriptedStrategy(entry_bars=[1])
        result = engine.run(ramp_bars, strategy, {"length": 10}, settings)

        assert result.total_trades == 1
        assert result.trades[0].exit_reason == "end_of_data"
        assert result.trades[0].exit_price == pytest.approx(105.0)

    def test_combined_mode_reverses(self, engine, entry_exit_strategy, ramp_bars, settings):
        """In combined mode an exit signal flips the long into a short."""
        combined = settings.with_overrides(trade_direction="combined")
        result = engine.run(ramp_bars, entry_exit_strategy, {"length": 10}, combined)

        assert [t.direction for t in result.trades] == ["long", "short"]
        assert result.trades[0].exit_reason == "reversal"
        assert result.trades[1].exit_reason == "end_of_data"


# ============================================================================
# Warm-up and equity
# ============================================================================

class TestWarmUp:
    """Test start_index handling."""

    def test_signals_before_start_are_ignored(self, engine, entry_exit_strategy, ramp_bars, settings):
        result = engine.run(ramp_bars, entry_exit_strategy, {"length": 10}, settings, start_index=2)
        assert result.total_trades == 0
        assert len(result.equity_curve) == len(ramp_bars) - 2
        assert result.final_capital == settings.initial_capital

    def test_too_short_segment(self, engine, entry_exit_strategy, ramp_bars, settings):
        result = engine.run(ramp_bars[:1], entry_exit_strategy, {"length": 10}, settings)
        assert result.total_trades == 0
        assert result.net_profit == 0

    def test_equity_curve_length(self, engine, entry_exit_strategy, ramp_bars, settings):
        result = engine.run(ramp_bars, entry_exit_strategy, {"length": 10}, settings)
        assert len(result.equity_curve) == len(ramp_bars)
        assert result.equity_curve[0] == settings.initial_capital


class TestDeterminism:
    """Same inputs, same result."""

    @pytest.mark.parametrize("key", ["sma_crossover", "rsi_reversion", "bollinger_reversion"])
    def test_registry_strategies_are_deterministic(self, engine, wave_bars, settings, key):
        strategy = resolve_strategies([key])[0]
        params = strategy.default_params
        first = engine.run(wave_bars, strategy, params, settings)
        second = engine.run(wave_bars, strategy, params, settings)

        assert first.to_dict() == second.to_dict()
        assert first.net_profit == pytest.approx(first.final_capital - first.initial_capital)
