"""
Unit Tests for the Strategy Registry

Usage:
    pytest tests/engines/test_strategies.py -v
"""

import pytest

from robust_validation.data_loader import bars_to_frame
from robust_validation.engines import available_strategy_keys, resolve_strategies
from robust_validation.exceptions import UnknownStrategyError


class TestRegistry:
    """Test strategy lookup."""

    def test_available_keys(self):
        assert available_strategy_keys() == ["sma_crossover", "rsi_reversion", "bollinger_reversion"]

    def test_resolve_in_key_order(self):
        strategies = resolve_strategies(["rsi_reversion", "sma_crossover"])
        assert [s.key for s in strategies] == ["rsi_reversion", "sma_crossover"]

    def test_unknown_keys_reported_together(self):
        """Every unknown key is listed in one error."""
        with pytest.raises(UnknownStrategyError, match="Unknown strategy key\\(s\\): foo, bar") as exc_info:
            resolve_strategies(["foo", "sma_crossover", "bar"])
        assert exc_info.value.missing_keys == ["foo", "bar"]

    def test_param_overrides(self):
        strategy = resolve_strategies(["bollinger_reversion"], {"bollinger_reversion": {"bbPeriod": 24}})[0]
        assert strategy.default_params["bbPeriod"] == 24
        assert strategy.default_params["bbStdDev"] == 2

    def test_walk_forward_params(self):
        sma, rsi = resolve_strategies(["sma_crossover", "rsi_reversion"])
        assert sma.walk_forward_params == ["fastPeriod", "slowPeriod", "useTrendFilter"]
        assert rsi.walk_forward_params is None


class TestSignals:
    """Test signal shapes."""

    @pytest.mark.parametrize("key", ["sma_crossover", "rsi_reversion", "bollinger_reversion"])
    def test_signals_align_with_frame(self, wave_bars, key):
        strategy = resolve_strategies([key])[0]
        frame = bars_to_frame(wave_bars)
        entries, exits = strategy.generate_signals(frame, strategy.default_params)

        assert len(entries) == len(frame)
        assert len(exits) == len(frame)
        assert entries.dtype == bool
        assert entries.any()
