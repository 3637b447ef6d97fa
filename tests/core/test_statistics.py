"""
Unit Tests for Statistics Helpers

Test Coverage:
  - Finite-number coercion
  - Median over finite values, ordering and outlier robustness
  - Sharpe ratio guard rails
  - Drawdown and profit factor
  - Reason count ordering

Usage:
    pytest tests/core/test_statistics.py -v
"""

import itertools
import math

import numpy as np
import pytest

from robust_validation.statistics import (
    as_finite_number,
    clamp,
    finite_values,
    is_finite,
    json_number,
    max_drawdown,
    median,
    profit_factor,
    sharpe_ratio_from_returns,
    sorted_counts,
)


class TestFiniteNumbers:
    """Test finite-number checks and coercion."""

    def test_is_finite(self):
        """Booleans, strings and NaN are not finite numbers."""
        assert is_finite(1)
        assert is_finite(np.float64(2.5))
        assert not is_finite(True)
        assert not is_finite("1.0")
        assert not is_finite(math.nan)
        assert not is_finite(math.inf)

    def test_as_finite_number(self):
        """Numeric strings are accepted, everything else falls back."""
        assert as_finite_number("3.5") == 3.5
        assert as_finite_number(None) == 0.0
        assert as_finite_number("abc", fallback=-1.0) == -1.0
        assert as_finite_number(math.inf, fallback=7.0) == 7.0

    def test_finite_values(self):
        assert finite_values([1, None, math.nan, "x", 2.5]) == [1.0, 2.5]

    def test_clamp(self):
        assert clamp(5, 0, 1) == 1
        assert clamp(-5, 0, 1) == 0


class TestMedian:
    """Test median over finite values."""

    def test_odd_count(self):
        """Median of the blind profits used in the OOS examples."""
        assert median([2.0, -0.5, 1.0, 3.0, 0.2]) == 1.0

    def test_even_count_averages_middle(self):
        assert median([1, 2, 3, 4]) == 2.5

    def test_empty_is_zero(self):
        assert median([]) == 0.0

    def test_ignores_non_finite(self):
        """Non-finite entries are excluded rather than counted."""
        assert median([1.0, math.nan, math.inf, 3.0]) == 2.0

    @pytest.mark.parametrize("values", [
        [2.0, -1.0, -0.5, -3.0, 0.2],
        [4.0, 1.0, 3.0, 2.0],
    ])
    def test_order_independent(self, values):
        """Every ordering of the same values gives the same median."""
        expected = median(sorted(values))
        for order in itertools.permutations(values):
            assert median(list(order)) == expected

    def test_single_outlier(self):
        """One extreme value moves the median at most to its neighbor."""
        base = [1.0, 2.0, 3.0, 4.0, 5.0]
        assert median(base) == 3.0
        assert median(base[:-1] + [1e12]) == 3.0
        assert median([-1e12] + base[1:]) == 3.0
        assert 2.0 <= median(base + [1e12]) <= 4.0


class TestSharpeRatio:
    """Test per-trade Sharpe ratio."""

    def test_too_few_returns(self):
        """Fewer than five returns yields 0."""
        assert sharpe_ratio_from_returns([1.0, 2.0, 3.0, 4.0]) == 0.0

    def test_zero_dispersion(self):
        assert sharpe_ratio_from_returns([1.0] * 10) == 0.0

    def test_regular_value(self):
        returns = [1.0, 2.0, 3.0, 4.0, 5.0]
        expected = np.mean(returns) / np.std(returns, ddof=1)
        assert sharpe_ratio_from_returns(returns) == pytest.approx(expected)

    def test_clamped(self):
        """Tiny dispersion around a positive mean is clamped to 8."""
        returns = [1.0, 1.001, 1.0, 1.001, 1.0, 1.001]
        assert sharpe_ratio_from_returns(returns) == 8.0


class TestDrawdownAndProfitFactor:
    """Test drawdown and profit factor."""

    def test_max_drawdown(self):
        amount, percent = max_drawdown([100, 90, 110, 99], 100)
        assert amount == pytest.approx(11.0)
        assert percent == pytest.approx(10.0)

    def test_drawdown_from_initial_capital(self):
        """A curve opening below the starting capital counts as drawdown."""
        amount, percent = max_drawdown([80, 85], 100)
        assert amount == pytest.approx(20.0)
        assert percent == pytest.approx(20.0)

    def test_profit_factor(self):
        assert profit_factor([10, -5, 5]) == pytest.approx(3.0)
        assert profit_factor([10, 5]) == math.inf
        assert profit_factor([]) == 0.0

    def test_json_number(self):
        """Infinite values serialize as null."""
        assert json_number(math.inf) is None
        assert json_number(None) is None
        assert json_number(2) == 2.0


class TestSortedCounts:
    """Test reason count ordering."""

    def test_count_desc_then_name(self):
        counts = {"b": 2, "a": 2, "c": 5}
        assert list(sorted_counts(counts)) == ["c", "a", "b"]
