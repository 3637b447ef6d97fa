"""
Reference Collaborators

Concrete implementations of the pipeline's external interfaces, used by the
CLI, the batch runner and the tests.

Key Components:
- SimpleBacktestEngine: Signal-driven trade simulation
- RandomSearchFinder: Seeded three-stage robust candidate search
- resolve_strategies: Strategy registry lookup

Usage:
    from robust_validation.engines import RandomSearchFinder, SimpleBacktestEngine

    finder = RandomSearchFinder(SimpleBacktestEngine())
"""

from .backtest_engine import SimpleBacktestEngine
from .random_search_finder import RandomSearchFinder, derive_cell_seed
from .strategies import available_strategy_keys, resolve_strategies

__all__ = [
    'SimpleBacktestEngine',
    'RandomSearchFinder',
    'derive_cell_seed',
    'available_strategy_keys',
    'resolve_strategies',
]
