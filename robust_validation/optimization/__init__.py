"""
Walk-Forward Optimization

Key Components:
- WalkForwardOptimizer: Rolling optimize/test windows with stitched OOS results
- WalkForwardValidator: Parameter drift and pass/fail verdict
- build_walk_forward_ranges: Bounded parameter grids from strategy defaults

Usage:
    from robust_validation.optimization import WalkForwardOptimizer, WalkForwardValidator

    validator = WalkForwardValidator(WalkForwardOptimizer(engine))
    report = await validator.validate(bars, strategy, settings)
"""

from .walk_forward_optimizer import (
    ParameterRange,
    WalkForwardOptimizer,
    WalkForwardResult,
    WalkForwardWindow,
    build_walk_forward_ranges,
    generate_parameter_grid,
)
from .walk_forward_validator import (
    ParameterDrift,
    WalkForwardCriteria,
    WalkForwardReport,
    WalkForwardValidator,
    compute_parameter_drift,
    evaluate_walk_forward,
)

__all__ = [
    'ParameterRange',
    'WalkForwardOptimizer',
    'WalkForwardResult',
    'WalkForwardWindow',
    'build_walk_forward_ranges',
    'generate_parameter_grid',
    'ParameterDrift',
    'WalkForwardCriteria',
    'WalkForwardReport',
    'WalkForwardValidator',
    'compute_parameter_drift',
    'evaluate_walk_forward',
]
