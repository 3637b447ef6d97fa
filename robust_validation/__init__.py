"""
Robust Validation - Strategy robustness validation pipeline

Decides whether a trading strategy is robust enough to trust by stress
testing it from three angles and summarizing seeded search audits.

Key Components:
- validation: OOS blind split test, fee/slippage ensemble, stress report
- optimization: Walk-forward optimizer and validator
- audit: Seed-run audit aggregation and go/no-go reports
- batch: Seeded finder batch runs over a dataset/strategy matrix
- engines: Reference backtest engine, candidate finder and strategies

Usage:
    from robust_validation.validation import StressTestOptions, StressTestRunner

    report, path = asyncio.run(StressTestRunner().run(StressTestOptions(data_path="SOLUSDT-1h.json")))
    print(report.verdict, report.fail_reasons)
"""

from .exceptions import (
    DatasetError,
    NoAuditRecordsError,
    PolicyError,
    RobustValidationError,
    UnknownStrategyError,
    WalkForwardError,
)

__version__ = '1.0.0'

__all__ = [
    'DatasetError',
    'NoAuditRecordsError',
    'PolicyError',
    'RobustValidationError',
    'UnknownStrategyError',
    'WalkForwardError',
]
