"""
Stress Validation

Key Components:
- OosBlindSplitTester: Train-slice search, blind-slice backtest per seed
- FeeSlippageEnsemble: Seed ensemble under tick-derived costs
- StressReport: AND of the three section verdicts, persisted as JSON
- StressTestRunner: Dataset-to-report orchestration

Usage:
    from robust_validation.validation import StressTestOptions, StressTestRunner

    report, path = asyncio.run(StressTestRunner().run(StressTestOptions(data_path="SOLUSDT-1h.json")))
"""

from .fee_slippage_ensemble import (
    FeeSlippageEnsemble,
    SensitivityCriteria,
    SensitivityReport,
    evaluate_sensitivity,
)
from .oos_blind_tester import (
    OosBlindReport,
    OosBlindSeedResult,
    OosBlindSplitTester,
    OosCriteria,
    build_consensus_params,
    evaluate_oos,
    split_train_blind,
)
from .stress_report import StressInputs, StressReport, report_file_name, write_stress_report
from .stress_test_runner import DEFAULT_SEEDS, StressTestOptions, StressTestRunner

__all__ = [
    'FeeSlippageEnsemble',
    'SensitivityCriteria',
    'SensitivityReport',
    'evaluate_sensitivity',
    'OosBlindReport',
    'OosBlindSeedResult',
    'OosBlindSplitTester',
    'OosCriteria',
    'build_consensus_params',
    'evaluate_oos',
    'split_train_blind',
    'StressInputs',
    'StressReport',
    'report_file_name',
    'write_stress_report',
    'DEFAULT_SEEDS',
    'StressTestOptions',
    'StressTestRunner',
]
