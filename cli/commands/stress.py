"""
Stress Command - OOS, walk-forward and fee/slippage stress test

Runs the three stress angles for one strategy on one dataset and writes the
JSON stress report.

Positional fallback (for runners that strip option flags):
    stress DATA [TICK_SIZE] [STRATEGY] [OUT_DIR] [FINDER_MAX_RUNS] [WF_MAX_COMBINATIONS]
Flags take precedence over positionals.
"""

import argparse
import asyncio
from typing import Any, Optional

from cli.utils.output_formatter import OutputFormatter, print_success
from robust_validation.batch.batch_config import parse_number_list
from robust_validation.cost_model import DEFAULT_TICK_SIZE
from robust_validation.validation import StressTestOptions, StressTestRunner
from robust_validation.validation.stress_report import (
    OOS_SECTION,
    SENSITIVITY_SECTION,
    WALK_FORWARD_SECTION,
)
from robust_validation.validation.stress_test_runner import DEFAULT_STRATEGY_KEY


def add_parser(subparsers) -> argparse.ArgumentParser:
    parser = subparsers.add_parser('stress', help='Run OOS, walk-forward and cost stress tests')
    parser.add_argument('positionals', nargs='*', metavar='ARG',
                        help='DATA [TICK_SIZE] [STRATEGY] [OUT_DIR] [FINDER_MAX_RUNS] [WF_MAX_COMBINATIONS]')
    parser.add_argument('--data', type=str, help='Dataset JSON path')
    parser.add_argument('--tick-size', type=float, help=f'Instrument tick size (default: {DEFAULT_TICK_SIZE})')
    parser.add_argument('--strategy', type=str, help=f'Strategy key (default: {DEFAULT_STRATEGY_KEY})')
    parser.add_argument('--out-dir', type=str, help='Output directory (default: batch-runs/stress-tests-<date>)')
    parser.add_argument('--finder-max-runs', type=int, help='Parameter sets sampled per seed (min 20)')
    parser.add_argument('--wf-max-combinations', type=int, help='Walk-forward grid budget (min 80)')
    parser.add_argument('--seeds', type=str, help='Comma-separated search seeds')
    parser.add_argument('--output-file', type=str, help='Report file name override')
    parser.add_argument('--force', action='store_true', help='Replace an existing report file')
    return parser


def _positional(args: argparse.Namespace, index: int) -> Optional[str]:
    values = args.positionals or []
    return values[index] if len(values) > index else None


def _pick(flag_value: Any, positional: Optional[str], cast, default: Any) -> Any:
    if flag_value is not None:
        return flag_value
    if positional is not None and positional != "":
        return cast(positional)
    return default


def build_options(args: argparse.Namespace) -> StressTestOptions:
    """
    Merge flags and positionals into StressTestOptions.

    Raises:
        ValueError: Missing dataset path or a non-numeric positional
    """
    data_path = _pick(args.data, _positional(args, 0), str, None)
    if not data_path:
        raise ValueError("Missing dataset path. Pass --data <path> or a positional DATA argument.")

    seeds = [int(s) for s in parse_number_list(args.seeds)] if args.seeds else []

    return StressTestOptions(
        data_path=data_path,
        tick_size=_pick(args.tick_size, _positional(args, 1), float, DEFAULT_TICK_SIZE),
        strategy_key=_pick(args.strategy, _positional(args, 2), str, DEFAULT_STRATEGY_KEY),
        out_dir=_pick(args.out_dir, _positional(args, 3), str, None),
        finder_max_runs=_pick(args.finder_max_runs, _positional(args, 4), int, StressTestOptions.finder_max_runs),
        wf_max_combinations=_pick(args.wf_max_combinations, _positional(args, 5), int, StressTestOptions.wf_max_combinations),
        seeds=seeds,
        output_file_name=args.output_file,
        force=args.force,
    )


def run_stress(args: argparse.Namespace, formatter: Optional[OutputFormatter] = None):
    """Run the stress test and print the section verdicts."""
    formatter = formatter or OutputFormatter()
    options = build_options(args)

    report, path = asyncio.run(StressTestRunner().run(options))

    rows = [
        {'section': OOS_SECTION, 'verdict': report.oos.verdict, 'reasons': report.oos.fail_reasons},
        {'section': WALK_FORWARD_SECTION, 'verdict': report.walk_forward.verdict,
         'reasons': report.walk_forward.fail_reasons},
        {'section': SENSITIVITY_SECTION, 'verdict': report.sensitivity.verdict,
         'reasons': report.sensitivity.fail_reasons},
        {'section': 'overall', 'verdict': report.verdict, 'reasons': report.fail_reasons},
    ]
    formatter.print_verdict_table(
        rows, title=f"{report.inputs.symbol} {report.inputs.interval} {report.inputs.strategy_key}"
    )
    print_success(f"Wrote stress report: {path}")
