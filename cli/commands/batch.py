"""
Batch Command - Seeded finder matrix runs

Usage:
    robust_cli.py batch --config config/batch_config.yaml [--out-dir DIR] [--strategy a,b] [--seeds 1,2] [--force]

Positional fallback:
    robust_cli.py batch config/batch_config.yaml 1337,7331
"""

import argparse
import asyncio
from typing import Optional

from cli.utils.output_formatter import OutputFormatter, print_info, print_success
from robust_validation.batch import (
    BatchRunner,
    CliOverrides,
    load_batch_config,
    parse_key_list,
    parse_number_list,
)


def add_parser(subparsers) -> argparse.ArgumentParser:
    parser = subparsers.add_parser('batch', help='Run a seeded finder batch from a config file')
    parser.add_argument('positionals', nargs='*', metavar='ARG', help='[CONFIG] [SEEDS]')
    parser.add_argument('--config', type=str, help='Batch config path (.yaml, .yml or .json)')
    parser.add_argument('--out-dir', type=str, help='Output directory override')
    parser.add_argument('--strategy', type=str, help='Comma-separated strategy keys override')
    parser.add_argument('--seeds', type=str, help='Comma-separated seeds override')
    parser.add_argument('--force', action='store_true', help='Rerun seeds whose run files already exist')
    return parser


def overrides_from_args(args: argparse.Namespace) -> CliOverrides:
    """Flags first, then the positional CONFIG and SEEDS fallbacks."""
    positionals = args.positionals or []
    overrides = CliOverrides(
        config_path=args.config or None,
        out_dir=args.out_dir or None,
        strategy_keys=parse_key_list(args.strategy) or None,
        seeds=parse_number_list(args.seeds) or None,
        force=args.force,
    )
    if not overrides.config_path and positionals:
        overrides.config_path = positionals[0]
    if overrides.seeds is None and len(positionals) > 1:
        overrides.seeds = parse_number_list(positionals[1]) or None
    return overrides


def run_batch(args: argparse.Namespace, formatter: Optional[OutputFormatter] = None):
    """Resolve the config, run every task and print the batch verdict."""
    formatter = formatter or OutputFormatter()
    config = load_batch_config(overrides_from_args(args))

    result = asyncio.run(BatchRunner().run(config))

    if result.batch_report is not None:
        report = result.batch_report
        formatter.print_key_value(
            {
                'Overall Verdict': report.overall_verdict,
                'GO cells': report.go_cell_count,
                'NO_GO cells': report.no_go_cell_count,
            },
            title='Batch Go/No-Go',
        )
    print_info(f"Batch complete. Tasks: {len(result.task_runs)}, run files: {len(result.run_files)}")
    print_success(f"Manifest: {result.manifest_path}")
