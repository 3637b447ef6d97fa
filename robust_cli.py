#!/usr/bin/env python3
"""
Robust Validation CLI - Main Entry Point

Strategy robustness validation:
- Stress tests (OOS blind split, walk-forward, fee/slippage sensitivity)
- Seed-run audit summaries
- Go/no-go reports
- Seeded finder batch runs

Usage:
    python3 robust_cli.py stress price-data/SOLUSDT-1h.json 0.01 rsi_reversion
    python3 robust_cli.py summary runs/run-seed-*.txt
    python3 robust_cli.py go-no-go --min-seed-passes 4 runs/run-seed-*.txt
    python3 robust_cli.py batch --config config/batch_config.example.yaml

Logs go to stderr; rendered reports go to stdout.
"""

import argparse
import sys
from typing import List, Optional

from loguru import logger

from cli.commands import audit, batch, stress
from cli.utils.output_formatter import print_error

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<level>{message}</level>"
)

COMMANDS = {
    'stress': stress.run_stress,
    'summary': audit.run_summary,
    'go-no-go': audit.run_go_no_go,
    'batch': batch.run_batch,
}


def configure_logging(verbose: bool = False):
    """Route loguru output to stderr (DEBUG with --verbose, INFO otherwise)."""
    logger.remove()
    logger.add(sys.stderr, format=LOG_FORMAT, level="DEBUG" if verbose else "INFO")


def create_parser() -> argparse.ArgumentParser:
    """
    Create argument parser with all subcommands

    Returns:
        ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        description="Robust Validation CLI - Strategy robustness stress tests and audit reports",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Stress test one strategy (flags or positionals)
  python3 robust_cli.py stress --data price-data/SOLUSDT-1h.json --tick-size 0.01 --strategy rsi_reversion

  # Summaries and verdicts from seed-run files
  python3 robust_cli.py summary --format json runs/run-seed-1337.txt runs/run-seed-7331.txt
  python3 robust_cli.py go-no-go --max-dd-breach 25 runs/run-seed-*.txt

  # Batch matrix run
  python3 robust_cli.py batch config/batch_config.example.yaml 1337,7331
        """
    )

    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable debug logging'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')
    stress.add_parser(subparsers)
    audit.add_summary_parser(subparsers)
    audit.add_go_no_go_parser(subparsers)
    batch.add_parser(subparsers)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point"""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    configure_logging(args.verbose)

    try:
        COMMANDS[args.command](args)

    except KeyboardInterrupt:
        print_error("Interrupted by user")
        return 130

    except Exception as e:
        print_error(f"{args.command} failed: {e}")
        if args.verbose:
            logger.exception(f"{args.command} failed")
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
