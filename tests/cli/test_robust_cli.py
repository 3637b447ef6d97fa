"""
Unit Tests for the Robust Validation CLI

Test Coverage:
  - summary and go-no-go rendering to stdout and to files
  - Policy flags
  - Error reporting and exit codes
  - Flag/positional merging for stress and batch

Usage:
    pytest tests/cli/test_robust_cli.py -v
"""

import json
import sys

import pytest
from loguru import logger

from cli.commands.batch import overrides_from_args
from cli.commands.stress import build_options
from robust_cli import create_parser, main


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def restore_logging():
    """main() rebinds loguru to the captured stderr; put the default sink back."""
    yield
    logger.remove()
    logger.add(sys.stderr)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep ROBUST_* variables from the host out of the batch override chain."""
    for name in ("ROBUST_OUT_DIR", "ROBUST_SEEDS", "ROBUST_STRATEGIES"):
        monkeypatch.delenv(name, raising=False)


# ============================================================================
# Audit commands
# ============================================================================

class TestSummaryCommand:
    """Test the summary command."""

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "Available commands" in capsys.readouterr().out

    def test_table(self, capsys, run_file):
        assert main(["summary", str(run_file)]) == 0

        out = capsys.readouterr().out
        assert out.startswith("Cell | Runs |")
        assert "SOLUSDT:1h:rsi_reversion:none:long | 3 | 2/3 | 66.7%" in out

    def test_json(self, capsys, run_file):
        assert main(["summary", "--format", "JSON", str(run_file)]) == 0

        payload = json.loads(capsys.readouterr().out)
        assert payload["recordCount"] == 4
        assert payload["cellCount"] == 2

    def test_out_file(self, capsys, tmp_path, run_file):
        target = tmp_path / "reports" / "summary.txt"

        assert main(["summary", "--out", str(target), str(run_file)]) == 0

        captured = capsys.readouterr()
        assert captured.out == ""
        assert "Wrote summary" in captured.err
        assert target.read_text().startswith("Cell | Runs |")

    def test_invalid_format(self, capsys, run_file):
        assert main(["summary", "--format", "xml", str(run_file)]) == 1
        assert "Invalid --format: xml" in capsys.readouterr().err

    def test_no_records(self, capsys, tmp_path):
        empty = tmp_path / "empty.txt"
        empty.write_text("nothing to see\n")

        assert main(["summary", str(empty)]) == 1
        assert "No robust_random_wf audit records found" in capsys.readouterr().err


class TestGoNoGoCommand:
    """Test the go-no-go command."""

    def test_default_policy(self, capsys, run_file):
        """Three runs fall short of the default five."""
        assert main(["go-no-go", str(run_file)]) == 0

        out = capsys.readouterr().out
        assert out.startswith("Overall Verdict: NO_GO\n")
        assert "insufficient_seed_runs" in out

    def test_lenient_policy(self, capsys, run_file):
        argv = [
            "go-no-go",
            "--min-seed-runs", "1",
            "--min-seed-passes", "0",
            "--min-pass-rate", "0",
            "--min-stage-c-survivors", "0",
            "--max-dd-breach", "100",
            "--max-fold-variance", "10",
            str(run_file),
        ]
        assert main(argv) == 0
        assert capsys.readouterr().out.startswith("Overall Verdict: GO\n")

    def test_json_payload(self, capsys, run_file):
        assert main(["go-no-go", "--format", "json", str(run_file)]) == 0

        payload = json.loads(capsys.readouterr().out)
        assert payload["report"]["overallVerdict"] == "NO_GO"

    def test_inconsistent_policy(self, capsys, run_file):
        assert main(["go-no-go", "--min-seed-runs", "3", "--min-seed-passes", "4", str(run_file)]) == 1
        assert "min seed passes cannot exceed min seed runs" in capsys.readouterr().err

    def test_invalid_flag_value(self, capsys, run_file):
        assert main(["go-no-go", "--max-dd-breach", "lots", str(run_file)]) == 1
        assert "Invalid --max-dd-breach: lots" in capsys.readouterr().err


# ============================================================================
# Stress and batch argument handling
# ============================================================================

class TestStressArguments:
    """Test stress option merging."""

    def test_positionals(self):
        args = create_parser().parse_args(["stress", "data.json", "0.5", "rsi_reversion", "out", "40"])
        options = build_options(args)

        assert options.data_path == "data.json"
        assert options.tick_size == 0.5
        assert options.strategy_key == "rsi_reversion"
        assert options.out_dir == "out"
        assert options.finder_max_runs == 40

    def test_flags_win(self):
        args = create_parser().parse_args(
            ["stress", "data.json", "0.5", "--tick-size", "0.25", "--seeds", "3,4"]
        )
        options = build_options(args)

        assert options.tick_size == 0.25
        assert options.seeds == [3, 4]
        assert options.strategy_key == "sma_crossover"

    def test_missing_data(self, capsys):
        assert main(["stress"]) == 1
        assert "Missing dataset path" in capsys.readouterr().err


class TestBatchArguments:
    """Test batch override parsing."""

    def test_positional_fallback(self):
        args = create_parser().parse_args(["batch", "cfg.yaml", "1337,7331"])
        overrides = overrides_from_args(args)

        assert overrides.config_path == "cfg.yaml"
        assert overrides.seeds == [1337.0, 7331.0]
        assert overrides.force is False

    def test_flags(self):
        args = create_parser().parse_args(
            ["batch", "--config", "a.yaml", "--strategy", "sma_crossover", "--seeds", "9", "--force"]
        )
        overrides = overrides_from_args(args)

        assert overrides.config_path == "a.yaml"
        assert overrides.strategy_keys == ["sma_crossover"]
        assert overrides.seeds == [9.0]
        assert overrides.force is True

    def test_missing_config(self, capsys):
        assert main(["batch"]) == 1
        assert "Missing --config <path>." in capsys.readouterr().err
