"""
Unit Tests for Artifact Writers

Usage:
    pytest tests/core/test_artifacts.py -v
"""

import json

from robust_validation.artifacts import (
    next_available_path,
    sanitize_label,
    to_json_text,
    write_json_atomic,
    write_text_atomic,
)


class TestArtifacts:
    """Test atomic writes and path helpers."""

    def test_sanitize_label(self):
        assert sanitize_label("SOL/USDT 1h") == "SOL_USDT_1h"
        assert sanitize_label("a::b", replacement="-") == "a-b"

    def test_write_text_atomic_creates_parents(self, tmp_path):
        target = tmp_path / "nested" / "dir" / "out.txt"
        written = write_text_atomic(target, "hello\n")
        assert written == target
        assert target.read_text() == "hello\n"
        assert not (target.parent / "out.txt.tmp").exists()

    def test_json_round_trip(self, tmp_path):
        target = write_json_atomic(tmp_path / "report.json", {"verdict": "PASS", "reasons": []})
        assert json.loads(target.read_text()) == {"verdict": "PASS", "reasons": []}

    def test_json_text_is_stable(self):
        payload = {"b": 1, "a": [1, 2]}
        assert to_json_text(payload) == to_json_text(payload)
        assert to_json_text(payload).endswith("\n")

    def test_next_available_path(self, tmp_path):
        base = tmp_path / "sol-1h-stress.json"
        assert next_available_path(base) == base

        base.write_text("{}")
        second = next_available_path(base)
        assert second.name == "sol-1h-stress-2.json"

        second.write_text("{}")
        assert next_available_path(base).name == "sol-1h-stress-3.json"
