"""Tests for pipegate.lib.logger run telemetry."""

from __future__ import annotations

import json
from pathlib import Path

from pipegate.lib.aggregator import fold_suite
from pipegate.lib.logger import log_run
from pipegate.lib.models import DocumentResult, Finding, GateResult


def _suite():
    error = Finding("syntax", "error", 2, "bad", None, "parse-error")
    docs = [
        DocumentResult("a.yml", (GateResult("syntax", "pass", (), "built-in", suppressed=1),)),
        DocumentResult("b.yml", (GateResult("syntax", "fail", (error,), "actionlint 1.7.1"),)),
    ]
    return fold_suite(docs, mode="quick", root=".")


class TestLogRun:
    """Tests for log_run."""

    def test_appends_one_line_per_document(self, tmp_path: Path) -> None:
        """Entries carry the document verdict, gates and a source hash."""
        log_run(str(tmp_path), _suite(), {"a.yml": "on: push\n", "b.yml": "x\ny\n"}, 12)
        lines = (tmp_path / "pipegate_runs.jsonl").read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2
        first, second = (json.loads(line) for line in lines)
        assert first["file"] == "a.yml"
        assert first["status"] == "pass"
        assert first["mode"] == "quick"
        assert first["suite_status"] == "failed"
        assert first["gates"]["syntax"] == {
            "status": "pass",
            "tool": "built-in",
            "findings": 0,
            "suppressed": 1,
        }
        assert first["timestamp"].endswith("Z")
        assert first["run_ms"] == 12
        assert second["status"] == "fail"
        assert second["code_length_lines"] == 2
        assert len(second["code_hash"]) == len("sha256:") + 16

    def test_appends_across_runs(self, tmp_path: Path) -> None:
        """A second run adds to the existing file."""
        log_run(str(tmp_path), _suite(), {}, 1)
        log_run(str(tmp_path), _suite(), {}, 1)
        lines = (tmp_path / "pipegate_runs.jsonl").read_text(encoding="utf-8").splitlines()
        assert len(lines) == 4

    def test_creates_directory(self, tmp_path: Path) -> None:
        """A missing log directory is created."""
        target = tmp_path / "nested" / "logs"
        log_run(str(target), _suite(), {}, 1)
        assert (target / "pipegate_runs.jsonl").is_file()

    def test_empty_directory_disables(self, tmp_path: Path, monkeypatch) -> None:
        """An empty directory setting writes nothing."""
        monkeypatch.chdir(tmp_path)
        log_run("", _suite(), {}, 1)
        assert list(tmp_path.iterdir()) == []
