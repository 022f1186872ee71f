"""logger — JSONL run telemetry for validation history.

When the conventions document enables ``logging``, every run appends one
JSON line per analysed document to a log file inside the configured
directory.  Each entry captures the document path, run mode, per-gate
status and tool, finding counts, the suppressed tally and a truncated
SHA-256 hash of the source, so drift in a workflow's health can be tracked
across runs.  The log file name and formatting constants are read from
``config/defaults.yaml``.
"""

from __future__ import annotations

import datetime
import hashlib
import json
import os
from typing import Any, Mapping

from pipegate.lib import config
from pipegate.lib.models import DocumentResult, SuiteResult
from pipegate.lib.parser import split_lines


def _entry(
    doc: DocumentResult,
    suite: SuiteResult,
    source: str,
    timestamp: str,
    run_ms: int,
) -> dict[str, Any]:
    hash_prefix = config.get_str("formatting.hash_prefix")
    hash_trunc = config.get_int("defaults.hash_truncation_length")
    return {
        "timestamp": timestamp,
        "event": "validate",
        "file": doc.path,
        "mode": suite.mode,
        "suite_status": suite.status,
        "status": config.get_str("statuses.fail" if doc.failed else "statuses.pass"),
        "gates": {
            g.gate_id: {
                "status": g.status,
                "tool": g.tool_used,
                "findings": len(g.findings),
                "suppressed": g.suppressed,
            }
            for g in doc.gates
        },
        "code_length_lines": len(split_lines(source)),
        "code_hash": hash_prefix + hashlib.sha256(source.encode()).hexdigest()[:hash_trunc],
        "run_ms": run_ms,
    }


def log_run(
    log_dir: str,
    suite: SuiteResult,
    sources: Mapping[str, str],
    run_ms: int,
) -> None:
    """Append one JSONL entry per analysed document.

    Args:
        log_dir: Directory to write the log file in. Nothing is written
            when empty.
        suite: The folded suite result.
        sources: Document path -> source text, for hashing.
        run_ms: Whole-run duration in milliseconds.
    """
    if not log_dir or not suite.documents:
        return
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.join(log_dir, config.get_str("filenames.run_log"))

    utc_src = config.get_str("formatting.utc_offset_source")
    utc_rep = config.get_str("formatting.utc_offset_replacement")
    separators = tuple(config.get_list("formatting.json_separators"))
    timestamp = (
        datetime.datetime.now(datetime.timezone.utc)
        .isoformat()
        .replace(utc_src, utc_rep)
    )

    with open(log_path, "a", encoding="utf-8") as fh:
        for doc in suite.documents:
            entry = _entry(doc, suite, sources.get(doc.path, ""), timestamp, run_ms)
            fh.write(json.dumps(entry, separators=separators) + "\n")
