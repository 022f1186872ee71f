"""aggregator — suppression filtering, gate verdicts and suite folding.

Turns the raw findings each gate produced for a document into a
``GateResult`` (applying the document's suppression index, de-duplicating
and sorting), and folds per-document results into an immutable
``SuiteResult``.

Design notes:
    Ordering never depends on worker completion order: documents are sorted
    by path, gates follow ``gates.order`` and findings are sorted by line
    then rule id.  The same inputs therefore always render the same report.

    Suppressed findings disappear from the report but are counted, per gate
    and for the whole suite.
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence

from pipegate.lib import config
from pipegate.lib.models import (
    DocumentResult,
    Finding,
    GateResult,
    SuiteCounts,
    SuiteResult,
)
from pipegate.lib.suppressions import SuppressionIndex


# ---------------------------------------------------------------------------
# Per-gate
# ---------------------------------------------------------------------------


def dedupe(findings: Iterable[Finding]) -> list[Finding]:
    """Drop findings repeating an earlier (line, rule id) pair.

    The first occurrence wins, so built-in findings listed before external
    tool findings are the ones kept.
    """
    seen: set[tuple[Optional[int], str]] = set()
    unique: list[Finding] = []
    for finding in findings:
        key = (finding.line, finding.rule_id)
        if key in seen:
            continue
        seen.add(key)
        unique.append(finding)
    return unique


def build_gate_result(
    gate_id: str,
    findings: Sequence[Finding],
    suppressions: SuppressionIndex,
    tool_used: str,
    *,
    skipped: bool = False,
) -> GateResult:
    """Apply suppressions and compute the verdict for one gate.

    Args:
        gate_id: The gate.
        findings: Raw findings from built-in detectors and external tools.
        suppressions: The document's suppression index.
        tool_used: Tool label recorded on the result.
        skipped: True when no detector could run at all.

    Returns:
        The GateResult. ``fail`` iff a visible error-severity finding
        remains; ``skip`` only when ``skipped`` is set and nothing was found.
    """
    sev_error = config.get_str("severities.error")
    visible: list[Finding] = []
    suppressed = 0
    for finding in dedupe(findings):
        if suppressions.is_suppressed(finding):
            suppressed += 1
        else:
            visible.append(finding)
    visible.sort(key=Finding.sort_key)

    if any(f.severity == sev_error for f in visible):
        status = config.get_str("statuses.fail")
    elif skipped and not visible:
        status = config.get_str("statuses.skip")
    else:
        status = config.get_str("statuses.pass")

    return GateResult(
        gate_id=gate_id,
        status=status,
        findings=tuple(visible),
        tool_used=tool_used,
        suppressed=suppressed,
    )


def order_gates(results: Iterable[GateResult]) -> tuple[GateResult, ...]:
    """Sort gate results by gate declaration order."""
    order = {g: i for i, g in enumerate(config.get_list("gates.order"))}
    return tuple(sorted(results, key=lambda r: order.get(r.gate_id, len(order))))


# ---------------------------------------------------------------------------
# Suite
# ---------------------------------------------------------------------------


def fold_suite(
    documents: Iterable[DocumentResult],
    *,
    mode: str,
    root: str,
    notices: Sequence[str] = (),
    cancelled: bool = False,
) -> SuiteResult:
    """Fold per-document results into the SuiteResult.

    Args:
        documents: Per-document results in any order.
        mode: Run mode the results were produced with.
        root: The validated root.
        notices: Suite-level informational notes.
        cancelled: True when the run stopped before every document ran.

    Returns:
        The SuiteResult with counts, status and exit code.
    """
    sev_error = config.get_str("severities.error")
    sev_warning = config.get_str("severities.warning")
    sev_info = config.get_str("severities.info")

    ordered = tuple(sorted(documents, key=lambda d: d.path))
    errors = warnings = infos = suppressed = passed = failed = 0
    for doc in ordered:
        for gate in doc.gates:
            errors += gate.count(sev_error)
            warnings += gate.count(sev_warning)
            infos += gate.count(sev_info)
            suppressed += gate.suppressed
        if doc.failed:
            failed += 1
        else:
            passed += 1

    counts = SuiteCounts(
        errors=errors,
        warnings=warnings,
        infos=infos,
        suppressed=suppressed,
        documents_passed=passed,
        documents_failed=failed,
    )

    if cancelled:
        status = config.get_str("suite_statuses.partial")
    elif failed:
        status = config.get_str("suite_statuses.failed")
    else:
        status = config.get_str("suite_statuses.passed")
    exit_code = config.get_int("exit_codes.failed" if failed else "exit_codes.ok")

    return SuiteResult(
        status=status,
        mode=mode,
        root=root,
        documents=ordered,
        counts=counts,
        notices=tuple(notices),
        exit_code=exit_code,
    )


def no_documents_suite(root: str, mode: str, notice: str) -> SuiteResult:
    """Return the distinct 'no documents found' SuiteResult."""
    return SuiteResult(
        status=config.get_str("suite_statuses.no_documents"),
        mode=mode,
        root=root,
        notices=(notice,),
        exit_code=config.get_int("exit_codes.no_documents"),
    )


def prioritize(suite: SuiteResult) -> list[tuple[str, Finding]]:
    """Return every visible finding ordered by urgency.

    Errors come before warnings before info; ties are broken by gate
    declaration order, then path, then line.

    Args:
        suite: The folded suite result.

    Returns:
        (document path, finding) pairs, most urgent first.
    """
    rank = config.get_dict("severities.rank")
    order = {g: i for i, g in enumerate(config.get_list("gates.order"))}
    pairs = [
        (doc.path, finding)
        for doc in suite.documents
        for gate in doc.gates
        for finding in gate.findings
    ]
    pairs.sort(
        key=lambda p: (
            rank.get(p[1].severity, len(rank)),
            order.get(p[1].gate_id, len(order)),
            p[0],
            p[1].line or 0,
            p[1].rule_id,
        )
    )
    return pairs
