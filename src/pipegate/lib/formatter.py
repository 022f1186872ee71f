"""formatter — suite report rendering as a human table and as JSON.

The engine returns a ``SuiteResult``; nothing in it depends on how it is
shown.  This module layers two renderings on top: a human-readable report
(per-document gate table, findings with fix hints, a priority-ordered "fix
first" list and a summary line) and a structured JSON payload.  Both are
pure functions of the SuiteResult, so identical results render to
identical bytes.
"""

from __future__ import annotations

import json
from typing import Any

from pipegate.lib import config
from pipegate.lib.aggregator import prioritize
from pipegate.lib.models import DocumentResult, Finding, GateResult, SuiteResult
from pipegate.lib.theme import code as _c


# ---------------------------------------------------------------------------
# Variable injection
# ---------------------------------------------------------------------------


def inject_variables(template: str, variables: dict[str, Any]) -> str:
    """Replace {variable} placeholders in a template string.

    Args:
        template: String containing {key} placeholders.
        variables: Mapping of key names to replacement values.

    Returns:
        Template with all recognized placeholders replaced.
    """
    result = template
    for key, val in variables.items():
        result = result.replace(f"{{{key}}}", str(val))
    return result


# ---------------------------------------------------------------------------
# Human-readable report
# ---------------------------------------------------------------------------


def format_finding_text(finding: Finding, *, stream: Any = None) -> str:
    """Format one finding as an indented report entry.

    Args:
        finding: The finding.
        stream: Output stream, used to decide whether to colourise.

    Returns:
        One or two lines: location, severity, rule and message, then the
        fix hint when there is one.
    """
    fix_prefix = config.get_str("messages.fix_prefix")
    where = f"L{finding.line}" if finding.line is not None else "--"
    sev = finding.severity
    parts = [
        f"    {_c('file_path', stream=stream)}{where:>5}{_c('reset', stream=stream)}  "
        f"{_c(sev, stream=stream)}{sev:<7}{_c('reset', stream=stream)} "
        f"{finding.rule_id}: {finding.message}"
    ]
    if finding.remediation:
        parts.append(
            f"           {_c('fix', stream=stream)}{fix_prefix}"
            f"{finding.remediation}{_c('reset', stream=stream)}"
        )
    return "\n".join(parts)


def _gate_row(gate: GateResult, stream: Any) -> str:
    status = f"{_c(gate.status, stream=stream)}{gate.status:<6}{_c('reset', stream=stream)}"
    tool = f"{_c('tool', stream=stream)}{gate.tool_used:<22}{_c('reset', stream=stream)}"
    count = str(len(gate.findings))
    if gate.suppressed:
        count += f" (+{gate.suppressed} suppressed)"
    return f"  {gate.gate_id:<22} {status} {tool} {count}"


def format_document_text(doc: DocumentResult, *, stream: Any = None) -> str:
    """Format the gate table and findings for one document.

    Args:
        doc: The document result.
        stream: Output stream, used to decide whether to colourise.

    Returns:
        Multi-line block for the document.
    """
    header = (
        f"  {config.get_str('labels.gate'):<22} {config.get_str('labels.status'):<6} "
        f"{config.get_str('labels.tool'):<22} {config.get_str('labels.findings')}"
    )
    parts = [f"{_c('bold', stream=stream)}{doc.path}{_c('reset', stream=stream)}", header]
    for gate in doc.gates:
        parts.append(_gate_row(gate, stream))
    for gate in doc.gates:
        if not gate.findings:
            continue
        parts.append(f"  [{gate.gate_id}]")
        for finding in gate.findings:
            parts.append(format_finding_text(finding, stream=stream))
    return "\n".join(parts)


def format_fix_first(suite: SuiteResult, *, stream: Any = None) -> str:
    """Format the priority-ordered list of the most urgent findings.

    Returns:
        The block, or '' when there is nothing to fix.
    """
    limit = config.get_int("defaults.fix_first_limit")
    sev_info = config.get_str("severities.info")
    urgent = [(p, f) for p, f in prioritize(suite) if f.severity != sev_info][:limit]
    if not urgent:
        return ""
    parts = [f"{_c('bold', stream=stream)}{config.get_str('labels.fix_first')}{_c('reset', stream=stream)}"]
    for idx, (path, finding) in enumerate(urgent, start=1):
        where = f"{path}:{finding.line}" if finding.line is not None else path
        parts.append(
            f"  {idx:>2}. {_c(finding.severity, stream=stream)}{finding.severity}"
            f"{_c('reset', stream=stream)} {where} {finding.rule_id}"
        )
    return "\n".join(parts)


def format_summary_text(suite: SuiteResult, *, stream: Any = None) -> str:
    """Format the summary footer bar.

    Returns:
        Summary block with status, counts and the suppressed tally.
    """
    bar_width = config.get_int("formatting.summary_bar_width")
    bar_char = config.get_str("formatting.summary_bar_char")
    counts = suite.counts
    bar = f"{_c('summary_bar', stream=stream)}{bar_char * bar_width}{_c('reset', stream=stream)}"
    line = config.get_str("messages.summary_line").format(
        documents=len(suite.documents),
        passed=counts.documents_passed,
        failed=counts.documents_failed,
        errors=counts.errors,
        warnings=counts.warnings,
        infos=counts.infos,
        suppressed=counts.suppressed,
    )
    status_role = "fail" if counts.documents_failed else "pass"
    return "\n".join([
        bar,
        f"  {_c('bold', stream=stream)}{config.get_str('labels.summary')}{_c('reset', stream=stream)} "
        f"{_c(status_role, stream=stream)}{suite.status}{_c('reset', stream=stream)} "
        f"({suite.mode}) {line}",
        bar,
    ])


def format_suite_text(suite: SuiteResult, *, stream: Any = None) -> str:
    """Render the full human-readable report.

    Args:
        suite: The suite result.
        stream: Output stream, used to decide whether to colourise.

    Returns:
        The report text (no trailing newline).
    """
    parts: list[str] = []
    for notice in suite.notices:
        parts.append(f"{_c('info', stream=stream)}{notice}{_c('reset', stream=stream)}")
    for doc in suite.documents:
        parts.append(format_document_text(doc, stream=stream))
    fix_first = format_fix_first(suite, stream=stream)
    if fix_first:
        parts.append(fix_first)
    if suite.documents:
        parts.append(format_summary_text(suite, stream=stream))
    return "\n\n".join(parts)


def format_rule_catalog(*, stream: Any = None) -> str:
    """Render the built-in rule catalog grouped by gate.

    Every id listed here is a valid suppression target.
    """
    # rules imports inject_variables from this module
    from pipegate.lib.rules import rules_for_gate

    parts: list[str] = []
    for gate_id in config.get_list("gates.order"):
        parts.append(f"{_c('bold', stream=stream)}{gate_id}{_c('reset', stream=stream)}")
        for rule_id in rules_for_gate(gate_id):
            sev = config.rule_meta(rule_id).get("severity", "")
            parts.append(
                f"  {rule_id:<40} {_c(sev, stream=stream)}{sev:<7}{_c('reset', stream=stream)}"
            )
    return "\n".join(parts)


# ---------------------------------------------------------------------------
# JSON report
# ---------------------------------------------------------------------------


def format_suite_json(suite: SuiteResult) -> str:
    """Render the suite as a JSON document.

    Returns:
        Indented JSON text (no trailing newline).
    """
    payload = suite.to_dict()
    payload["fix_first"] = [
        {"path": path, **finding.to_dict()} for path, finding in prioritize(suite)
    ]
    return json.dumps(payload, indent=config.get_int("defaults.json_indent"))


