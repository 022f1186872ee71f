"""registry — gate declarations and the per-document gate runner.

Each gate module exposes a ``DETECTORS`` tuple of plain functions with the
signature ``(document, context) -> list[Finding]``.  This module binds those
tuples to gate ids in declaration order and runs them: built-in detectors
always run, and the gate's external tool (if one was found at startup) is
consulted afterwards and merged in.

Design notes:
    A detector that raises does not abort the run.  The exception is
    reported on stderr and replaced by an ``internal-detector-error``
    finding so the gate fails visibly instead of passing silently.

    Findings produced on behalf of a gate from a shared catalog entry
    (tool timeout or failure notes, internal errors) are re-homed to the
    gate that was running, so suppressions and counts land where the user
    expects them.
"""

from __future__ import annotations

import dataclasses
import sys
from dataclasses import dataclass
from typing import Callable, Mapping

from pipegate.gates import antipatterns, permissions, pinning, secrets, syntax
from pipegate.lib import config
from pipegate.lib.aggregator import build_gate_result, order_gates
from pipegate.lib.cancel import CancelToken
from pipegate.lib.models import Conventions, Document, DocumentResult, Finding, GateResult
from pipegate.lib.rules import make_finding
from pipegate.lib.tools import ExternalTool

Detector = Callable[[Document, "SuiteContext"], list[Finding]]


@dataclass(frozen=True)
class SuiteContext:
    """Run-wide, read-only inputs shared by every detector.

    Attributes:
        conventions: Organization additions to the built-in rules.
        mode: 'full' or 'quick'.
        tools: Gate id -> external tool adapter.
        cancel: Run cancellation token.
    """

    conventions: Conventions
    mode: str
    tools: Mapping[str, ExternalTool]
    cancel: CancelToken


@dataclass(frozen=True)
class GateSpec:
    """A gate id bound to its built-in detectors."""

    gate_id: str
    detectors: tuple[Detector, ...]


# config key under ``gates`` -> detectors
_DETECTORS: dict[str, tuple[Detector, ...]] = {
    "syntax": syntax.DETECTORS,
    "reference_pinning": pinning.DETECTORS,
    "permission_hardening": permissions.DETECTORS,
    "secret_hygiene": secrets.DETECTORS,
    "antipattern": antipatterns.DETECTORS,
}


def all_gates() -> list[GateSpec]:
    """Return every gate in declaration order (``gates.order``)."""
    order = config.get_list("gates.order")
    specs = [
        GateSpec(config.get_str(f"gates.{key}"), detectors)
        for key, detectors in _DETECTORS.items()
    ]
    return sorted(specs, key=lambda s: order.index(s.gate_id))


def gates_for_mode(mode: str) -> list[GateSpec]:
    """Return the gates that run in ``mode``, in declaration order."""
    if mode == config.get_str("modes.quick"):
        selected = config.get_list("modes.quick_gates")
    else:
        selected = config.get_list("gates.order")
    return [spec for spec in all_gates() if spec.gate_id in selected]


# ---------------------------------------------------------------------------
# Running
# ---------------------------------------------------------------------------


def _rehome(finding: Finding, gate_id: str) -> Finding:
    if finding.gate_id == gate_id:
        return finding
    return dataclasses.replace(finding, gate_id=gate_id)


def _run_detector(
    detector: Detector, gate_id: str, doc: Document, ctx: SuiteContext
) -> list[Finding]:
    try:
        return list(detector(doc, ctx))
    except Exception as exc:
        msg = config.get_str("messages.detector_exception")
        sys.stderr.write(
            "  " + msg.format(
                detector=detector.__name__,
                path=doc.path,
                error=type(exc).__name__,
                detail=str(exc),
            ) + "\n"
        )
        finding = make_finding(
            "internal-detector-error",
            detector=detector.__name__,
            detail=f"{type(exc).__name__}: {exc}",
        )
        return [_rehome(finding, gate_id)]


def run_gate(spec: GateSpec, doc: Document, ctx: SuiteContext) -> GateResult:
    """Run one gate on one document.

    Args:
        spec: The gate to run.
        doc: The parsed document.
        ctx: Run-wide context.

    Returns:
        The GateResult with suppressions applied.
    """
    built_in = config.get_str("defaults.built_in_tool")

    if doc.read_error is not None:
        if spec.gate_id == config.get_str("gates.syntax"):
            finding = make_finding("unreadable-document", detail=doc.read_error)
            return build_gate_result(spec.gate_id, [finding], doc.suppressions, built_in)
        return build_gate_result(spec.gate_id, [], doc.suppressions, built_in, skipped=True)

    findings: list[Finding] = []
    for detector in spec.detectors:
        findings.extend(_run_detector(detector, spec.gate_id, doc, ctx))

    tool_used = built_in
    tool = ctx.tools.get(spec.gate_id)
    if tool is not None and tool.probe():
        outcome = tool.run(doc, ctx.cancel)
        if outcome.status == config.get_str("tool_outcomes.ok"):
            findings.extend(outcome.findings)
            tool_used = tool.label
        elif outcome.status == config.get_str("tool_outcomes.timeout"):
            note = make_finding("external-tool-timeout", tool=tool.name, timeout=outcome.detail)
            findings.append(_rehome(note, spec.gate_id))
        elif outcome.status == config.get_str("tool_outcomes.failed"):
            note = make_finding("external-tool-failed", tool=tool.name, detail=outcome.detail)
            findings.append(_rehome(note, spec.gate_id))

    return build_gate_result(spec.gate_id, findings, doc.suppressions, tool_used)


def run_document(
    doc: Document, gates: list[GateSpec], ctx: SuiteContext
) -> DocumentResult:
    """Run ``gates`` on ``doc`` in declaration order."""
    return DocumentResult(
        path=doc.path,
        gates=order_gates(run_gate(spec, doc, ctx) for spec in gates),
    )
