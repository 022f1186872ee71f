"""tools — optional external analyzers behind one capability interface.

Two external analyzers can deepen the built-in gates: ``actionlint`` (syntax
gate) and ``zizmor`` (antipattern gate).  Gates never shell out themselves;
they hold an ``ExternalTool`` and call ``run(document, cancel)``.

State machine::

    unchecked --probe()--> available      (binary found, version read)
                      \\--> unavailable    (binary missing or version failed)

``build_toolset`` probes each configured tool once at startup and hands out a
``SubprocessTool`` when it is available, or an ``UnavailableTool`` (which
never runs anything) when it is not or when external tools are disabled.

Design notes:
    Every failure mode of an invocation (timeout, an exit code outside the
    tool's ``ok_exit_codes``, output that is not the expected JSON) comes
    back as a ``ToolRun`` with a non-ok status instead of an exception.  The
    gate runner then uses its built-in detectors alone and records an info
    finding, so a misbehaving tool can never fail a document by itself.
"""

from __future__ import annotations

import json
import shutil
import subprocess
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, Sequence

from pipegate.exceptions import ToolInvocationError
from pipegate.lib import config
from pipegate.lib.cancel import CancelToken
from pipegate.lib.models import Document, Finding


@dataclass(frozen=True)
class ToolRun:
    """Outcome of one external tool invocation.

    Attributes:
        status: 'ok', 'timeout', 'failed' or 'unavailable'.
        findings: Normalized findings (only when status is 'ok').
        detail: Failure description for non-ok outcomes.
    """

    status: str
    findings: tuple[Finding, ...] = field(default_factory=tuple)
    detail: str = ""


class ExternalTool(Protocol):
    """Capability implemented by every external analyzer adapter."""

    name: str

    @property
    def label(self) -> str: ...

    def probe(self) -> bool: ...

    def run(self, document: Document, cancel: CancelToken) -> ToolRun: ...


# ---------------------------------------------------------------------------
# Output normalization
# ---------------------------------------------------------------------------


def _rule_id(tool: str, kind: str, rule_map: dict[str, str]) -> str:
    if kind in rule_map:
        return rule_map[kind]
    return f"{tool}-{kind}"


def parse_actionlint_output(text: str, gate_id: str, spec: dict[str, Any]) -> list[Finding]:
    """Normalize ``actionlint -format '{{json .}}'`` output.

    Args:
        text: Tool stdout, a JSON array (``null`` or empty when clean).
        gate_id: Gate the findings belong to.
        spec: The tool's ``external_tools`` config entry.

    Returns:
        Findings, one per reported error.

    Raises:
        ToolInvocationError: If the output is not the expected JSON shape.
    """
    if not text.strip():
        return []
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ToolInvocationError("actionlint", f"malformed JSON output: {exc.msg}") from exc
    if payload is None:
        return []
    if not isinstance(payload, list):
        raise ToolInvocationError("actionlint", f"expected a list, got {type(payload).__name__}")

    rule_map = spec.get("rule_map", {})
    severity = spec.get("severity", config.get_str("severities.error"))
    findings: list[Finding] = []
    for item in payload:
        if not isinstance(item, dict) or "message" not in item:
            raise ToolInvocationError("actionlint", "entry without a message")
        line = item.get("line")
        findings.append(
            Finding(
                gate_id=gate_id,
                severity=severity,
                line=line if isinstance(line, int) and line > 0 else None,
                message=str(item["message"]),
                remediation=None,
                rule_id=_rule_id("actionlint", str(item.get("kind", "error")), rule_map),
            )
        )
    return findings


def _zizmor_line(item: dict[str, Any]) -> Optional[int]:
    locations = item.get("locations") or []
    primary = next(
        (
            loc
            for loc in locations
            if isinstance(loc, dict)
            and (loc.get("symbolic") or {}).get("kind") == "Primary"
        ),
        locations[0] if locations else None,
    )
    if not isinstance(primary, dict):
        return None
    point = ((primary.get("concrete") or {}).get("location") or {}).get("start_point") or {}
    row = point.get("row")
    return row + 1 if isinstance(row, int) else None


def parse_zizmor_output(text: str, gate_id: str, spec: dict[str, Any]) -> list[Finding]:
    """Normalize ``zizmor --format json`` output.

    Args:
        text: Tool stdout, a JSON array of findings.
        gate_id: Gate the findings belong to.
        spec: The tool's ``external_tools`` config entry.

    Returns:
        Findings, excluding those zizmor itself marked as ignored.

    Raises:
        ToolInvocationError: If the output is not the expected JSON shape.
    """
    if not text.strip():
        return []
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ToolInvocationError("zizmor", f"malformed JSON output: {exc.msg}") from exc
    if not isinstance(payload, list):
        raise ToolInvocationError("zizmor", f"expected a list, got {type(payload).__name__}")

    rule_map = spec.get("rule_map", {})
    severity_map = spec.get("severity_map", {})
    fallback = config.get_str("severities.warning")
    findings: list[Finding] = []
    for item in payload:
        if not isinstance(item, dict) or "ident" not in item:
            raise ToolInvocationError("zizmor", "entry without an ident")
        if item.get("ignored"):
            continue
        determinations = item.get("determinations") or {}
        findings.append(
            Finding(
                gate_id=gate_id,
                severity=severity_map.get(determinations.get("severity"), fallback),
                line=_zizmor_line(item),
                message=str(item.get("desc") or item["ident"]),
                remediation=item.get("url") or None,
                rule_id=_rule_id("zizmor", str(item["ident"]), rule_map),
            )
        )
    return findings


_PARSERS = {
    "actionlint": parse_actionlint_output,
    "zizmor": parse_zizmor_output,
}


# ---------------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------------


class SubprocessTool:
    """External analyzer invoked as a subprocess, probed once."""

    def __init__(self, name: str, spec: dict[str, Any]) -> None:
        self.name = name
        self.spec = spec
        self.gate_id: str = spec["gate"]
        self.state = config.get_str("tool_states.unchecked")
        self.version = ""
        self._binary: Optional[str] = None

    @property
    def label(self) -> str:
        """Tool name and version for GateResult.tool_used."""
        return f"{self.name} {self.version}".strip()

    def probe(self) -> bool:
        """Locate the binary and read its version (first call only).

        Returns:
            True when the tool is available.
        """
        available = config.get_str("tool_states.available")
        if self.state != config.get_str("tool_states.unchecked"):
            return self.state == available

        self.state = config.get_str("tool_states.unavailable")
        binary = shutil.which(self.spec["binary"])
        if binary is None:
            return False
        try:
            proc = subprocess.run(
                [binary, *self.spec.get("version_args", [])],
                capture_output=True,
                text=True,
                timeout=config.get_int("defaults.tool_timeout_seconds"),
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired):
            return False
        if proc.returncode != 0:
            return False
        first = (proc.stdout or proc.stderr).strip().splitlines()
        self.version = first[0].split()[-1] if first and first[0].split() else ""
        self._binary = binary
        self.state = available
        return True

    def run(self, document: Document, cancel: CancelToken) -> ToolRun:
        """Invoke the tool on one document and normalize its output.

        Args:
            document: The document to analyse (its ``abs_path`` is passed).
            cancel: Run token; caps the subprocess timeout.

        Returns:
            The ToolRun outcome. Never raises for tool misbehaviour.
        """
        outcomes = config.get_dict("tool_outcomes")
        if not self.probe() or self._binary is None:
            return ToolRun(status=outcomes["unavailable"])

        timeout = cancel.remaining(float(config.get_int("defaults.tool_timeout_seconds")))
        if timeout <= 0:
            return ToolRun(status=outcomes["failed"], detail="run cancelled")
        try:
            proc = subprocess.run(
                [self._binary, *self.spec.get("args", []), document.abs_path],
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            return ToolRun(status=outcomes["timeout"], detail=f"{timeout:g}")
        except OSError as exc:
            return ToolRun(status=outcomes["failed"], detail=str(exc))

        if proc.returncode not in self.spec.get("ok_exit_codes", [0]):
            detail = (proc.stderr or "").strip().splitlines()
            return ToolRun(
                status=outcomes["failed"],
                detail=f"exit {proc.returncode}" + (f": {detail[0]}" if detail else ""),
            )
        try:
            findings = _PARSERS[self.name](proc.stdout, self.gate_id, self.spec)
        except ToolInvocationError as exc:
            return ToolRun(status=outcomes["failed"], detail=exc.detail)
        return ToolRun(status=outcomes["ok"], findings=tuple(findings))


class UnavailableTool:
    """No-op adapter used when a tool is missing or disabled."""

    def __init__(self, name: str, gate_id: str) -> None:
        self.name = name
        self.gate_id = gate_id

    @property
    def label(self) -> str:
        return config.get_str("defaults.built_in_tool")

    def probe(self) -> bool:
        return False

    def run(self, document: Document, cancel: CancelToken) -> ToolRun:
        return ToolRun(status=config.get_str("tool_outcomes.unavailable"))


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def build_toolset(
    enabled: bool = True,
    gate_ids: Optional[Sequence[str]] = None,
) -> tuple[dict[str, ExternalTool], list[str]]:
    """Probe every configured tool once and pick an adapter per gate.

    Args:
        enabled: When False, every gate gets an UnavailableTool without
            probing.
        gate_ids: Gates that will run. Tools serving other gates are
            neither probed nor mentioned in notices. Defaults to all.

    Returns:
        (gate id -> tool, notices). A notice is produced for each tool that
        was looked for and not found.
    """
    tools: dict[str, ExternalTool] = {}
    notices: list[str] = []
    template = config.get_str("messages.tool_unavailable")
    for name, spec in config.get_dict("external_tools").items():
        gate_id = spec["gate"]
        if gate_ids is not None and gate_id not in gate_ids:
            continue
        if not enabled:
            tools[gate_id] = UnavailableTool(name, gate_id)
            continue
        tool = SubprocessTool(name, spec)
        if tool.probe():
            tools[gate_id] = tool
        else:
            tools[gate_id] = UnavailableTool(name, gate_id)
            notices.append(template.format(tool=name, gate=gate_id))
    return tools, notices
