"""Data models for Pipegate documents, findings, results and conventions.

Typed frozen dataclasses shared by every component.  Results are built once
and never mutated: the Aggregator folds per-document results into a new
SuiteResult instead of filling in a shared structure, which is what makes
the worker pool safe without locks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from pipegate.lib import config
from pipegate.lib.parser import Node, ParseError, split_lines

if TYPE_CHECKING:
    from pipegate.lib.suppressions import SuppressionIndex


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SourceFile:
    """Raw loader output for one workflow file.

    Attributes:
        path: Posix path relative to the validated root.
        abs_path: Absolute filesystem path (passed to external tools).
        raw_text: File contents, or empty when unreadable.
        read_error: Description of the read failure, if any.
    """

    path: str
    abs_path: str
    raw_text: str
    read_error: Optional[str] = None


@dataclass(frozen=True)
class Document:
    """One parsed workflow document, immutable for the whole run.

    Attributes:
        path: Posix path relative to the validated root.
        abs_path: Absolute filesystem path.
        raw_text: Source text.
        model: Root Node of the structural model.
        parse_errors: Blocks the parser could not compose.
        suppressions: Inline suppression annotations for this document.
        read_error: Description of the read failure, if any.
    """

    path: str
    abs_path: str
    raw_text: str
    model: Node
    parse_errors: tuple[ParseError, ...]
    suppressions: "SuppressionIndex"
    read_error: Optional[str] = None

    @property
    def lines(self) -> list[str]:
        """Return the source split into lines (no line terminators)."""
        return split_lines(self.raw_text)


@dataclass(frozen=True)
class NoDocumentsFound:
    """Loader result when there is nothing to validate.

    Attributes:
        root: The root that was searched.
        reason: Human-readable reason (missing directory, no matches).
    """

    root: str
    reason: str


# ---------------------------------------------------------------------------
# Findings and results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Finding:
    """A single detector result.

    Attributes:
        gate_id: Gate that produced the finding.
        severity: 'error', 'warning' or 'info'.
        line: 1-based line, or None for document-level findings.
        message: Human-readable description.
        remediation: Suggested fix, if any.
        rule_id: Stable identifier of the check (suppression target).
    """

    gate_id: str
    severity: str
    line: Optional[int]
    message: str
    remediation: Optional[str]
    rule_id: str

    def sort_key(self) -> tuple[int, str, str]:
        """Return the in-gate ordering key (line, rule id, message)."""
        return (self.line or 0, self.rule_id, self.message)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-compatible dict."""
        return {
            "gate": self.gate_id,
            "rule": self.rule_id,
            "severity": self.severity,
            "line": self.line,
            "message": self.message,
            "remediation": self.remediation,
        }


@dataclass(frozen=True)
class GateResult:
    """Outcome of one gate on one document.

    Attributes:
        gate_id: The gate.
        status: 'pass', 'fail' or 'skip'.
        findings: Visible (non-suppressed) findings, sorted by line.
        tool_used: External tool name and version, or 'built-in'.
        suppressed: Number of findings hidden by suppression annotations.
    """

    gate_id: str
    status: str
    findings: tuple[Finding, ...] = ()
    tool_used: str = ""
    suppressed: int = 0

    def count(self, severity: str) -> int:
        """Return the number of visible findings with the given severity."""
        return sum(1 for f in self.findings if f.severity == severity)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-compatible dict."""
        return {
            "gate": self.gate_id,
            "status": self.status,
            "tool": self.tool_used,
            "suppressed": self.suppressed,
            "findings": [f.to_dict() for f in self.findings],
        }


@dataclass(frozen=True)
class DocumentResult:
    """All gate results for one document, in gate declaration order."""

    path: str
    gates: tuple[GateResult, ...] = ()

    @property
    def failed(self) -> bool:
        """True when any gate failed."""
        fail = config.get_str("statuses.fail")
        return any(g.status == fail for g in self.gates)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-compatible dict."""
        return {
            "path": self.path,
            "status": config.get_str("statuses.fail" if self.failed else "statuses.pass"),
            "gates": [g.to_dict() for g in self.gates],
        }


@dataclass(frozen=True)
class SuiteCounts:
    """Suite-level tallies."""

    errors: int = 0
    warnings: int = 0
    infos: int = 0
    suppressed: int = 0
    documents_passed: int = 0
    documents_failed: int = 0

    def to_dict(self) -> dict[str, int]:
        """Return a JSON-compatible dict."""
        return {
            "errors": self.errors,
            "warnings": self.warnings,
            "infos": self.infos,
            "suppressed": self.suppressed,
            "documents_passed": self.documents_passed,
            "documents_failed": self.documents_failed,
        }


@dataclass(frozen=True)
class SuiteResult:
    """Top-level result of a validation run.

    Attributes:
        status: 'passed', 'failed', 'partial' or 'no-documents'.
        mode: 'full' or 'quick'.
        root: The validated root directory.
        documents: Per-document results, sorted by path.
        counts: Suite-level tallies.
        notices: Informational notes (tool absence, cancellation, guidance).
        exit_code: Process exit status derived from the results.
    """

    status: str
    mode: str
    root: str
    documents: tuple[DocumentResult, ...] = ()
    counts: SuiteCounts = field(default_factory=SuiteCounts)
    notices: tuple[str, ...] = ()
    exit_code: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-compatible dict."""
        return {
            "status": self.status,
            "mode": self.mode,
            "root": self.root,
            "exit_code": self.exit_code,
            "summary": self.counts.to_dict(),
            "notices": list(self.notices),
            "documents": [d.to_dict() for d in self.documents],
        }


# ---------------------------------------------------------------------------
# Conventions document
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Conventions:
    """Organization-specific additions from a conventions document.

    Conventions only ever augment the built-in rule set; nothing here can
    disable or relax a built-in check.

    Attributes:
        required_keys: Extra top-level keys every workflow must declare.
        required_job_keys: Keys every job must declare.
        trusted_namespaces: Extra namespaces allowed to use version tags.
        approved_references: 'owner/name' references allowed to use tags.
        pinned_references: 'owner/name@tag' -> content hash table used to
            suggest concrete pins.
        logging_enabled: Whether to append run telemetry.
        logging_directory: Directory for the run telemetry log.
    """

    required_keys: tuple[str, ...] = ()
    required_job_keys: tuple[str, ...] = ()
    trusted_namespaces: tuple[str, ...] = ()
    approved_references: tuple[str, ...] = ()
    pinned_references: dict[str, str] = field(default_factory=dict)
    logging_enabled: bool = False
    logging_directory: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Conventions:
        """Build from a validated conventions mapping.

        Args:
            data: Parsed YAML mapping (see ``validate_conventions``).

        Returns:
            Conventions instance.
        """
        logging_cfg = data.get("logging") or {}
        return cls(
            required_keys=tuple(data.get("required_keys") or ()),
            required_job_keys=tuple(data.get("required_job_keys") or ()),
            trusted_namespaces=tuple(data.get("trusted_namespaces") or ()),
            approved_references=tuple(data.get("approved_references") or ()),
            pinned_references=dict(data.get("pinned_references") or {}),
            logging_enabled=bool(logging_cfg.get("enabled", False)),
            logging_directory=str(logging_cfg.get("directory", "")),
        )


_LIST_KEYS = (
    "required_keys",
    "required_job_keys",
    "trusted_namespaces",
    "approved_references",
)


def validate_conventions(data: Any) -> list[str]:
    """Validate the structure of a conventions document.

    Returns a list of human-readable error strings (empty = valid).

    Args:
        data: The parsed YAML content.

    Returns:
        List of validation error messages. Empty if valid.
    """
    errors: list[str] = []

    if data is None:
        return errors

    if not isinstance(data, dict):
        errors.append(f"Conventions must be a mapping, got {type(data).__name__}")
        return errors

    for list_key in _LIST_KEYS:
        val = data.get(list_key)
        if val is None:
            continue
        if not isinstance(val, list):
            errors.append(f"'{list_key}' must be a list, got {type(val).__name__}")
            continue
        for item in val:
            if not isinstance(item, str):
                errors.append(
                    f"'{list_key}' entries must be strings, got {type(item).__name__}"
                )
                break

    pinned = data.get("pinned_references")
    if pinned is not None:
        if not isinstance(pinned, dict):
            errors.append(
                f"'pinned_references' must be a mapping, got {type(pinned).__name__}"
            )
        else:
            for ref, digest in pinned.items():
                if not isinstance(ref, str) or "@" not in ref:
                    errors.append(
                        f"'pinned_references' keys must look like 'owner/name@tag', got {ref!r}"
                    )
                if not isinstance(digest, str):
                    errors.append(
                        f"'pinned_references' values must be strings, got {type(digest).__name__}"
                    )

    logging_cfg = data.get("logging")
    if logging_cfg is not None:
        if not isinstance(logging_cfg, dict):
            errors.append(
                f"'logging' must be a mapping, got {type(logging_cfg).__name__}"
            )
        else:
            enabled = logging_cfg.get("enabled")
            if enabled is not None and not isinstance(enabled, bool):
                errors.append(
                    f"logging.enabled must be a boolean, got {type(enabled).__name__}"
                )
            directory = logging_cfg.get("directory")
            if directory is not None and not isinstance(directory, str):
                errors.append(
                    f"logging.directory must be a string, got {type(directory).__name__}"
                )

    return errors
