"""suppressions — inline suppression annotations and their line coverage.

Annotation grammar (marker token from ``suppression.marker``)::

    # pipegate: ignore <name>[, <name> ...] [-- reason]
    # pipegate: ignore-file <name>[, <name> ...] [-- reason]

``<name>`` is a gate id or a rule id.  A trailing annotation covers its own
line.  An annotation on a line of its own covers the next non-blank,
non-comment line plus every following line indented deeper than it, so a
whole step or ``run: |`` block is suppressed by annotating its first line.
``ignore-file`` covers every line of the document and also findings that
have no line.  Rules listed under ``suppression.unsuppressible_rules`` (the
check that flags annotations without a reason) are never hidden.

The index is built once per document and consulted only by the Aggregator;
detectors never look at suppressions themselves.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

from pipegate.lib import config
from pipegate.lib.models import Finding
from pipegate.lib.parser import split_lines


@dataclass(frozen=True)
class Annotation:
    """One parsed suppression annotation.

    Attributes:
        line: Line the annotation is written on.
        names: Gate or rule ids it targets.
        covered: Lines it covers (empty for file-level annotations).
        file_level: True for ``ignore-file``.
        reason: Free-text justification after the separator, if any.
    """

    line: int
    names: tuple[str, ...]
    covered: frozenset[int]
    file_level: bool = False
    reason: str = ""


@dataclass(frozen=True)
class SuppressionIndex:
    """Lookup of suppressed lines per gate id / rule id for one document.

    Attributes:
        lines: Map of target name to covered line numbers.
        file_targets: Names suppressed for the whole document.
        annotations: Every parsed annotation, in source order.
        unknown: (line, name) pairs naming no known gate or rule.
    """

    lines: dict[str, frozenset[int]] = field(default_factory=dict)
    file_targets: frozenset[str] = frozenset()
    annotations: tuple[Annotation, ...] = ()
    unknown: tuple[tuple[int, str], ...] = ()

    def match(self, finding: Finding) -> Optional[str]:
        """Return the target that suppresses ``finding``, or None.

        The rule id is tried before the gate id so that a specific
        suppression is credited over a gate-wide one covering the same
        line.

        Args:
            finding: The finding to test.

        Returns:
            The matching rule id or gate id, or None when not suppressed.
        """
        if finding.rule_id in config.get_list("suppression.unsuppressible_rules"):
            return None
        for target in (finding.rule_id, finding.gate_id):
            if target in self.file_targets:
                return target
            if finding.line is not None and finding.line in self.lines.get(target, ()):
                return target
        return None

    def is_suppressed(self, finding: Finding) -> bool:
        """True when any annotation covers ``finding``."""
        return self.match(finding) is not None


def _annotation_re() -> re.Pattern[str]:
    marker = re.escape(config.get_str("suppression.marker"))
    line_kw = re.escape(config.get_str("suppression.line_directive"))
    file_kw = re.escape(config.get_str("suppression.file_directive"))
    sep = re.escape(config.get_str("suppression.reason_separator"))
    return re.compile(
        rf"#\s*{marker}\s*:\s*(?P<kind>{file_kw}|{line_kw})\s+"
        rf"(?P<names>[^#]*?)(?:\s*{sep}\s*(?P<reason>.*?))?\s*$"
    )


def _indent(line: str) -> int:
    return len(line) - len(line.lstrip(" \t"))


def _is_comment_or_blank(line: str) -> bool:
    stripped = line.strip()
    return not stripped or stripped.startswith("#")


def _covered_block(lines: list[str], annotation_idx: int) -> frozenset[int]:
    """Lines covered by an own-line annotation at 0-based ``annotation_idx``."""
    target = annotation_idx + 1
    while target < len(lines) and _is_comment_or_blank(lines[target]):
        target += 1
    if target >= len(lines):
        return frozenset()

    base = _indent(lines[target])
    covered = {target + 1}
    last_content = target
    for idx in range(target + 1, len(lines)):
        line = lines[idx]
        if not line.strip():
            continue
        if _indent(line) <= base:
            break
        last_content = idx
    covered.update(range(target + 2, last_content + 2))
    return frozenset(covered)


def _split_names(raw: str) -> tuple[str, ...]:
    return tuple(n for n in re.split(r"[,\s]+", raw.strip()) if n)


def build_index(raw_text: str, known_names: Iterable[str]) -> SuppressionIndex:
    """Scan raw text for annotations and build the per-document index.

    Args:
        raw_text: Document source.
        known_names: Gate ids, rule ids and accepted prefixes used to flag
            annotations that name nothing real.  Entries ending in ``-``
            are treated as prefixes (external tool rule namespaces).

    Returns:
        The SuppressionIndex for the document.
    """
    pattern = _annotation_re()
    file_kw = config.get_str("suppression.file_directive")
    known = set(known_names)
    prefixes = tuple(n for n in known if n.endswith("-"))

    lines = split_lines(raw_text)
    coverage: dict[str, set[int]] = {}
    file_targets: set[str] = set()
    annotations: list[Annotation] = []
    unknown: list[tuple[int, str]] = []

    for idx, line in enumerate(lines):
        if "#" not in line:
            continue
        m = pattern.search(line)
        if not m:
            continue
        names = _split_names(m.group("names"))
        if not names:
            continue
        lineno = idx + 1
        file_level = m.group("kind") == file_kw
        own_line = not line[: m.start()].strip()

        if file_level:
            covered: frozenset[int] = frozenset()
        elif own_line:
            covered = _covered_block(lines, idx)
        else:
            covered = frozenset({lineno})

        for name in names:
            if name not in known and not (prefixes and name.startswith(prefixes)):
                unknown.append((lineno, name))
                continue
            if file_level:
                file_targets.add(name)
            else:
                coverage.setdefault(name, set()).update(covered)

        annotations.append(
            Annotation(
                line=lineno,
                names=names,
                covered=covered,
                file_level=file_level,
                reason=(m.group("reason") or "").strip(),
            )
        )

    return SuppressionIndex(
        lines={k: frozenset(v) for k, v in coverage.items()},
        file_targets=frozenset(file_targets),
        annotations=tuple(annotations),
        unknown=tuple(unknown),
    )


def empty_index() -> SuppressionIndex:
    """Return an index that suppresses nothing."""
    return SuppressionIndex()
