"""secrets — secret references in contexts that leak them.

Matching is textual: each scalar's raw text is searched for
``${{ secrets.NAME }}`` (or ``secrets['NAME']``) inside an expression, and
the enclosing shell command line is classified by its leading verb and by
the flag immediately before the reference.  There is no shell parser; the
gate prefers precision over recall and will miss secrets laundered through
variables.

Findings are reported at most once per source line.
"""

from __future__ import annotations

import fnmatch
import re
from typing import TYPE_CHECKING, Optional

from pipegate.lib import config, workflow
from pipegate.lib.models import Document, Finding
from pipegate.lib.parser import Node
from pipegate.lib.rules import credential_patterns, make_finding

if TYPE_CHECKING:
    from pipegate.gates.registry import SuiteContext

SECRET_RE = re.compile(
    r"\bsecrets\s*(?:\.\s*(?P<dotted>[A-Za-z_][\w-]*)|\[\s*['\"](?P<indexed>[^'\"]+)['\"]\s*\])"
)
COMMAND_SEPARATOR_RE = re.compile(r"&&|\|\||;|\|")
ASSIGNMENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=")
FLAG_BEFORE_RE = re.compile(r"(?:^|\s)(?P<flag>--?[A-Za-z][\w-]*)(?:=|\s+)[\"']?$")


def secret_names(text: str) -> list[tuple[int, str]]:
    """Return (offset, name) of every secret referenced inside an expression.

    Offsets point at the ``${{`` that opens the expression.
    """
    found: list[tuple[int, str]] = []
    for match in workflow.EXPRESSION_RE.finditer(text):
        for ref in SECRET_RE.finditer(match.group(1)):
            found.append((match.start(), ref.group("dotted") or ref.group("indexed")))
    return found


def leading_verb(segment: str) -> str:
    """Return the command verb of a shell segment.

    Skips wrapper commands (``sudo``, ``env``, ...) and ``VAR=value``
    assignments.
    """
    prefixes = set(config.get_list("secrets.command_prefixes"))
    for token in segment.strip().lstrip("\"'").split():
        if token in prefixes or ASSIGNMENT_RE.match(token):
            continue
        return token
    return ""


def _segments(line: str) -> list[tuple[int, str]]:
    """Split a command line on separators, keeping each segment's offset."""
    segments: list[tuple[int, str]] = []
    start = 0
    for sep in COMMAND_SEPARATOR_RE.finditer(line):
        # separators inside ${{ }} (e.g. `a || b`) are expression syntax
        if any(m.start() < sep.start() < m.end() for m in workflow.EXPRESSION_RE.finditer(line)):
            continue
        segments.append((start, line[start:sep.start()]))
        start = sep.end()
    segments.append((start, line[start:]))
    return segments


def classify_line(line: str, lineno: Optional[int] = None) -> Optional[Finding]:
    """Return the leak finding for one ``run`` line, if it leaks a secret."""
    references = secret_names(line)
    if not references:
        return None
    verbs = set(config.get_list("secrets.output_verbs"))
    flags = {f.lower() for f in config.get_list("secrets.sensitive_flags")}

    for seg_start, segment in _segments(line):
        in_segment = [
            (offset, name)
            for offset, name in references
            if seg_start <= offset < seg_start + len(segment)
        ]
        if not in_segment:
            continue
        verb = leading_verb(segment)
        if verb in verbs or verb.lower() in verbs:
            return make_finding("secret-in-output", lineno, secret=in_segment[0][1], verb=verb)
        for offset, name in in_segment:
            match = FLAG_BEFORE_RE.search(line[seg_start:offset])
            if match and match.group("flag").lower() in flags:
                return make_finding("secret-in-argument", lineno, secret=name, flag=match.group("flag"))
    return None


def check_run_commands(doc: Document, ctx: SuiteContext) -> list[Finding]:
    """Secrets printed to the log or passed as inline arguments."""
    findings: list[Finding] = []
    for run in workflow.all_run_nodes(doc.model):
        for lineno, line in workflow.raw_lines(run):
            finding = classify_line(line, lineno)
            if finding is not None:
                findings.append(finding)
    return findings


def _upload_inputs(doc: Document) -> list[Node]:
    action = config.get_str("workflow.upload_artifact_action")
    inputs: list[Node] = []
    for job in workflow.iter_jobs(doc.model):
        for step in job.steps:
            if workflow.step_action(step) != action:
                continue
            with_block = step.get("with")
            if with_block is not None and with_block.is_mapping:
                inputs.append(with_block)
    return inputs


def check_artifact_uploads(doc: Document, ctx: SuiteContext) -> list[Finding]:
    """Secrets or credential files included in uploaded artifacts."""
    globs = config.get_list("secrets.sensitive_artifact_globs")
    findings: list[Finding] = []
    for with_block in _upload_inputs(doc):
        for scalar in with_block.scalars():
            for lineno, line in workflow.raw_lines(scalar):
                names = secret_names(line)
                if names:
                    findings.append(make_finding("secret-in-artifact", lineno, secret=names[0][1]))

        path = with_block.get("path")
        if path is None or not path.is_scalar:
            continue
        for lineno, line in workflow.raw_lines(path):
            entry = line.strip().strip("\"'")
            if not entry or entry[0] in "|>!":
                continue
            basename = entry.rstrip("/").rsplit("/", 1)[-1]
            if any(fnmatch.fnmatch(basename, pattern) for pattern in globs):
                findings.append(make_finding("sensitive-artifact-path", lineno, path=entry))
    return findings


def check_hardcoded_credentials(doc: Document, ctx: SuiteContext) -> list[Finding]:
    """Literal credentials anywhere in the document text."""
    findings: list[Finding] = []
    for lineno, line in enumerate(doc.lines, start=1):
        for label, pattern in credential_patterns():
            if pattern.search(line):
                findings.append(make_finding("hardcoded-credential", lineno, label=label))
                break
    return findings


DETECTORS = (
    check_run_commands,
    check_artifact_uploads,
    check_hardcoded_credentials,
)
