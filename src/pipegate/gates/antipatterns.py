"""antipatterns — reliability and security smells.

Built-in heuristics, always run even when ``zizmor`` is available:

- unjustified error suppression (``continue-on-error: true``, ``|| true``)
- jobs without ``timeout-minutes``
- externally triggerable workflows without ``concurrency``
- escalated-trust triggers that check out the contributor's code
- attacker-controlled expressions interpolated into shell commands
- remote content piped straight into an interpreter
- destructive commands (``rm -rf /``, force pushes, ``chmod 777`` and the like)
- suppression annotations that give no reason

A construct counts as justified when a comment sits on the same line or on
the line directly above it.  A suppression annotation only justifies when
it carries a reason.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from pipegate.lib import config, workflow
from pipegate.lib.models import Document, Finding
from pipegate.lib.rules import make_finding

if TYPE_CHECKING:
    from pipegate.gates.registry import SuiteContext

TRAILING_COMMENT_RE = re.compile(r"\s#")


def is_justified(doc: Document, line: int) -> bool:
    """True when a justification comment is adjacent to ``line`` (1-based)."""
    lines = doc.lines
    annotations = {a.line: a for a in doc.suppressions.annotations}

    def justifies(lineno: int) -> bool:
        annotation = annotations.get(lineno)
        if annotation is not None:
            return bool(annotation.reason)
        return True

    if 0 < line <= len(lines) and TRAILING_COMMENT_RE.search(lines[line - 1]):
        if justifies(line):
            return True
    above = line - 1
    if 0 < above <= len(lines) and lines[above - 1].strip().startswith("#"):
        return justifies(above)
    return False


def check_error_suppression(doc: Document, ctx: SuiteContext) -> list[Finding]:
    """``continue-on-error: true`` or ``|| true`` without a comment saying why."""
    findings: list[Finding] = []
    for job in workflow.iter_jobs(doc.model):
        if not job.body.is_mapping:
            continue
        for unit in [job.body, *job.steps]:
            key = unit.key_node("continue-on-error")
            value = unit.get("continue-on-error")
            if key is None or value is None or not value.is_scalar:
                continue
            if value.text.lower() != "true":
                continue
            if not is_justified(doc, key.line_start):
                findings.append(
                    make_finding(
                        "unjustified-error-suppression",
                        key.line_start,
                        construct="continue-on-error: true",
                    )
                )

    patterns = [re.compile(p) for p in config.get_list("antipatterns.error_suppression_patterns")]
    for run in workflow.all_run_nodes(doc.model):
        for lineno, line in workflow.raw_lines(run):
            code = line.split(" #", 1)[0]
            for pattern in patterns:
                match = pattern.search(code)
                if match and not is_justified(doc, lineno):
                    findings.append(
                        make_finding(
                            "unjustified-error-suppression",
                            lineno,
                            construct=match.group(0).strip(),
                        )
                    )
                    break
    return findings


def check_missing_timeout(doc: Document, ctx: SuiteContext) -> list[Finding]:
    """Jobs that run on a runner should bound their duration."""
    return [
        make_finding("missing-timeout", job.line, job=job.job_id)
        for job in workflow.iter_jobs(doc.model)
        if job.body.is_mapping
        and not job.body.has("timeout-minutes")
        # reusable workflow calls cannot set a timeout
        and not job.body.has("uses")
    ]


def check_missing_concurrency(doc: Document, ctx: SuiteContext) -> list[Finding]:
    """Externally triggerable workflows should declare ``concurrency``."""
    root = doc.model
    if not root.is_mapping or root.has("concurrency"):
        return []
    external = config.get_list("workflow.externally_triggerable_events")
    events = [e for e in workflow.triggers(root) if e in external]
    if not events:
        return []
    on_key = root.key_node("on")
    return [
        make_finding(
            "missing-concurrency",
            on_key.line_start if on_key is not None else None,
            events=", ".join(events),
        )
    ]


def check_untrusted_checkout(doc: Document, ctx: SuiteContext) -> list[Finding]:
    """Checking out the contributor's head under an escalated-trust trigger."""
    events = workflow.escalated_events(doc.model)
    if not events:
        return []
    findings: list[Finding] = []
    for job in workflow.iter_jobs(doc.model):
        checkout = workflow.untrusted_checkout(job)
        if checkout is not None:
            findings.append(
                make_finding("untrusted-checkout", checkout.line_start, job=job.job_id, event=events[0])
            )
    return findings


def check_expression_injection(doc: Document, ctx: SuiteContext) -> list[Finding]:
    """Attacker-controlled context values expanded inside ``run`` scripts."""
    contexts = config.get_list("antipatterns.injectable_contexts")
    findings: list[Finding] = []
    for run in workflow.all_run_nodes(doc.model):
        for lineno, line in workflow.raw_lines(run):
            for expression in workflow.expressions(line):
                if any(context in expression for context in contexts):
                    findings.append(make_finding("expression-injection", lineno, expression=expression))
    return findings


def check_piped_remote_execution(doc: Document, ctx: SuiteContext) -> list[Finding]:
    """``curl ... | sh`` and friends."""
    pattern = re.compile(config.get_str("antipatterns.remote_pipe_pattern"))
    return [
        make_finding("piped-remote-execution", lineno)
        for run in workflow.all_run_nodes(doc.model)
        for lineno, line in workflow.raw_lines(run)
        if pattern.search(line)
    ]


def check_dangerous_commands(doc: Document, ctx: SuiteContext) -> list[Finding]:
    """Destructive shell commands, reported once per line."""
    patterns = [
        (entry["label"], re.compile(entry["pattern"]))
        for entry in config.get_list("antipatterns.dangerous_commands")
    ]
    findings: list[Finding] = []
    for run in workflow.all_run_nodes(doc.model):
        for lineno, line in workflow.raw_lines(run):
            code = line.split(" #", 1)[0]
            for label, pattern in patterns:
                if pattern.search(code):
                    findings.append(make_finding("dangerous-command", lineno, label=label))
                    break
    return findings


def check_bare_suppressions(doc: Document, ctx: SuiteContext) -> list[Finding]:
    """Suppression annotations must say why the finding is accepted."""
    return [
        make_finding("bare-suppression", annotation.line, names=", ".join(annotation.names))
        for annotation in doc.suppressions.annotations
        if not annotation.reason
    ]


DETECTORS = (
    check_error_suppression,
    check_missing_timeout,
    check_missing_concurrency,
    check_untrusted_checkout,
    check_expression_injection,
    check_piped_remote_execution,
    check_dangerous_commands,
    check_bare_suppressions,
)
