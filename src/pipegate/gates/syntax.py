"""syntax — structural checks on the minimal accepted workflow shape.

The built-in detectors cover what every workflow must get right before any
other gate can say something meaningful: the document composes, top-level
keys are present and correctly typed, triggers are well-formed, and every
job and step has exactly one way of doing its work.  ``actionlint`` adds
deeper schema checks when it is installed; these detectors run either way.

Unknown suppression targets are also reported here, since a typo in an
annotation is a defect in the document text itself.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pipegate.lib import config, workflow
from pipegate.lib.models import Document, Finding
from pipegate.lib.parser import ERROR, Node
from pipegate.lib.rules import make_finding

if TYPE_CHECKING:
    from pipegate.gates.registry import SuiteContext


def check_parse_errors(doc: Document, ctx: SuiteContext) -> list[Finding]:
    """Report every block the parser could not compose."""
    return [
        make_finding(
            "parse-error",
            err.line,
            detail=err.message,
            line_start=err.line_start,
            line_end=err.line_end,
        )
        for err in doc.parse_errors
    ]


def check_document_shape(doc: Document, ctx: SuiteContext) -> list[Finding]:
    """The document root must be a mapping."""
    if doc.model.is_mapping:
        return []
    return [make_finding("invalid-document-shape", doc.model.line_start, kind=doc.model.kind_name())]


def check_duplicate_keys(doc: Document, ctx: SuiteContext) -> list[Finding]:
    """Report keys repeated within one mapping, at every depth."""
    findings: list[Finding] = []
    for node in doc.model.walk():
        if not node.is_mapping:
            continue
        first_seen: dict[str, int] = {}
        for key, _ in node.pairs:
            if not key.is_scalar:
                continue
            if key.text in first_seen:
                findings.append(
                    make_finding(
                        "duplicate-key",
                        key.line_start,
                        key=key.text,
                        first_line=first_seen[key.text],
                    )
                )
            else:
                first_seen[key.text] = key.line_start
    return findings


def check_required_keys(doc: Document, ctx: SuiteContext) -> list[Finding]:
    """Built-in and convention-required top-level keys must be present.

    Skipped when part of the document failed to parse: the key may sit in
    an unreadable block and the parse error is the real problem.
    """
    root = doc.model
    if not root.is_mapping or doc.parse_errors:
        return []
    required = list(config.get_list("workflow.required_keys"))
    required += [k for k in ctx.conventions.required_keys if k not in required]
    return [make_finding("missing-required-key", key=key) for key in required if not root.has(key)]


def _type_error(key: str, node: Node, expected: str) -> Finding:
    return make_finding(
        "invalid-key-type", node.line_start, key=key, expected=expected, kind=node.kind_name()
    )


def check_key_types(doc: Document, ctx: SuiteContext) -> list[Finding]:
    """Top-level, job and step entries must have the right container kind."""
    root = doc.model
    if not root.is_mapping:
        return []
    findings: list[Finding] = []

    for key in ("name", "run-name"):
        node = root.get(key)
        if node is not None and not node.is_scalar:
            findings.append(_type_error(key, node, "string"))
    for key in ("env", "defaults"):
        node = root.get(key)
        if node is not None and not node.is_mapping and node.kind != ERROR:
            findings.append(_type_error(key, node, "mapping"))

    jobs = root.get("jobs")
    if jobs is None or jobs.kind == ERROR:
        return findings
    if not jobs.is_mapping:
        findings.append(_type_error("jobs", jobs, "mapping"))
        return findings

    for job in workflow.iter_jobs(root):
        prefix = f"jobs.{job.job_id}"
        if not job.body.is_mapping:
            findings.append(_type_error(prefix, job.body, "mapping"))
            continue
        steps = job.body.get("steps")
        if steps is not None and not steps.is_sequence:
            findings.append(_type_error(f"{prefix}.steps", steps, "sequence"))
            continue
        for index, step in enumerate(steps.items if steps is not None else (), start=1):
            if not step.is_mapping:
                findings.append(_type_error(f"{prefix}.steps[{index}]", step, "mapping"))
    return findings


def check_trigger_shape(doc: Document, ctx: SuiteContext) -> list[Finding]:
    """``on`` must be an event name, a list of names, or a mapping of filters."""
    root = doc.model
    on = root.get("on") if root.is_mapping else None
    if on is None or on.kind == ERROR:
        return []
    messages = config.get_dict("messages")

    if on.is_null or (on.is_scalar and not on.text.strip()):
        return [make_finding("invalid-trigger-shape", on.line_start, detail=messages["no_events"])]
    if on.is_scalar:
        return []

    findings: list[Finding] = []
    if on.is_sequence:
        if not on.items:
            findings.append(
                make_finding("invalid-trigger-shape", on.line_start, detail=messages["no_events"])
            )
        for item in on.items:
            if not item.is_scalar or item.is_null:
                detail = messages["event_entry_shape"].format(kind=item.kind_name())
                findings.append(make_finding("invalid-trigger-shape", item.line_start, detail=detail))
        return findings

    if on.is_mapping:
        for key, value in on.pairs:
            if value.is_null or value.is_mapping:
                continue
            # cron entries are the one event configured with a list
            if key.text == "schedule" and value.is_sequence:
                continue
            detail = messages["event_filter_shape"].format(event=key.text, kind=value.kind_name())
            findings.append(make_finding("invalid-trigger-shape", value.line_start, detail=detail))
        return findings

    detail = messages["trigger_kind"].format(kind=on.kind_name())
    return [make_finding("invalid-trigger-shape", on.line_start, detail=detail)]


def check_trigger_events(doc: Document, ctx: SuiteContext) -> list[Finding]:
    """Warn about event names that will never fire."""
    known = set(config.get_list("workflow.known_events"))
    return [
        make_finding("unknown-trigger-event", node.line_start, event=event)
        for event, node in workflow.triggers(doc.model).items()
        if event not in known
    ]


def check_jobs(doc: Document, ctx: SuiteContext) -> list[Finding]:
    """Every job needs a runner, and each job or step does one kind of work."""
    messages = config.get_dict("messages")
    findings: list[Finding] = []
    for job in workflow.iter_jobs(doc.model):
        body = job.body
        if not body.is_mapping:
            continue
        if not body.has("runs-on") and not body.has("uses"):
            findings.append(make_finding("missing-runner", job.line, job=job.job_id))
        if body.has("uses") and body.has("steps"):
            findings.append(
                make_finding(
                    "conflicting-step-definition",
                    body.key_node("steps").line_start,
                    unit=messages["job_unit"].format(job=job.job_id),
                    first="uses",
                    second="steps",
                )
            )
        for index, step in enumerate(job.steps, start=1):
            has_run, has_uses = step.has("run"), step.has("uses")
            if has_run and has_uses:
                findings.append(
                    make_finding(
                        "conflicting-step-definition",
                        step.line_start,
                        unit=messages["step_unit"].format(index=index, job=job.job_id),
                        first="run",
                        second="uses",
                    )
                )
            elif not has_run and not has_uses:
                findings.append(make_finding("empty-step", step.line_start, job=job.job_id))
        for key in ctx.conventions.required_job_keys:
            if not body.has(key):
                findings.append(
                    make_finding("missing-convention-job-key", job.line, job=job.job_id, key=key)
                )
    return findings


def check_suppression_targets(doc: Document, ctx: SuiteContext) -> list[Finding]:
    """Annotations must name a real gate or rule."""
    return [
        make_finding("unknown-suppression-target", line, name=name)
        for line, name in doc.suppressions.unknown
    ]


DETECTORS = (
    check_parse_errors,
    check_document_shape,
    check_duplicate_keys,
    check_required_keys,
    check_key_types,
    check_trigger_shape,
    check_trigger_events,
    check_jobs,
    check_suppression_targets,
)
