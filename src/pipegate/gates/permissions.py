"""permissions — least-privilege checks on ``permissions`` blocks.

A workflow must declare its token scope explicitly, either once at the top
level or on every job.  Declared blocks are validated against the known
scope names and the read/write/none vocabulary; ``write-all`` is always an
error and ``read-all`` a warning.

The remaining heuristic targets the classic privilege-escalation path: a
workflow triggered by an escalated-trust event that checks out the
contributor's head while its effective permissions still grant write.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Optional

from pipegate.lib import config, workflow
from pipegate.lib.models import Document, Finding
from pipegate.lib.parser import ERROR, Node
from pipegate.lib.rules import make_finding

if TYPE_CHECKING:
    from pipegate.gates.registry import SuiteContext


_PERMISSIONS_KEY_RE = re.compile(r"^\s*permissions\s*:")


def _declared_in_unparsed_block(doc: Document) -> bool:
    lines = doc.lines
    return any(
        _PERMISSIONS_KEY_RE.match(line)
        for err in doc.parse_errors
        for line in lines[err.line_start - 1 : err.line_end]
    )


def check_permissions_declared(doc: Document, ctx: SuiteContext) -> list[Finding]:
    """Require a top-level block, or one on every job.

    Skipped when a block that failed to parse declares ``permissions``:
    the declaration exists and the parse error is the real problem.
    """
    root = doc.model
    if not root.is_mapping or workflow.permissions_node(root) is not None:
        return []
    if _declared_in_unparsed_block(doc):
        return []
    jobs = workflow.iter_jobs(root)
    undeclared = [j for j in jobs if workflow.permissions_node(j.body) is None]
    if len(undeclared) == len(jobs):
        return [make_finding("missing-permissions-block")]
    return [
        make_finding("missing-job-permissions", job.line, job=job.job_id)
        for job in undeclared
    ]


def _validate_block(node: Node, where: str) -> list[Finding]:
    wildcard_write = config.get_str("permissions.wildcard_write")
    wildcard_read = config.get_str("permissions.wildcard_read")
    valid_scopes = config.get_list("permissions.valid_scopes")
    valid_values = config.get_list("permissions.valid_values")

    if node.kind == ERROR:
        return []
    if node.is_scalar and not node.is_null:
        value = node.text.strip()
        if value == wildcard_write:
            return [make_finding("wildcard-permissions", node.line_start, value=value, where=where)]
        if value == wildcard_read:
            return [make_finding("broad-read-permissions", node.line_start, value=value, where=where)]
        return [make_finding("invalid-permission-value", node.line_start, scope="permissions", value=value)]
    if not node.is_mapping:
        return [
            make_finding(
                "invalid-permission-value",
                node.line_start,
                scope="permissions",
                value=node.kind_name(),
            )
        ]

    findings: list[Finding] = []
    for key, value in node.pairs:
        if not key.is_scalar:
            continue
        if key.text not in valid_scopes:
            findings.append(
                make_finding(
                    "unknown-permission-scope",
                    key.line_start,
                    scope=key.text,
                    valid=", ".join(valid_scopes),
                )
            )
            continue
        if not value.is_scalar or value.text not in valid_values:
            shown = value.text if value.is_scalar else value.kind_name()
            findings.append(
                make_finding("invalid-permission-value", value.line_start, scope=key.text, value=shown)
            )
    return findings


def check_permission_values(doc: Document, ctx: SuiteContext) -> list[Finding]:
    """Validate every declared block, workflow-level and per job."""
    findings: list[Finding] = []
    top = workflow.permissions_node(doc.model)
    if top is not None:
        findings.extend(_validate_block(top, ""))
    where_job = config.get_str("messages.where_job")
    for job in workflow.iter_jobs(doc.model):
        node = workflow.permissions_node(job.body)
        if node is not None:
            findings.extend(_validate_block(node, where_job.format(job=job.job_id)))
    return findings


def write_scopes(node: Optional[Node]) -> list[str]:
    """Return the scopes a permissions value grants write access to."""
    if node is None:
        return []
    if node.is_scalar:
        wildcard = config.get_str("permissions.wildcard_write")
        return [wildcard] if node.text.strip() == wildcard else []
    if not node.is_mapping:
        return []
    write = config.get_str("permissions.write_value")
    return [k.text for k, v in node.pairs if k.is_scalar and v.is_scalar and v.text == write]


def check_elevated_untrusted_checkout(doc: Document, ctx: SuiteContext) -> list[Finding]:
    """Flag write scopes on jobs that check out contributor code under escalated trust."""
    events = workflow.escalated_events(doc.model)
    if not events:
        return []
    top = workflow.permissions_node(doc.model)
    findings: list[Finding] = []
    for job in workflow.iter_jobs(doc.model):
        checkout = workflow.untrusted_checkout(job)
        if checkout is None:
            continue
        effective = workflow.permissions_node(job.body)
        scopes = write_scopes(effective if effective is not None else top)
        if scopes:
            findings.append(
                make_finding(
                    "elevated-permissions-untrusted-checkout",
                    checkout.line_start,
                    job=job.job_id,
                    event=events[0],
                    scope=", ".join(scopes),
                )
            )
    return findings


DETECTORS = (
    check_permissions_declared,
    check_permission_values,
    check_elevated_untrusted_checkout,
)
