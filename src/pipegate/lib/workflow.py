"""workflow — read-only accessors over the structural model of a workflow.

Gates share these helpers for the handful of constructs they all need:
triggers, jobs, steps, ``uses`` references and checkout steps.  Every
helper tolerates malformed shapes by returning nothing, leaving the
reporting of bad shapes to the syntax gate.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterator, Optional

from pipegate.lib import config
from pipegate.lib.parser import Node, split_lines

EXPRESSION_RE = re.compile(r"\$\{\{(.*?)\}\}", re.DOTALL)


@dataclass(frozen=True)
class Job:
    """A job entry: its id, key node (for line numbers) and body."""

    job_id: str
    key: Node
    body: Node

    @property
    def line(self) -> int:
        return self.key.line_start

    @property
    def steps(self) -> list[Node]:
        """Return the step mappings of the job (non-mappings skipped)."""
        steps = self.body.get("steps") if self.body.is_mapping else None
        if steps is None or not steps.is_sequence:
            return []
        return [s for s in steps.items if s.is_mapping]


def triggers(root: Node) -> dict[str, Node]:
    """Return trigger event name -> node carrying its line.

    Handles the three accepted shapes of ``on``: a single event name, a
    list of event names, and a mapping of event name to filters.
    """
    on = root.get("on") if root.is_mapping else None
    events: dict[str, Node] = {}
    if on is None:
        return events
    if on.is_scalar and on.text:
        events[on.text] = on
    elif on.is_sequence:
        for item in on.items:
            if item.is_scalar and item.text:
                events.setdefault(item.text, item)
    elif on.is_mapping:
        for key, _ in on.pairs:
            if key.is_scalar and key.text:
                events.setdefault(key.text, key)
    return events


def escalated_events(root: Node) -> list[str]:
    """Return the escalated-trust trigger events declared by the workflow."""
    escalated = config.get_list("workflow.escalated_trust_events")
    return [e for e in triggers(root) if e in escalated]


def iter_jobs(root: Node) -> list[Job]:
    """Return the jobs of the workflow in source order."""
    jobs = root.get("jobs") if root.is_mapping else None
    if jobs is None or not jobs.is_mapping:
        return []
    return [
        Job(job_id=key.text, key=key, body=body)
        for key, body in jobs.pairs
        if key.is_scalar
    ]


def uses_nodes(root: Node) -> Iterator[Node]:
    """Yield every job- and step-level ``uses`` scalar."""
    for job in iter_jobs(root):
        if not job.body.is_mapping:
            continue
        uses = job.body.get("uses")
        if uses is not None and uses.is_scalar:
            yield uses
        for step in job.steps:
            step_uses = step.get("uses")
            if step_uses is not None and step_uses.is_scalar:
                yield step_uses


def action_name(uses: str) -> str:
    """Return ``owner/name[/path]`` of a ``uses`` string (ref removed)."""
    return uses.split("@", 1)[0].strip()


def step_action(step: Node) -> str:
    """Return the action name a step uses, or ''."""
    uses = step.get("uses")
    if uses is None or not uses.is_scalar:
        return ""
    return action_name(uses.text)


def run_nodes(job: Job) -> Iterator[Node]:
    """Yield the ``run`` scalars of a job's steps."""
    for step in job.steps:
        run = step.get("run")
        if run is not None and run.is_scalar and run.text:
            yield run


def all_run_nodes(root: Node) -> Iterator[Node]:
    """Yield the ``run`` scalars of every job."""
    for job in iter_jobs(root):
        yield from run_nodes(job)


def untrusted_checkout(job: Job) -> Optional[Node]:
    """Return the checkout ``ref`` node that pulls the contributor's head.

    Args:
        job: The job to inspect.

    Returns:
        The offending ``with.ref`` scalar, or None.
    """
    checkout = config.get_str("workflow.checkout_action")
    markers = config.get_list("workflow.untrusted_head_refs")
    for step in job.steps:
        if step_action(step) != checkout:
            continue
        with_block = step.get("with")
        if with_block is None or not with_block.is_mapping:
            continue
        for key in ("ref", "repository"):
            node = with_block.get(key)
            if node is None or not node.is_scalar:
                continue
            if any(marker in node.text for marker in markers):
                return node
    return None


def permissions_node(body: Node) -> Optional[Node]:
    """Return the ``permissions`` value of a workflow or job mapping."""
    if not body.is_mapping:
        return None
    return body.get("permissions")


def expressions(text: str) -> list[str]:
    """Return the inner text of every ``${{ ... }}`` expression."""
    return [m.group(1).strip() for m in EXPRESSION_RE.finditer(text)]


def raw_lines(node: Node) -> Iterator[tuple[int, str]]:
    """Yield (line number, source line) for a scalar's raw text."""
    for offset, line in enumerate(split_lines(node.raw) or [node.raw]):
        yield node.line_start + offset, line
