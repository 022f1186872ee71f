"""pinning — external references must be pinned to immutable content.

Every ``uses:`` reference (job-level reusable workflows and step-level
actions) is classified by the part after ``@``:

    content-hash   40 or 64 hex characters
    version-tag    v1, v4.2.0, 2.1.0-rc1, ...
    branch-name    anything else
    untagged       no ``@`` at all

References under a trusted namespace, or listed as approved in the
conventions document, may use a content hash or a version tag.  Everything
else must use a content hash.  Local (``./``) references are skipped.
Container references (``docker://`` actions, job containers and service
containers) must carry an ``@sha256:`` digest.

The remediation always shows the pinned form.  When the conventions
document's ``pinned_references`` table knows the hash for a tag, the
suggestion uses it; nothing is looked up over the network.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Iterator

from pipegate.lib import config, workflow
from pipegate.lib.models import Document, Finding
from pipegate.lib.parser import Node
from pipegate.lib.rules import make_finding

if TYPE_CHECKING:
    from pipegate.gates.registry import SuiteContext

HASH = "content-hash"
TAG = "version-tag"
BRANCH = "branch-name"
UNTAGGED = "untagged"

VERSION_TAG_RE = re.compile(r"v?\d+(\.\d+)*([-+][0-9A-Za-z.\-]+)?")


def classify_ref(ref: str) -> str:
    """Classify the part of a reference after ``@``.

    Args:
        ref: The ref text ('' when the reference has no ``@``).

    Returns:
        One of HASH, TAG, BRANCH, UNTAGGED.
    """
    if not ref:
        return UNTAGGED
    lengths = config.get_list("pinning.hash_lengths")
    if len(ref) in lengths and re.fullmatch(r"[0-9a-fA-F]+", ref):
        return HASH
    if VERSION_TAG_RE.fullmatch(ref):
        return TAG
    return BRANCH


def _repository(name: str) -> str:
    """Return ``owner/name`` of an action or reusable workflow path."""
    return "/".join(name.split("/")[:2])


def is_trusted(name: str, ctx: SuiteContext) -> bool:
    """True when ``name`` may use a version tag instead of a hash."""
    conventions = ctx.conventions
    namespaces = set(config.get_list("pinning.trusted_namespaces"))
    namespaces.update(conventions.trusted_namespaces)
    owner = name.split("/", 1)[0]
    if owner in namespaces:
        return True
    approved = set(conventions.approved_references)
    return name in approved or _repository(name) in approved


def suggest_pin(name: str, ref: str, ctx: SuiteContext) -> str:
    """Return the pinned form to show in the remediation."""
    table = ctx.conventions.pinned_references
    messages = config.get_dict("messages")
    for candidate in (f"{name}@{ref}", f"{_repository(name)}@{ref}"):
        digest = table.get(candidate)
        if digest:
            return messages["pinned_suggestion"].format(name=name, digest=digest, ref=ref)
    return messages["default_suggestion"].format(name=name)


def _image_nodes(doc: Document) -> Iterator[Node]:
    """Yield job container and service container image scalars."""
    for job in workflow.iter_jobs(doc.model):
        if not job.body.is_mapping:
            continue
        container = job.body.get("container")
        if container is not None:
            if container.is_scalar:
                yield container
            elif container.is_mapping:
                image = container.get("image")
                if image is not None and image.is_scalar:
                    yield image
        services = job.body.get("services")
        if services is not None and services.is_mapping:
            for _, service in services.pairs:
                image = service.get("image") if service.is_mapping else None
                if image is not None and image.is_scalar:
                    yield image


def _check_image(node: Node, reference: str, image: str) -> list[Finding]:
    if config.get_str("pinning.docker_digest_marker") in image:
        return []
    # strip a tag, but not a registry port
    base = re.sub(r":[^/:@]*$", "", image)
    return [make_finding("unpinned-container-image", node.line_start, reference=reference, image=base)]


def check_action_references(doc: Document, ctx: SuiteContext) -> list[Finding]:
    """Classify every ``uses:`` reference and flag mutable pins."""
    local_prefix = config.get_str("pinning.local_prefix")
    docker_prefix = config.get_str("pinning.docker_prefix")
    findings: list[Finding] = []

    for node in workflow.uses_nodes(doc.model):
        reference = node.text.strip()
        if not reference or reference.startswith(local_prefix):
            continue
        if reference.startswith(docker_prefix):
            findings.extend(_check_image(node, reference, reference[len(docker_prefix):]))
            continue

        name, _, ref = reference.partition("@")
        kind = classify_ref(ref.strip())
        if kind == HASH:
            continue
        if kind == TAG and is_trusted(name, ctx):
            continue

        rule_id = {
            TAG: "unpinned-reference",
            BRANCH: "branch-reference",
            UNTAGGED: "untagged-reference",
        }[kind]
        findings.append(
            make_finding(
                rule_id,
                node.line_start,
                reference=reference,
                ref=ref,
                suggestion=suggest_pin(name, ref, ctx),
            )
        )
    return findings


def check_container_images(doc: Document, ctx: SuiteContext) -> list[Finding]:
    """Job and service containers must be pinned by digest."""
    findings: list[Finding] = []
    for node in _image_nodes(doc):
        image = node.text.strip()
        if not image or workflow.EXPRESSION_RE.search(image):
            continue
        findings.extend(_check_image(node, image, image))
    return findings


DETECTORS = (
    check_action_references,
    check_container_images,
)
