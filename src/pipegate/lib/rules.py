"""rules — rule catalog lookups and the Finding factory.

Every built-in check is identified by a stable rule id declared in
``config/rules.yaml`` together with its gate, severity and message/fix
templates.  Detectors never build ``Finding`` objects by hand: they call
``make_finding(rule_id, line, **variables)`` and the catalog supplies the
rest, so wording and severity live in one place.

Design notes:
    Template variables use the same ``{name}`` placeholder injection as the
    report formatter (``formatter.inject_variables``), so a template that
    references a variable the detector did not pass is left visibly
    unfilled rather than raising.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Any, Optional

from pipegate.lib import config
from pipegate.lib.formatter import inject_variables
from pipegate.lib.models import Finding


def make_finding(rule_id: str, line: Optional[int] = None, **variables: Any) -> Finding:
    """Build a Finding for a built-in rule.

    Args:
        rule_id: Catalog rule id.
        line: 1-based line, or None for document-level findings.
        **variables: Values for the message and fix templates.

    Returns:
        The Finding, with gate and severity taken from the catalog.
    """
    meta = config.rule_meta(rule_id)
    fix = inject_variables(meta.get("fix", ""), variables)
    return Finding(
        gate_id=meta["gate"],
        severity=meta["severity"],
        line=line,
        message=inject_variables(meta.get("message", rule_id), variables),
        remediation=fix or None,
        rule_id=rule_id,
    )


def gate_ids() -> list[str]:
    """Return gate ids in declaration order."""
    return list(config.get_list("gates.order"))


def rules_for_gate(gate_id: str) -> list[str]:
    """Return the built-in rule ids owned by ``gate_id``."""
    return [
        rule_id
        for rule_id in config.rule_ids()
        if config.rule_meta(rule_id).get("gate") == gate_id
    ]


def known_suppression_names() -> list[str]:
    """Return every name a suppression annotation may target.

    Gate ids, built-in rule ids, mapped external rule ids, and one
    ``<tool>-`` prefix per external tool for its unmapped rule kinds.
    """
    names = gate_ids() + config.rule_ids()
    for tool, spec in config.get_dict("external_tools").items():
        names.append(f"{tool}-")
        names.extend(spec.get("rule_map", {}).values())
    return names


@lru_cache(maxsize=None)
def _compiled_credential_patterns() -> tuple[tuple[str, re.Pattern[str]], ...]:
    entries = config.load_rule_catalog().get("credential_patterns", [])
    return tuple((e["label"], re.compile(e["pattern"])) for e in entries)


def credential_patterns() -> tuple[tuple[str, re.Pattern[str]], ...]:
    """Return (label, compiled pattern) pairs for hardcoded credentials."""
    return _compiled_credential_patterns()
