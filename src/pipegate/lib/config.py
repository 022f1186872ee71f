"""config — lazy-loaded, typed accessor for Pipegate defaults and rule catalog.

Reads ``config/defaults.yaml`` and ``config/rules.yaml`` on first access and
caches the result for the lifetime of the process.  Typed accessor helpers
(``get_str``, ``get_int``, ``get_list``, ``get_dict``) enforce expected types at
the call-site so that configuration mismatches surface as early and loudly as
possible.  No module-level side effects — config is loaded lazily.

Design notes:
    Both files are loaded once and cached in module-level sentinels so that
    every worker thread shares the same snapshot.  The first load happens on
    the calling thread before the worker pool starts (see ``engine.validate``),
    so the cache is never populated concurrently.  ``reset()`` exists solely
    for test isolation.
"""

from __future__ import annotations

from typing import Any

from pipegate._paths import defaults_path, rules_path
from pipegate.lib.yaml_loader import load_yaml

_DEFAULTS: dict[str, Any] | None = None
_RULES: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def _load_mapping(path: Any, label: str) -> dict[str, Any]:
    data = load_yaml(path)
    if not isinstance(data, dict):
        msg = f"{label} must be a YAML mapping, got {type(data).__name__}"
        raise TypeError(msg)
    return data


def load_defaults() -> dict[str, Any]:
    """Load and cache the defaults.yaml configuration file.

    Returns:
        The full configuration dictionary.

    Raises:
        FileNotFoundError: If defaults.yaml is missing.
        yaml.YAMLError: If defaults.yaml contains invalid YAML.
    """
    global _DEFAULTS  # noqa: PLW0603
    if _DEFAULTS is None:
        _DEFAULTS = _load_mapping(defaults_path(), "defaults.yaml")
    return _DEFAULTS


def load_rule_catalog() -> dict[str, Any]:
    """Load and cache the rules.yaml catalog.

    Returns:
        The catalog mapping with ``rules`` and ``credential_patterns`` keys.
    """
    global _RULES  # noqa: PLW0603
    if _RULES is None:
        _RULES = _load_mapping(rules_path(), "rules.yaml")
    return _RULES


# ---------------------------------------------------------------------------
# Accessors
# ---------------------------------------------------------------------------


def get(dotted_key: str) -> Any:
    """Access a nested config value using dot notation.

    Args:
        dotted_key: A dot-separated path like ``"severities.error"``.

    Returns:
        The value at the specified path.

    Raises:
        KeyError: If any segment of the path is missing.
    """
    parts = dotted_key.split(".")
    node: Any = load_defaults()
    for part in parts:
        if not isinstance(node, dict) or part not in node:
            msg = f"Config key not found: {dotted_key!r} (missing segment: {part!r})"
            raise KeyError(msg)
        node = node[part]
    return node


def get_str(dotted_key: str) -> str:
    """Return a config value as a string.

    Raises:
        KeyError: If the key is missing.
        TypeError: If the value is not a string.
    """
    value = get(dotted_key)
    if not isinstance(value, str):
        msg = f"Expected str for {dotted_key!r}, got {type(value).__name__}"
        raise TypeError(msg)
    return value


def get_int(dotted_key: str) -> int:
    """Return a config value as an integer.

    Raises:
        KeyError: If the key is missing.
        TypeError: If the value is not an integer.
    """
    value = get(dotted_key)
    if isinstance(value, bool) or not isinstance(value, int):
        msg = f"Expected int for {dotted_key!r}, got {type(value).__name__}"
        raise TypeError(msg)
    return value


def get_list(dotted_key: str) -> list[Any]:
    """Return a config value as a list.

    Raises:
        KeyError: If the key is missing.
        TypeError: If the value is not a list.
    """
    value = get(dotted_key)
    if not isinstance(value, list):
        msg = f"Expected list for {dotted_key!r}, got {type(value).__name__}"
        raise TypeError(msg)
    return value


def get_dict(dotted_key: str) -> dict[str, Any]:
    """Return a config value as a mapping.

    Raises:
        KeyError: If the key is missing.
        TypeError: If the value is not a mapping.
    """
    value = get(dotted_key)
    if not isinstance(value, dict):
        msg = f"Expected dict for {dotted_key!r}, got {type(value).__name__}"
        raise TypeError(msg)
    return value


def rule_meta(rule_id: str) -> dict[str, Any]:
    """Return the catalog entry for a built-in rule.

    Raises:
        KeyError: If the rule id is not in the catalog.
    """
    rules = load_rule_catalog().get("rules", {})
    if rule_id not in rules:
        msg = f"Unknown rule id: {rule_id!r}"
        raise KeyError(msg)
    return rules[rule_id]


def rule_ids() -> list[str]:
    """Return every built-in rule id in catalog order."""
    return list(load_rule_catalog().get("rules", {}))


# ---------------------------------------------------------------------------
# Test utilities
# ---------------------------------------------------------------------------


def reset() -> None:
    """Clear the cached config (used by tests)."""
    global _DEFAULTS, _RULES  # noqa: PLW0603
    _DEFAULTS = None
    _RULES = None
