"""Custom exceptions for Pipegate.

Only conditions that prevent any analysis at all are raised out of the
engine. Everything that concerns a single document (unreadable file,
malformed YAML, a crashing detector, a missing or misbehaving external
tool) is turned into a Finding instead.

Exceptions:
    PipegateError — Base class for every Pipegate exception.
    PipegateFatalError — The run cannot proceed (e.g. the workflow root
        exists but cannot be listed). The CLI exits with the fatal code.
    ConventionsError — The conventions document is missing or invalid.
        Subclasses PipegateFatalError.
    ToolInvocationError — An external analyzer could not be run or
        returned unusable output. Never escapes the tool adapter.
"""

from __future__ import annotations

from pipegate.lib import config


class PipegateError(Exception):
    """Base class for Pipegate exceptions."""


class PipegateFatalError(PipegateError):
    """Raised when the run cannot analyse anything."""


class ConventionsError(PipegateFatalError):
    """Raised when a conventions document is missing or structurally invalid.

    Carries the path and the list of validation messages so callers can
    print each one.
    """

    def __init__(self, path: str, errors: list[str]) -> None:
        """Initialize with the offending path and validation messages.

        Args:
            path: Path of the conventions document.
            errors: Human-readable validation errors. Empty when the file
                does not exist.
        """
        self.path = path
        self.errors = errors
        if errors:
            msg = config.get_str("messages.conventions_invalid").format(
                path=path, errors="; ".join(errors)
            )
        else:
            msg = config.get_str("messages.conventions_missing").format(path=path)
        super().__init__(msg)


class ToolInvocationError(PipegateError):
    """Raised inside the tool adapter when an external analyzer misbehaves."""

    def __init__(self, tool: str, detail: str) -> None:
        """Initialize with tool name and failure detail.

        Args:
            tool: Name of the external tool.
            detail: Short description of what went wrong.
        """
        self.tool = tool
        self.detail = detail
        super().__init__(f"{tool}: {detail}")
