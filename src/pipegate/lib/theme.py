"""theme — ANSI colour roles for the human-readable report.

Colour definitions are read lazily from ``config/theme.yaml``.  Colour is
emitted only when the target stream is a TTY and ``NO_COLOR`` is unset, so
piped reports, JSON output and test captures stay byte-for-byte plain.
"""

from __future__ import annotations

import os
import sys
from typing import Any, Optional

from pipegate._paths import theme_path
from pipegate.lib.yaml_loader import load_yaml


class Theme:
    """Role-to-ANSI mapping, loaded on first use."""

    def __init__(self) -> None:
        self._codes: Optional[dict[str, str]] = None

    def _load(self) -> dict[str, str]:
        path = theme_path()
        if not path.is_file():
            return {}
        raw = load_yaml(str(path)) or {}
        palette: dict[str, str] = raw.get("ansi", {})
        codes = {role: palette.get(colour, "") for role, colour in raw.get("roles", {}).items()}
        for style in ("bold", "dim", "reset"):
            codes[style] = palette.get(style, "")
        return codes

    @property
    def codes(self) -> dict[str, str]:
        """Return the resolved role-to-ANSI mapping."""
        if self._codes is None:
            self._codes = self._load()
        return self._codes

    @staticmethod
    def enabled(stream: Any = None) -> bool:
        """True when colour should be written to ``stream``."""
        target = stream or sys.stderr
        if os.environ.get("NO_COLOR"):
            return False
        return bool(getattr(target, "isatty", None) and target.isatty())

    def code(self, role: str, *, stream: Any = None) -> str:
        """Return the escape code for ``role``, or '' when colour is off."""
        if not self.enabled(stream):
            return ""
        return self.codes.get(role, "")

    def colorize(self, text: str, role: str, *, stream: Any = None) -> str:
        """Wrap ``text`` in the codes for ``role`` when colour is on."""
        start = self.code(role, stream=stream)
        if not start:
            return text
        return f"{start}{text}{self.code('reset', stream=stream)}"


_theme = Theme()


def code(role: str, *, stream: Any = None) -> str:
    """Return the escape code for ``role`` from the shared theme."""
    return _theme.code(role, stream=stream)


def colorize(text: str, role: str, *, stream: Any = None) -> str:
    """Colourise ``text`` for ``role`` using the shared theme."""
    return _theme.colorize(text, role, stream=stream)
