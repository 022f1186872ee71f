"""loader — workflow document discovery and reading.

Resolves the workflow directory under a root (``.github/workflows`` when it
exists, otherwise the root itself), expands the include globs and reads each
match.  Results are sorted by relative path so every run sees documents in
the same order.

A missing root or an empty directory is not an error: it yields a
``NoDocumentsFound`` result the reporter turns into guidance.  A root that
exists but cannot be listed is fatal.  A single unreadable file is returned
with ``read_error`` set so the rest of the directory is still validated.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, Sequence, Union

from pipegate.exceptions import PipegateFatalError
from pipegate.lib import config
from pipegate.lib.models import NoDocumentsFound, SourceFile


def resolve_workflow_dir(root: Path) -> Path:
    """Return the directory holding workflow documents for ``root``."""
    nested = root / config.get_str("directories.workflows")
    if nested.is_dir():
        return nested
    return root


def _read(path: Path) -> tuple[str, Optional[str]]:
    try:
        return path.read_text(encoding="utf-8"), None
    except UnicodeDecodeError as exc:
        return "", f"not valid UTF-8 ({exc.reason} at byte {exc.start})"
    except OSError as exc:
        return "", f"{type(exc).__name__}: {exc.strerror or exc}"


def load_documents(
    root: Union[str, Path],
    include: Optional[Sequence[str]] = None,
) -> Union[list[SourceFile], NoDocumentsFound]:
    """Discover and read workflow documents under ``root``.

    Args:
        root: Repository root or workflow directory.
        include: Glob patterns relative to the workflow directory. Defaults
            to ``defaults.include_globs``.

    Returns:
        SourceFiles sorted by relative path, or NoDocumentsFound.

    Raises:
        PipegateFatalError: If the root exists but cannot be listed.
    """
    root_path = Path(root)
    globs = list(include or config.get_list("defaults.include_globs"))

    if not root_path.is_dir():
        return NoDocumentsFound(
            root=str(root_path), reason=config.get_str("messages.root_missing")
        )

    workflow_dir = resolve_workflow_dir(root_path)
    try:
        os.listdir(workflow_dir)
    except OSError as exc:
        msg = config.get_str("messages.root_unreadable").format(
            root=workflow_dir, error=exc.strerror or exc
        )
        raise PipegateFatalError(msg) from exc

    matches: set[Path] = set()
    for pattern in globs:
        matches.update(p for p in workflow_dir.glob(pattern) if p.is_file())

    if not matches:
        return NoDocumentsFound(
            root=str(root_path),
            reason=config.get_str("messages.no_matches").format(globs=", ".join(globs)),
        )

    files: list[SourceFile] = []
    for path in matches:
        text, error = _read(path)
        files.append(
            SourceFile(
                path=path.relative_to(root_path).as_posix(),
                abs_path=str(path.resolve()),
                raw_text=text,
                read_error=error,
            )
        )
    files.sort(key=lambda f: f.path)
    return files
