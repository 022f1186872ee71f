"""Pipegate engine — thin orchestrator for workflow validation.

Composes the library modules to validate every workflow document under a
root directory and return an immutable ``SuiteResult``.  This is the main
entry point for programmatic usage.

Design notes:
    The engine never inspects documents itself.  It delegates discovery to
    lib/loader, structure to lib/parser, annotations to lib/suppressions,
    analysis to the gate registry and folding to lib/aggregator, which
    keeps it a pure orchestration layer.

    Documents are analysed in a bounded thread pool.  Every worker reads
    shared immutable inputs and returns its own DocumentResult; the
    Aggregator sorts before folding, so completion order never shows up in
    the report.  Config is loaded on the calling thread before the pool
    starts.
"""

from __future__ import annotations

import os
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Mapping, Optional, Sequence, Union

import yaml

from pipegate.exceptions import ConventionsError, PipegateFatalError
from pipegate.gates.registry import GateSpec, SuiteContext, gates_for_mode, run_document
from pipegate.lib import config
from pipegate.lib.aggregator import fold_suite, no_documents_suite
from pipegate.lib.cancel import CancelToken
from pipegate.lib.loader import load_documents
from pipegate.lib.logger import log_run
from pipegate.lib.models import (
    Conventions,
    Document,
    DocumentResult,
    NoDocumentsFound,
    SourceFile,
    SuiteResult,
    validate_conventions,
)
from pipegate.lib.parser import parse
from pipegate.lib.rules import known_suppression_names
from pipegate.lib.suppressions import build_index
from pipegate.lib.tools import ExternalTool, build_toolset
from pipegate.lib.yaml_loader import load_yaml


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


def load_conventions(
    root: Union[str, Path],
    explicit_path: Optional[Union[str, Path]] = None,
) -> Conventions:
    """Load the conventions document, if any.

    Args:
        root: Validated root; ``<root>/.pipegate.yaml`` is used when no
            explicit path is given and it exists.
        explicit_path: Conventions document chosen by the caller. Must
            exist.

    Returns:
        Conventions (empty when there is no document).

    Raises:
        ConventionsError: If the explicit path is missing, or the document
            is not valid YAML or has the wrong structure.
    """
    if explicit_path is not None:
        path = Path(explicit_path)
        if not path.is_file():
            raise ConventionsError(str(path), [])
    else:
        path = Path(root) / config.get_str("filenames.conventions")
        if not path.is_file():
            return Conventions()

    try:
        data = load_yaml(path)
    except yaml.YAMLError as exc:
        raise ConventionsError(str(path), [f"not valid YAML: {exc}"]) from exc
    except OSError as exc:
        raise ConventionsError(str(path), [exc.strerror or str(exc)]) from exc

    errors = validate_conventions(data)
    if errors:
        raise ConventionsError(str(path), errors)
    return Conventions.from_dict(data or {})


def build_document(source: SourceFile, known_names: Sequence[str]) -> Document:
    """Parse a loaded file and index its suppression annotations."""
    model, errors = parse(source.raw_text)
    return Document(
        path=source.path,
        abs_path=source.abs_path,
        raw_text=source.raw_text,
        model=model,
        parse_errors=tuple(errors),
        suppressions=build_index(source.raw_text, known_names),
        read_error=source.read_error,
    )


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------


def _analyse(
    source: SourceFile,
    gates: list[GateSpec],
    ctx: SuiteContext,
    known_names: Sequence[str],
) -> Optional[DocumentResult]:
    if ctx.cancel.cancelled:
        return None
    return run_document(build_document(source, known_names), gates, ctx)


def validate(
    root: Union[str, Path],
    *,
    mode: str = "",
    conventions_path: Optional[Union[str, Path]] = None,
    use_external_tools: bool = True,
    workers: Optional[int] = None,
    deadline_seconds: Optional[float] = None,
    cancel: Optional[CancelToken] = None,
    toolset: Optional[Mapping[str, ExternalTool]] = None,
) -> SuiteResult:
    """Validate every workflow document under ``root``.

    This is the primary entry point for Pipegate validation.

    Args:
        root: Repository root or workflow directory.
        mode: 'full' (all gates) or 'quick' (syntax and reference pinning).
            Defaults to full.
        conventions_path: Explicit conventions document. When omitted,
            ``<root>/.pipegate.yaml`` is used if present.
        use_external_tools: When False, no external analyzer is probed or
            run.
        workers: Worker pool size. Defaults to the CPU count.
        deadline_seconds: Run deadline; documents not started by then are
            reported as unanalysed and the suite is ``partial``.
        cancel: Caller-owned cancellation token (overrides the deadline).
        toolset: Gate id -> tool adapters to use instead of probing.

    Returns:
        The folded SuiteResult.

    Raises:
        PipegateFatalError: If the mode or worker count is invalid, the
            root cannot be listed, or the conventions document is unusable.
    """
    config.load_defaults()
    config.load_rule_catalog()

    modes = [config.get_str("modes.full"), config.get_str("modes.quick")]
    mode = mode or modes[0]
    if mode not in modes:
        msg = config.get_str("messages.unknown_mode").format(mode=mode, modes=", ".join(modes))
        raise PipegateFatalError(msg)
    if workers is not None and workers < 1:
        raise PipegateFatalError(config.get_str("messages.no_workers").format(workers=workers))

    start = time.time()
    root_path = Path(root)
    conventions = load_conventions(root_path, conventions_path)

    loaded = load_documents(root_path)
    if isinstance(loaded, NoDocumentsFound):
        notice = config.get_str("messages.no_documents").format(
            root=loaded.root,
            reason=loaded.reason,
            workflows_dir=config.get_str("directories.workflows"),
        )
        return no_documents_suite(str(root_path), mode, notice)

    gates = gates_for_mode(mode)
    gate_ids = [g.gate_id for g in gates]
    notices: list[str] = []
    if toolset is None:
        tools, notices = build_toolset(use_external_tools, gate_ids)
    else:
        tools = dict(toolset)

    token = cancel or CancelToken(deadline_seconds)
    ctx = SuiteContext(conventions=conventions, mode=mode, tools=tools, cancel=token)
    known = known_suppression_names()

    results: list[DocumentResult] = []
    unanalysed: list[str] = []
    with ThreadPoolExecutor(max_workers=workers or os.cpu_count() or 1) as pool:
        futures = {pool.submit(_analyse, src, gates, ctx, known): src.path for src in loaded}
        for future in as_completed(futures):
            result = future.result()
            if result is None:
                unanalysed.append(futures[future])
            else:
                results.append(result)

    if unanalysed:
        notices.append(
            config.get_str("messages.run_cancelled").format(
                count=len(unanalysed), paths=", ".join(sorted(unanalysed))
            )
        )

    suite = fold_suite(
        results,
        mode=mode,
        root=str(root_path),
        notices=notices,
        cancelled=bool(unanalysed),
    )

    if conventions.logging_enabled and conventions.logging_directory:
        run_ms = int((time.time() - start) * 1000)
        log_run(
            conventions.logging_directory,
            suite,
            {src.path: src.raw_text for src in loaded},
            run_ms,
        )

    return suite
