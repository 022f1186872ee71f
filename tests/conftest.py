"""Shared fixtures for the Pipegate test suite."""

from __future__ import annotations

import shutil
import textwrap
from pathlib import Path
from typing import Callable, Optional

import pytest

from pipegate.engine import build_document
from pipegate.gates.registry import SuiteContext, all_gates, run_gate
from pipegate.lib.cancel import CancelToken
from pipegate.lib.models import Conventions, Document, GateResult, SourceFile
from pipegate.lib.rules import known_suppression_names


FIXTURES_DIR = Path(__file__).parent / "fixtures"
WORKFLOWS_DIR = FIXTURES_DIR / "workflows"


@pytest.fixture()
def make_doc() -> Callable[..., Document]:
    """Return a factory building a parsed Document from dedented YAML text.

    Leading blank lines are dropped so line 1 is the first line written.
    """

    def _make(text: str, path: str = "workflow.yml") -> Document:
        raw = textwrap.dedent(text).lstrip("\n")
        source = SourceFile(path=path, abs_path=f"/nonexistent/{path}", raw_text=raw)
        return build_document(source, known_suppression_names())

    return _make


@pytest.fixture()
def make_ctx() -> Callable[..., SuiteContext]:
    """Return a factory for SuiteContext with optional conventions and tools."""

    def _make(
        conventions: Optional[Conventions] = None,
        tools: Optional[dict] = None,
        mode: str = "full",
    ) -> SuiteContext:
        return SuiteContext(
            conventions=conventions or Conventions(),
            mode=mode,
            tools=tools or {},
            cancel=CancelToken(),
        )

    return _make


@pytest.fixture()
def ctx(make_ctx) -> SuiteContext:
    """Return a default SuiteContext (no conventions, no external tools)."""
    return make_ctx()


@pytest.fixture()
def gate_result(ctx) -> Callable[..., GateResult]:
    """Return a helper running one gate by id on a Document."""

    def _run(gate_id: str, doc: Document, context: Optional[SuiteContext] = None) -> GateResult:
        spec = next(s for s in all_gates() if s.gate_id == gate_id)
        return run_gate(spec, doc, context or ctx)

    return _run


@pytest.fixture()
def clean_text() -> str:
    """Return the contents of the workflow that passes every gate."""
    return (WORKFLOWS_DIR / "clean.yml").read_text(encoding="utf-8")


@pytest.fixture()
def repo(tmp_path: Path) -> Path:
    """Create a repository root with an empty .github/workflows directory."""
    (tmp_path / ".github" / "workflows").mkdir(parents=True)
    return tmp_path


@pytest.fixture()
def fixture_repo(repo: Path) -> Path:
    """Create a repository root holding every fixture workflow."""
    target = repo / ".github" / "workflows"
    for path in sorted(WORKFLOWS_DIR.glob("*.yml")):
        shutil.copy(path, target / path.name)
    return repo


@pytest.fixture()
def read_workflow() -> Callable[[str], str]:
    """Return a helper reading a fixture workflow by file name."""

    def _read(name: str) -> str:
        return (WORKFLOWS_DIR / name).read_text(encoding="utf-8")

    return _read


class FakeTool:
    """In-memory ExternalTool returning canned outcomes.

    ``outcomes`` maps a document path to the ToolRun to return; other
    documents get ``default``.  Calls are recorded for assertions.
    """

    def __init__(self, name, default, outcomes=None, version="9.9.9", available=True):
        self.name = name
        self.default = default
        self.outcomes = outcomes or {}
        self.version = version
        self.available = available
        self.calls: list[str] = []

    @property
    def label(self) -> str:
        return f"{self.name} {self.version}"

    def probe(self) -> bool:
        return self.available

    def run(self, document, cancel):
        self.calls.append(document.path)
        return self.outcomes.get(document.path, self.default)


@pytest.fixture()
def fake_tool() -> type:
    """Return the FakeTool class for building tool doubles."""
    return FakeTool
