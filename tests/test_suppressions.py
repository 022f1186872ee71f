"""Tests for pipegate.lib.suppressions — annotation grammar and coverage."""

from __future__ import annotations

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from pipegate.lib.models import Finding
from pipegate.lib.rules import known_suppression_names
from pipegate.lib.suppressions import build_index, empty_index


def _finding(rule_id: str, gate_id: str, line: int | None) -> Finding:
    return Finding(
        gate_id=gate_id,
        severity="error",
        line=line,
        message="m",
        remediation=None,
        rule_id=rule_id,
    )


BLOCK = """\
jobs:
  build:
    steps:
      # pipegate: ignore secret-hygiene -- fixture value
      - run: |
          echo ${{ secrets.TOKEN }}
          make
      - run: ls
"""


class TestAnnotationScope:
    """Tests for which lines an annotation covers."""

    def test_trailing_annotation_covers_own_line(self) -> None:
        """A same-line annotation covers only that line."""
        text = "a: 1\nb: 2  # pipegate: ignore syntax\nc: 3\n"
        index = build_index(text, known_suppression_names())
        assert index.lines["syntax"] == frozenset({2})

    def test_own_line_annotation_covers_indented_block(self) -> None:
        """A preceding-line annotation covers the next line and its deeper block."""
        index = build_index(BLOCK, known_suppression_names())
        assert index.lines["secret-hygiene"] == frozenset({5, 6, 7})

    def test_own_line_annotation_skips_blank_and_comment_lines(self) -> None:
        """Blank lines and comments between annotation and target are skipped."""
        text = "# pipegate: ignore antipattern\n\n# note\njobs: {}\nname: x\n"
        index = build_index(text, known_suppression_names())
        assert index.lines["antipattern"] == frozenset({4})

    def test_annotation_at_end_covers_nothing(self) -> None:
        """An annotation with nothing after it covers no lines."""
        index = build_index("a: 1\n# pipegate: ignore syntax\n", known_suppression_names())
        assert index.lines["syntax"] == frozenset()

    def test_file_annotation(self) -> None:
        """ignore-file suppresses the target everywhere, including line-less findings."""
        index = build_index(
            "# pipegate: ignore-file permission-hardening\non: push\n",
            known_suppression_names(),
        )
        assert "permission-hardening" in index.file_targets
        assert index.is_suppressed(
            _finding("missing-permissions-block", "permission-hardening", None)
        )
        assert index.is_suppressed(_finding("wildcard-permissions", "permission-hardening", 40))

    def test_lineless_finding_needs_file_annotation(self) -> None:
        """Line annotations never match findings that have no line."""
        index = build_index("# pipegate: ignore permission-hardening\non: push\n", known_suppression_names())
        assert not index.is_suppressed(
            _finding("missing-permissions-block", "permission-hardening", None)
        )


class TestAnnotationParsing:
    """Tests for names, reasons and unknown targets."""

    def test_multiple_names_and_reason(self) -> None:
        """Comma-separated names and the reason after '--' are parsed."""
        text = "uses: x/y@v1  # pipegate: ignore reference-pinning, unpinned-reference -- vendored\n"
        index = build_index(text, known_suppression_names())
        annotation = index.annotations[0]
        assert annotation.names == ("reference-pinning", "unpinned-reference")
        assert annotation.reason == "vendored"

    def test_missing_reason_is_empty(self) -> None:
        """An annotation without a separator has an empty reason."""
        index = build_index("a: 1  # pipegate: ignore syntax\n", known_suppression_names())
        assert index.annotations[0].reason == ""

    def test_unknown_target_recorded(self) -> None:
        """Names that match no gate or rule are recorded, not applied."""
        index = build_index("a: 1  # pipegate: ignore secret-hygeine\n", known_suppression_names())
        assert index.unknown == ((1, "secret-hygeine"),)
        assert "secret-hygeine" not in index.lines

    def test_external_tool_prefix_accepted(self) -> None:
        """Unmapped external rule ids are accepted through the tool prefix."""
        index = build_index("a: 1  # pipegate: ignore zizmor-artipacked\n", known_suppression_names())
        assert index.unknown == ()
        assert index.lines["zizmor-artipacked"] == frozenset({1})

    def test_other_comments_ignored(self) -> None:
        """Ordinary comments do not produce annotations."""
        index = build_index("a: 1  # ignore this\n# pipegate rocks\n", known_suppression_names())
        assert index.annotations == ()


class TestMatching:
    """Tests for SuppressionIndex.match precedence."""

    def test_rule_wins_over_gate(self) -> None:
        """When both the rule and its gate cover a line, the rule is credited."""
        text = "uses: x/y@v1  # pipegate: ignore reference-pinning, unpinned-reference\n"
        index = build_index(text, known_suppression_names())
        finding = _finding("unpinned-reference", "reference-pinning", 1)
        assert index.match(finding) == "unpinned-reference"

    def test_gate_match(self) -> None:
        """A gate-wide annotation matches any rule of that gate."""
        index = build_index(BLOCK, known_suppression_names())
        assert index.match(_finding("secret-in-output", "secret-hygiene", 6)) == "secret-hygiene"

    def test_other_gate_not_matched(self) -> None:
        """An annotation for one gate never hides another gate's finding."""
        index = build_index(BLOCK, known_suppression_names())
        assert index.match(_finding("missing-timeout", "antipattern", 6)) is None

    def test_line_outside_range(self) -> None:
        """Findings below the covered block are not suppressed."""
        index = build_index(BLOCK, known_suppression_names())
        assert not index.is_suppressed(_finding("secret-in-output", "secret-hygiene", 8))

    def test_empty_index(self) -> None:
        """The empty index suppresses nothing."""
        assert not empty_index().is_suppressed(_finding("parse-error", "syntax", 1))


class TestBuildIndexFuzz:
    """Fuzz build_index with arbitrary text."""

    @given(st.lists(
        st.one_of(
            st.text(alphabet="abc:- #\t", max_size=30),
            st.sampled_from([
                "# pipegate: ignore syntax",
                "  # pipegate: ignore-file antipattern -- why",
                "x: 1  # pipegate: ignore nope, reference-pinning",
            ]),
        ),
        max_size=30,
    ))
    @settings(max_examples=100, suppress_health_check=[HealthCheck.too_slow])
    def test_covered_lines_within_document(self, lines: list[str]) -> None:
        """Every covered line exists in the document."""
        text = "\n".join(lines)
        index = build_index(text, known_suppression_names())
        total = len(text.splitlines())
        for covered in index.lines.values():
            assert all(1 <= line <= total for line in covered)
