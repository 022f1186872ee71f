"""parser — line-addressed structural model of a workflow document.

Builds a tree of immutable ``Node`` objects from raw YAML text using PyYAML's
composition layer (``yaml.compose``).  Composition stops before Python objects
are constructed, which keeps three things the gates depend on: mapping pairs
in source order with duplicate keys preserved, the exact source text of every
scalar, and source marks for every node.

Design notes:
    Marks are character offsets.  They are converted to 1-based line numbers
    through a ``LineIndex`` built once per document, so the same conversion
    works for the whole-document parse and for the per-block recovery parse,
    where offsets are relative to the block and only need a base added.

    Recovery: when the whole document does not compose, the text is split
    into top-level blocks (a block starts at every non-comment line in
    column 0) and each block is composed on its own.  A block that fails
    becomes an ``error`` node spanning its lines and parsing continues with
    the next block, so later gates still see the rest of the document.

    Aliases: a node reached through several aliases is converted once per
    position and shared, and a tree that would still grow past
    ``MAX_NODES`` once every alias is expanded is treated like a block that
    failed to compose.

    ``parse`` never raises.  The root node always spans line 1 to the last
    line of the input, and every child range is clamped inside its parent.
"""

from __future__ import annotations

import bisect
from dataclasses import dataclass
from typing import Any, Iterator, Optional

import yaml

MAPPING = "mapping"
SEQUENCE = "sequence"
SCALAR = "scalar"
ERROR = "error"

# Upper bound on the size of one converted tree, counted with every alias
# expanded.
MAX_NODES = 100_000


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Node:
    """One node of the structural model.

    Attributes:
        kind: 'mapping', 'sequence', 'scalar' or 'error'.
        line_start: First source line (1-based, inclusive).
        line_end: Last source line (1-based, inclusive).
        pairs: Ordered (key, value) pairs of a mapping.
        items: Ordered values of a sequence.
        value: Literal scalar value as written (quotes removed).
        raw: Exact source text of a scalar, including quotes or the
            block indicator.
        tag: Resolved YAML tag of a scalar (e.g. ``tag:yaml.org,2002:int``).
        message: Parse failure description for error nodes.
    """

    kind: str
    line_start: int
    line_end: int
    pairs: tuple[tuple["Node", "Node"], ...] = ()
    items: tuple["Node", ...] = ()
    value: Optional[str] = None
    raw: str = ""
    tag: str = ""
    message: str = ""

    @property
    def is_mapping(self) -> bool:
        return self.kind == MAPPING

    @property
    def is_sequence(self) -> bool:
        return self.kind == SEQUENCE

    @property
    def is_scalar(self) -> bool:
        return self.kind == SCALAR

    @property
    def is_null(self) -> bool:
        """True for an empty or explicit-null scalar."""
        return self.is_scalar and self.tag.endswith(":null")

    @property
    def text(self) -> str:
        """Scalar value as a string ('' for non-scalars and nulls)."""
        if not self.is_scalar or self.value is None:
            return ""
        return self.value

    def keys(self) -> list[str]:
        """Return the scalar keys of a mapping in source order."""
        return [k.text for k, _ in self.pairs if k.is_scalar]

    def key_node(self, key: str) -> Optional[Node]:
        """Return the first key node equal to ``key`` (case-sensitive)."""
        for k, _ in self.pairs:
            if k.is_scalar and k.value == key:
                return k
        return None

    def get(self, key: str) -> Optional[Node]:
        """Return the value node of the first ``key`` entry, if any."""
        for k, v in self.pairs:
            if k.is_scalar and k.value == key:
                return v
        return None

    def has(self, key: str) -> bool:
        """True when the mapping declares ``key``."""
        return self.key_node(key) is not None

    def children(self) -> Iterator[Node]:
        """Yield direct children (keys and values for mappings)."""
        for k, v in self.pairs:
            yield k
            yield v
        yield from self.items

    def walk(self) -> Iterator[Node]:
        """Yield this node and every descendant, depth first."""
        yield self
        for child in self.children():
            yield from child.walk()

    def scalars(self) -> Iterator[Node]:
        """Yield every scalar value node below this node (keys excluded)."""
        if self.is_scalar:
            yield self
            return
        for _, v in self.pairs:
            yield from v.scalars()
        for item in self.items:
            yield from item.scalars()

    def kind_name(self) -> str:
        """Return a human-readable kind for messages."""
        if self.is_scalar:
            return "null" if self.is_null else "scalar"
        return self.kind


@dataclass(frozen=True)
class ParseError:
    """A region of the document that could not be composed.

    Attributes:
        line_start: First line of the failed block.
        line_end: Last line of the failed block.
        line: Line the YAML reader reported the problem on.
        message: Reader message.
    """

    line_start: int
    line_end: int
    line: int
    message: str


# ---------------------------------------------------------------------------
# Offset to line mapping
# ---------------------------------------------------------------------------


def split_lines(text: str) -> list[str]:
    """Split ``text`` into lines on ``\\n`` only, dropping a trailing ``\\r``.

    Every line number pipegate reports counts ``\\n`` characters, so other
    Unicode line boundaries (form feed, U+2028 and the like) stay inside
    their line here too.
    """
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


class LineIndex:
    """Precomputed newline index mapping character offsets to 1-based lines."""

    def __init__(self, text: str) -> None:
        self._starts = [0]
        for i, ch in enumerate(text):
            if ch == "\n":
                self._starts.append(i + 1)
        self._length = len(text)
        if text and not text.endswith("\n"):
            self._count = len(self._starts)
        else:
            self._count = max(1, len(self._starts) - 1)

    @property
    def line_count(self) -> int:
        """Number of lines in the text (at least 1)."""
        return self._count

    def line_of(self, offset: int) -> int:
        """Return the 1-based line containing ``offset``, clamped to the text."""
        offset = max(0, min(offset, self._length))
        return min(bisect.bisect_right(self._starts, offset), self._count)


# ---------------------------------------------------------------------------
# Conversion from PyYAML nodes
# ---------------------------------------------------------------------------


class _ExpansionLimit(Exception):
    """Raised when alias expansion would build more than MAX_NODES nodes."""


class _Converter:
    """Converts composed PyYAML nodes into ``Node`` trees with absolute lines.

    A node reached again through an alias is converted once per position
    (base and clamp range) and the immutable result is shared.  The size of
    the expanded tree is still tracked, because every consumer that walks
    the tree pays for each path through a shared node.
    """

    def __init__(self, text: str, index: LineIndex) -> None:
        self.text = text
        self.index = index
        self._memo: dict[tuple[int, int, int, int], tuple[Node, int]] = {}

    def convert_root(self, ynode: yaml.Node, base: int, floor: int, ceiling: int) -> Node:
        """Convert one composed graph.

        Raises:
            _ExpansionLimit: If the expanded tree exceeds MAX_NODES.
        """
        # ids are only stable while this graph is alive
        self._memo = {}
        try:
            node, _ = self._convert(ynode, base, floor, ceiling, frozenset())
        finally:
            self._memo = {}
        return node

    def _convert(
        self,
        ynode: yaml.Node,
        base: int,
        floor: int,
        ceiling: int,
        active: frozenset[int],
    ) -> tuple[Node, int]:
        start = base + ynode.start_mark.index
        end = base + ynode.end_mark.index
        line_start = min(max(self.index.line_of(start), floor), ceiling)

        # A recursive alias would never terminate; cut it at the repeat.
        if id(ynode) in active:
            return Node(SCALAR, line_start, line_start, value="", tag="tag:yaml.org,2002:null"), 1

        key = (id(ynode), base, floor, ceiling)
        cached = self._memo.get(key)
        if cached is not None:
            return cached

        active = active | {id(ynode)}
        if isinstance(ynode, yaml.ScalarNode):
            raw = self.text[start:end]
            stripped = raw.rstrip()
            last = start + max(len(stripped) - 1, 0)
            line_end = min(max(self.index.line_of(last), line_start), ceiling)
            node = Node(
                SCALAR,
                line_start,
                line_end,
                value=ynode.value,
                raw=stripped,
                tag=ynode.tag or "",
            )
            size = 1
        elif isinstance(ynode, yaml.MappingNode):
            pairs = []
            size = 1
            for k, v in ynode.value:
                key_node, key_size = self._convert(k, base, line_start, ceiling, active)
                value_node, value_size = self._convert(v, base, line_start, ceiling, active)
                pairs.append(self._pair(key_node, value_node))
                size += key_size + value_size
            line_end = max([line_start] + [v.line_end for _, v in pairs] + [k.line_end for k, _ in pairs])
            node = Node(MAPPING, line_start, line_end, pairs=tuple(pairs))
        else:
            items = []
            size = 1
            for v in ynode.value:
                item, item_size = self._convert(v, base, line_start, ceiling, active)
                items.append(item)
                size += item_size
            line_end = max([line_start] + [v.line_end for v in items])
            node = Node(SEQUENCE, line_start, line_end, items=tuple(items))

        if size > MAX_NODES:
            raise _ExpansionLimit(
                f"alias expansion exceeds {MAX_NODES} nodes"
            )
        self._memo[key] = (node, size)
        return node, size

    @staticmethod
    def _pair(key: Node, value: Node) -> tuple[Node, Node]:
        # PyYAML marks an omitted value at the next token, which may sit
        # several lines below; anchor it to its key instead.
        if value.is_scalar and not value.raw:
            value = Node(
                SCALAR,
                key.line_end,
                key.line_end,
                value=value.value,
                tag=value.tag,
            )
        return key, value


# ---------------------------------------------------------------------------
# Block splitting for recovery
# ---------------------------------------------------------------------------

_DOC_MARKERS = ("---", "...")


def _is_block_start(line: str) -> bool:
    if not line or line[0] in " \t\r\n#-":
        return False
    return line.rstrip() not in _DOC_MARKERS


def _split_blocks(text: str) -> list[tuple[int, int]]:
    """Return (start_offset, end_offset) spans of top-level blocks."""
    spans: list[tuple[int, int]] = []
    offset = 0
    current: Optional[int] = None
    for line in text.split("\n"):
        line += "\n" if offset + len(line) < len(text) else ""
        stripped = line.rstrip()
        if stripped in _DOC_MARKERS:
            if current is not None:
                spans.append((current, offset))
                current = None
        elif _is_block_start(line):
            if current is not None:
                spans.append((current, offset))
            current = offset
        elif current is None and stripped and not stripped.lstrip().startswith("#"):
            # stray content before the first key still needs a home
            current = offset
        offset += len(line)
    if current is not None:
        spans.append((current, offset))
    return spans


def _problem_line(exc: Exception, base: int, index: LineIndex, fallback: int) -> int:
    mark = getattr(exc, "problem_mark", None) or getattr(exc, "context_mark", None)
    if mark is None or getattr(mark, "index", None) is None:
        return fallback
    return index.line_of(base + mark.index)


def _describe(exc: Exception) -> str:
    problem = getattr(exc, "problem", None)
    context = getattr(exc, "context", None)
    if problem and context:
        return f"{context}, {problem}"
    if problem:
        return str(problem)
    return str(exc).splitlines()[0] if str(exc) else type(exc).__name__


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------


def parse(raw_text: str) -> tuple[Node, list[ParseError]]:
    """Parse workflow text into a line-addressed Node tree.

    Args:
        raw_text: The document source.

    Returns:
        (root, errors). ``root`` spans every line of the input. ``errors``
        is empty when the whole document composed cleanly.
    """
    index = LineIndex(raw_text)
    total = index.line_count
    converter = _Converter(raw_text, index)

    try:
        composed = yaml.compose(raw_text, Loader=yaml.SafeLoader)
        if composed is None:
            return Node(MAPPING, 1, total), []
        root = converter.convert_root(composed, 0, 1, total)
    except (yaml.YAMLError, RecursionError, _ExpansionLimit) as exc:
        return _parse_blocks(raw_text, index, converter, exc)

    return _widen(root, total), []


def _widen(node: Node, total: int) -> Node:
    return Node(
        node.kind,
        1,
        total,
        pairs=node.pairs,
        items=node.items,
        value=node.value,
        raw=node.raw,
        tag=node.tag,
        message=node.message,
    )


def _parse_blocks(
    raw_text: str,
    index: LineIndex,
    converter: _Converter,
    whole_error: Exception,
) -> tuple[Node, list[ParseError]]:
    total = index.line_count
    pairs: list[tuple[Node, Node]] = []
    errors: list[ParseError] = []

    for start, end in _split_blocks(raw_text):
        first = index.line_of(start)
        last = max(first, index.line_of(max(start, end - 1)))
        block = raw_text[start:end]
        try:
            composed = yaml.compose(block, Loader=yaml.SafeLoader)
        except (yaml.YAMLError, RecursionError) as exc:
            message = _describe(exc)
            # end-of-block problems are marked on the following line
            line = min(max(_problem_line(exc, start, index, first), first), last)
            errors.append(ParseError(first, last, line, message))
            err = Node(ERROR, first, last, message=message)
            pairs.append((err, err))
            continue

        if composed is None:
            continue
        try:
            node = converter.convert_root(composed, start, first, last)
        except (RecursionError, _ExpansionLimit) as exc:
            message = _describe(exc)
            errors.append(ParseError(first, last, first, message))
            err = Node(ERROR, first, last, message=message)
            pairs.append((err, err))
            continue
        if node.is_mapping:
            pairs.extend(node.pairs)
        else:
            message = f"expected a 'key: value' entry, found a {node.kind_name()}"
            errors.append(ParseError(first, last, first, message))
            err = Node(ERROR, first, last, message=message)
            pairs.append((err, err))

    if not errors:
        # Every block composed on its own but the whole did not (for example
        # several YAML documents in one file); keep the original failure.
        line = _problem_line(whole_error, 0, index, 1)
        errors.append(ParseError(line, line, line, _describe(whole_error)))

    return Node(MAPPING, 1, total, pairs=tuple(pairs)), errors
