"""Entity forests: the named constructs of one file version, nested by range."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any, Optional

from histree.core.hunks import EditDescriptor
from histree.core.lines import EMPTY_RANGE, LineIndex, Range
from histree.parsing.base import Capture, StructuralParser

logger = logging.getLogger(__name__)

FILE_KIND = "file"

# (parent key, kind, name); the file root has parent key None and its path as name.
EntityKey = tuple[Optional["EntityKey"], str, str]


@dataclass(eq=False)
class ForestNode:
    """One entity occurrence. ``kind`` is a plain tag, never a subclass."""

    kind: str
    name: str
    name_range: Range
    body_range: Range
    parent: ForestNode | None = None
    children: list[ForestNode] = field(default_factory=list)
    depth: int = 0
    key: EntityKey = field(init=False)

    def __post_init__(self) -> None:
        parent_key = self.parent.key if self.parent is not None else None
        self.key = (parent_key, self.kind, self.name)

    @property
    def qualified_path(self) -> tuple[str, ...]:
        """Names from the file down to this entity, inclusive."""
        names = []
        node: ForestNode | None = self
        while node is not None:
            names.append(node.name)
            node = node.parent
        return tuple(reversed(names))

    @property
    def is_file(self) -> bool:
        return self.parent is None


class Forest:
    """Rooted entity tree of one file version; empty when the file is absent."""

    def __init__(self, root: ForestNode | None) -> None:
        self.root = root

    @classmethod
    def empty(cls) -> Forest:
        return cls(None)

    @classmethod
    def file_only(cls, path: str, content: bytes) -> Forest:
        """Forest holding just the file entity, used when parsing failed."""
        return cls(ForestNode(FILE_KIND, path, EMPTY_RANGE, LineIndex(content).whole()))

    def __iter__(self) -> Iterator[ForestNode]:
        """Pre-order walk, children in source order."""
        if self.root is None:
            return
        stack = [self.root]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def __len__(self) -> int:
        return sum(1 for _ in self)

    def __bool__(self) -> bool:
        return self.root is not None

    def keys(self) -> set[EntityKey]:
        return {node.key for node in self}

    def by_key(self) -> dict[EntityKey, ForestNode]:
        """First occurrence per identity key (siblings may repeat a key)."""
        nodes: dict[EntityKey, ForestNode] = {}
        for node in self:
            nodes.setdefault(node.key, node)
        return nodes


@dataclass
class ParsedFile:
    """A file version with its forest and the parser's tree handle."""

    path: str
    language: str
    content: bytes
    forest: Forest
    tree: Any = None


class EntityForestBuilder:
    """Derive a file's entity forest through a ``StructuralParser``."""

    def __init__(self, parser: StructuralParser) -> None:
        self.parser = parser

    def build(
        self,
        path: str,
        content: bytes,
        language: str,
        previous: ParsedFile | None = None,
        edits: Sequence[EditDescriptor] = (),
    ) -> ParsedFile:
        """Parse *content* and nest its captures under a file root.

        When *previous* is given, its tree and *edits* drive an incremental
        reparse instead of a full one.

        Raises:
            ParseFailure: Propagated from the parser.
        """
        prev_tree = previous.tree if previous is not None else None
        result = self.parser.parse(
            content, language, previous=prev_tree, edits=edits if prev_tree is not None else ()
        )
        forest = Forest.file_only(path, content)
        nest_captures(forest.root, result.captures)
        return ParsedFile(path, language, content, forest, result.tree)


def nest_captures(root: ForestNode, captures: Sequence[Capture]) -> None:
    """Attach *captures* below *root*, parenting each by body-range containment."""
    ordered = sorted(
        enumerate(captures),
        key=lambda item: (item[1].body_range.start_byte, -item[1].body_range.end_byte, item[0]),
    )
    stack: list[ForestNode] = []
    for _, cap in ordered:
        if not cap.body_range.contains(cap.name_range):
            logger.warning(
                "Dropping %s %r in %s: name range lies outside its body", cap.kind, cap.name, root.name
            )
            continue
        # equal bodies (e.g. `int a, b;`) are siblings, not parent and child
        while stack and (
            stack[-1].body_range == cap.body_range
            or not stack[-1].body_range.contains(cap.body_range)
        ):
            stack.pop()
        parent = stack[-1] if stack else root
        if any(
            c.kind == cap.kind and c.name == cap.name and c.body_range == cap.body_range
            for c in parent.children
        ):
            continue
        node = ForestNode(
            kind=cap.kind,
            name=cap.name,
            name_range=cap.name_range,
            body_range=cap.body_range,
            parent=parent,
            depth=parent.depth + 1,
        )
        parent.children.append(node)
        stack.append(node)
