"""Contract of the structural-parsing collaborator.

A parser turns ``(language, content)`` into named captures with byte/row/column
spans. Which constructs count as a class, method or field is configuration
(capture rules per language), never hard-coded by the caller.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from histree.core.hunks import EditDescriptor
from histree.core.lines import Range


@dataclass(frozen=True)
class Capture:
    """One named construct found by the parser."""

    kind: str
    name: str
    name_range: Range
    body_range: Range


@dataclass
class ParseResult:
    """Captures of one file version plus an opaque tree handle.

    ``tree`` is handed back to ``StructuralParser.parse`` as *previous* when
    the next version of the same file is parsed incrementally.
    """

    captures: list[Capture] = field(default_factory=list)
    tree: Any = None


class StructuralParser(ABC):
    """Abstract base for structural parsers."""

    @abstractmethod
    def supports(self, language: str) -> bool:
        """True if capture rules and a grammar exist for *language*."""

    @abstractmethod
    def parse(
        self,
        content: bytes,
        language: str,
        previous: Any = None,
        edits: Sequence[EditDescriptor] = (),
    ) -> ParseResult:
        """Parse *content* and return its captures.

        Args:
            content: Full bytes of the file version.
            language: Language tag selecting grammar and capture rules.
            previous: Tree handle from the previous version, or None for a
                full parse.
            edits: Edit descriptors leading from *previous* to *content*.

        Raises:
            ParseFailure: If no usable tree can be produced.
        """
