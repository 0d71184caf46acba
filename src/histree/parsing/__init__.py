"""histree structural parsers — capture rules and tree-sitter backend."""

from histree.parsing.base import Capture, ParseResult, StructuralParser
from histree.parsing.treesitter import TreeSitterParser

__all__ = [
    "Capture",
    "ParseResult",
    "StructuralParser",
    "TreeSitterParser",
]
