"""tree-sitter implementation of the structural-parsing collaborator.

Capture rules are tree-sitter queries, one file per language. Every pattern
captures the construct's name as ``@name`` and the whole construct as
``@tag.<kind>``; the kind is whatever follows ``tag.``:

    (method_declaration name: (identifier) @name) @tag.method

Uses the tree-sitter 0.25+ API with pre-compiled grammar packages
(``pip install tree-sitter-java``). Parsers are not thread-safe, so each
worker thread keeps its own.
"""

from __future__ import annotations

import importlib
import logging
import threading
from collections.abc import Mapping, Sequence
from importlib import resources
from pathlib import Path
from typing import TYPE_CHECKING, Any

from tree_sitter import Language, Parser, Query, QueryCursor, QueryError

from histree.core.hunks import EditDescriptor
from histree.core.lines import Range
from histree.errors import ParseFailure
from histree.parsing.base import Capture, ParseResult, StructuralParser

if TYPE_CHECKING:
    from tree_sitter import Node, Tree

logger = logging.getLogger(__name__)

# Format: "language_tag": ("module_name", "function_name")
LANGUAGE_MODULES: dict[str, tuple[str, str]] = {
    "java": ("tree_sitter_java", "language"),
    "python": ("tree_sitter_python", "language"),
}

_TAG_PREFIX = "tag."

_language_cache: dict[str, Language] = {}
_cache_lock = threading.Lock()


def get_language(language: str) -> Language:
    """Load the compiled grammar for *language*.

    Raises:
        ParseFailure: If the language is unknown or its package is missing.
    """
    with _cache_lock:
        if language in _language_cache:
            return _language_cache[language]
        module_info = LANGUAGE_MODULES.get(language)
        if not module_info:
            raise ParseFailure(f"Unsupported language for tree-sitter: {language}")
        module_name, func_name = module_info
        try:
            module = importlib.import_module(module_name)
        except ImportError:
            raise ParseFailure(
                f"Language package '{module_name}' not installed. "
                f"Install it with: pip install {module_name.replace('_', '-')}"
            ) from None
        lang = Language(getattr(module, func_name)())
        _language_cache[language] = lang
        return lang


def packaged_query(language: str) -> str | None:
    """Return the capture rules shipped for *language*, or None."""
    source = resources.files("histree.parsing").joinpath("queries", f"{language}.scm")
    if not source.is_file():
        return None
    return source.read_text(encoding="utf-8")


def node_range(node: Node) -> Range:
    return Range(
        node.start_byte,
        node.start_point[0],
        node.start_point[1],
        node.end_byte,
        node.end_point[0],
        node.end_point[1],
    )


class TreeSitterParser(StructuralParser):
    """Structural parser backed by tree-sitter grammars and queries.

    Args:
        query_files: Optional per-language paths overriding the packaged
            capture rules.
        allow_syntax_errors: When False, a tree containing error nodes is
            rejected with ParseFailure instead of being used as-is.
    """

    def __init__(
        self,
        query_files: Mapping[str, Path | str] | None = None,
        allow_syntax_errors: bool = True,
    ) -> None:
        self.allow_syntax_errors = allow_syntax_errors
        self._query_files = {k: Path(v) for k, v in (query_files or {}).items()}
        self._queries: dict[str, Query] = {}
        self._local = threading.local()

    def supports(self, language: str) -> bool:
        return language in LANGUAGE_MODULES and (
            language in self._query_files or packaged_query(language) is not None
        )

    def _parser(self, language: str) -> Parser:
        parsers = getattr(self._local, "parsers", None)
        if parsers is None:
            parsers = self._local.parsers = {}
        if language not in parsers:
            parsers[language] = Parser(get_language(language))
        return parsers[language]

    def _query(self, language: str) -> Query:
        with _cache_lock:
            query = self._queries.get(language)
        if query is not None:
            return query
        if language in self._query_files:
            source = self._query_files[language].read_text(encoding="utf-8")
        else:
            source = packaged_query(language)
        if source is None:
            raise ParseFailure(f"No capture rules for language: {language}")
        try:
            query = Query(get_language(language), source)
        except QueryError as exc:
            raise ParseFailure(f"Invalid capture rules for {language}: {exc}") from exc
        with _cache_lock:
            self._queries[language] = query
        return query

    def parse(
        self,
        content: bytes,
        language: str,
        previous: Any = None,
        edits: Sequence[EditDescriptor] = (),
    ) -> ParseResult:
        if not self.supports(language):
            raise ParseFailure(f"Unsupported language for tree-sitter: {language}")
        parser = self._parser(language)
        query = self._query(language)

        old_tree = _apply_edits(previous, edits) if previous is not None else None
        if old_tree is not None:
            tree = parser.parse(content, old_tree)
        else:
            tree = parser.parse(content)
        if tree is None:
            raise ParseFailure(f"tree-sitter produced no tree for {language} input")
        if not self.allow_syntax_errors and tree.root_node.has_error:
            raise ParseFailure("syntax errors in source")
        return ParseResult(captures=extract_captures(query, tree), tree=tree)


def _apply_edits(previous: Tree, edits: Sequence[EditDescriptor]) -> Tree | None:
    """Copy *previous* and replay *edits* on it; None forces a full parse."""
    tree = previous.copy()
    try:
        for e in edits:
            tree.edit(
                start_byte=e.start_byte,
                old_end_byte=e.old_end_byte,
                new_end_byte=e.new_end_byte,
                start_point=tuple(e.start_point),
                old_end_point=tuple(e.old_end_point),
                new_end_point=tuple(e.new_end_point),
            )
    except ValueError as exc:
        logger.debug("Edit rejected by tree-sitter, reparsing from scratch: %s", exc)
        return None
    return tree


def extract_captures(query: Query, tree: Tree) -> list[Capture]:
    """Turn query matches into captures; matches without both parts are ignored."""
    captures = []
    for _pattern_idx, cap_dict in QueryCursor(query).matches(tree.root_node):
        names = cap_dict.get("name")
        if not names:
            continue
        name_node = names[0]
        for capture_name, nodes in cap_dict.items():
            if not capture_name.startswith(_TAG_PREFIX) or not nodes:
                continue
            body = nodes[0]
            captures.append(
                Capture(
                    kind=capture_name[len(_TAG_PREFIX) :],
                    name=(name_node.text or b"").decode("utf-8", errors="replace"),
                    name_range=node_range(name_node),
                    body_range=node_range(body),
                )
            )
    return captures
