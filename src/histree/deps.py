"""Import of an external static dependency graph into the ``deps`` table.

The extraction tool writes JSON shaped like::

    {"cells": [{"details": [
        {"src":  {"object": "pkg.A.run", "type": "function", "file": "A.java", "lineNumber": 12},
         "dest": {"object": "pkg.B",     "type": "type",     "file": "B.java", "lineNumber": 3},
         "type": "Call"}
    ]}]}

Endpoints are resolved to entities present at one commit by file path and
line. Nothing in the mining core reads the result.
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path

from histree.db.models import Dep
from histree.db.repository import Repository
from histree.errors import HistreeError

logger = logging.getLogger(__name__)

DEP_KINDS: frozenset[str] = frozenset(
    [
        "Annotation", "Call", "Cast", "Contain", "Create", "Extend",
        "Implement", "Import", "Parameter", "Return", "Throw", "Use",
    ]
)
ENDPOINT_KINDS: frozenset[str] = frozenset(["file", "function", "type", "var"])


class DepsFormatError(HistreeError, ValueError):
    """The dependency file does not have the expected structure."""


@dataclass(frozen=True)
class Endpoint:
    full_name: str
    kind: str
    file: str
    line: int

    @property
    def name(self) -> str:
        """Last dotted component of the qualified name."""
        return self.full_name.rsplit(".", 1)[-1]


@dataclass(frozen=True)
class DepEdge:
    src: Endpoint
    dest: Endpoint
    kind: str


def _endpoint(raw: dict, where: str) -> Endpoint:
    try:
        ep = Endpoint(
            full_name=str(raw["object"]),
            kind=str(raw["type"]),
            file=str(raw["file"]),
            line=int(raw["lineNumber"]),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise DepsFormatError(f"{where}: malformed endpoint ({exc})") from None
    if ep.kind not in ENDPOINT_KINDS:
        raise DepsFormatError(f"{where}: unknown endpoint type {ep.kind!r}")
    return ep


def load_deps(path: Path) -> list[DepEdge]:
    """Parse a dependency file.

    Raises:
        DepsFormatError: On invalid JSON or unexpected structure.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise DepsFormatError(f"{path}: invalid JSON ({exc})") from None
    if not isinstance(data, dict) or not isinstance(data.get("cells"), list):
        raise DepsFormatError(f"{path}: expected an object with a 'cells' list")

    edges = []
    for i, cell in enumerate(data["cells"]):
        for j, detail in enumerate(cell.get("details", []) if isinstance(cell, dict) else []):
            where = f"cells[{i}].details[{j}]"
            if not isinstance(detail, dict):
                raise DepsFormatError(f"{where}: expected an object")
            kind = detail.get("type")
            if kind not in DEP_KINDS:
                raise DepsFormatError(f"{where}: unknown dependency type {kind!r}")
            edges.append(
                DepEdge(
                    src=_endpoint(detail.get("src") or {}, f"{where}.src"),
                    dest=_endpoint(detail.get("dest") or {}, f"{where}.dest"),
                    kind=kind,
                )
            )
    return edges


@dataclass(frozen=True)
class _Location:
    entity_id: int
    name: str
    depth: int
    first_line: int
    last_line: int


class EndpointResolver:
    """Map endpoints to entities present at one commit."""

    def __init__(self, repo: Repository, commit_id: int) -> None:
        entities = {e.id: e for e in repo.list_entities()}
        depths: dict[int, int] = {}

        def depth(entity_id: int) -> int:
            if entity_id not in depths:
                parent_id = entities[entity_id].parent_id
                depths[entity_id] = 0 if parent_id is None else depth(parent_id) + 1
            return depths[entity_id]

        self._by_file: dict[str, list[_Location]] = defaultdict(list)
        for presence in repo.presence_at(commit_id):
            entity = entities[presence.entity_id]
            first, last = presence.body_range.line_span()
            path = entities[entity.file_id].name
            self._by_file[path].append(
                _Location(entity.id, entity.name, depth(entity.id), first, last)
            )

    def resolve(self, ep: Endpoint) -> int | None:
        """Return the entity id for *ep*, or None when it cannot be pinned down.

        File endpoints resolve to the file entity. Others resolve to the
        entity whose body spans the line, preferring a unique name match and
        then the unique deepest candidate.
        """
        locs = self._by_file.get(ep.file)
        if not locs:
            logger.warning("Could not find file %s", ep.file)
            return None
        if ep.kind == "file":
            candidates = [loc for loc in locs if loc.depth == 0]
        elif ep.line == 0:
            return None
        else:
            candidates = [loc for loc in locs if loc.first_line <= ep.line <= loc.last_line]

        if not candidates:
            logger.warning("Could not find a %s at %s:%d", ep.kind, ep.file, ep.line)
            return None
        if len(candidates) == 1:
            return candidates[0].entity_id

        named = [loc for loc in candidates if loc.name == ep.name]
        if len(named) == 1:
            return named[0].entity_id
        if not named:
            logger.debug("No %s named %r at %s:%d", ep.kind, ep.name, ep.file, ep.line)

        deepest = max(loc.depth for loc in candidates)
        candidates = [loc for loc in candidates if loc.depth == deepest]
        if len(candidates) == 1:
            return candidates[0].entity_id
        logger.warning("Found too many entities named %r at %s:%d", ep.name, ep.file, ep.line)
        return None


def import_deps(repo: Repository, commit_id: int, edges: list[DepEdge]) -> tuple[int, int]:
    """Resolve *edges* at *commit_id* and store them.

    Does not commit; wrap in ``repo.transaction()``.

    Returns:
        ``(stored, skipped)`` edge counts; duplicates count as stored once.
    """
    resolver = EndpointResolver(repo, commit_id)
    deps = []
    skipped = 0
    for edge in edges:
        src_id = resolver.resolve(edge.src)
        dest_id = resolver.resolve(edge.dest)
        if src_id is None or dest_id is None:
            skipped += 1
            continue
        deps.append(Dep(commit_id=commit_id, src_entity_id=src_id, dest_entity_id=dest_id, kind=edge.kind))
    return repo.add_deps(deps), skipped
