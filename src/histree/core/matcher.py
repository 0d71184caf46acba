"""Stable entity identities across versions of a file.

Identity is positional: an entity keeps its id for as long as the triple
(parent identity, kind, name) stays the same. A method moved to another
class, or a class renamed, gets a new identity (delete + add).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from histree.core.forest import EntityKey, Forest
from histree.db.models import Entity

logger = logging.getLogger(__name__)


class IdentityTable:
    """Lookup table ``(parent_id, name, kind) -> entity id``.

    Loaded once from the store and grown in memory as ingestion observes new
    entities. Only the ingesting thread allocates; workers never touch it.
    """

    def __init__(self, entities: Iterable[Entity] = ()) -> None:
        self._ids: dict[tuple[int | None, str, str], int] = {}
        self._file_of: dict[int, int] = {}
        self._by_key: dict[EntityKey, int] = {}
        self._next_id = 1
        for entity in entities:
            self._remember(entity)

    def _remember(self, entity: Entity) -> None:
        self._ids[(entity.parent_id, entity.name, entity.kind)] = entity.id
        self._file_of[entity.id] = entity.file_id
        self._next_id = max(self._next_id, entity.id + 1)

    def __len__(self) -> int:
        return len(self._ids)

    def lookup(self, key: EntityKey) -> int | None:
        """Return the id bound to *key*, or None if never observed."""
        if key in self._by_key:
            return self._by_key[key]
        parent_key, kind, name = key
        parent_id = None
        if parent_key is not None:
            parent_id = self.lookup(parent_key)
            if parent_id is None:
                return None
        entity_id = self._ids.get((parent_id, name, kind))
        if entity_id is not None:
            self._by_key[key] = entity_id
        return entity_id

    def ensure(self, key: EntityKey, created: list[Entity]) -> int:
        """Return the id of *key*, allocating it (and missing ancestors) if new.

        Newly allocated entities are appended to *created*, parents first,
        so the caller can persist them in order.
        """
        entity_id = self.lookup(key)
        if entity_id is not None:
            return entity_id
        parent_key, kind, name = key
        parent_id = self.ensure(parent_key, created) if parent_key is not None else None
        entity_id = self._next_id
        file_id = self._file_of[parent_id] if parent_id is not None else entity_id
        entity = Entity(id=entity_id, parent_id=parent_id, file_id=file_id, name=name, kind=kind)
        self._remember(entity)
        self._by_key[key] = entity_id
        created.append(entity)
        return entity_id

    def file_id(self, entity_id: int) -> int:
        return self._file_of[entity_id]


@dataclass
class MatchResult:
    """Outcome of reconciling one file's new forest with its stored forest."""

    ids_by_key: dict[EntityKey, int] = field(default_factory=dict)
    previous_ids: set[int] = field(default_factory=set)
    current_ids: set[int] = field(default_factory=set)
    created: list[Entity] = field(default_factory=list)

    @property
    def added(self) -> set[int]:
        """Ids present now but not at the parent."""
        return self.current_ids - self.previous_ids

    @property
    def deleted(self) -> set[int]:
        """Ids present at the parent that have no successor."""
        return self.previous_ids - self.current_ids

    @property
    def retained(self) -> set[int]:
        return self.current_ids & self.previous_ids


class EntityMatcher:
    """Bind the entities of a freshly built forest to stored identities."""

    def __init__(self, table: IdentityTable) -> None:
        self.table = table

    def match(
        self,
        previous_ids: set[int],
        forest: Forest,
        extra: Forest | None = None,
    ) -> MatchResult:
        """Match *forest* against the ids stored for the file at the parent.

        Args:
            previous_ids: Ids of the file's entities present at the parent.
            forest: New forest of the file (empty if the file was deleted).
            extra: Optional old forest whose keys must also resolve to ids,
                so deleted lines can be attributed to them.

        Returns:
            A MatchResult; ``created`` lists identities allocated here.
        """
        result = MatchResult(previous_ids=set(previous_ids))
        for node in forest:
            entity_id = self.table.ensure(node.key, result.created)
            result.ids_by_key[node.key] = entity_id
            result.current_ids.add(entity_id)
        if extra is not None:
            for node in extra:
                if node.key not in result.ids_by_key:
                    result.ids_by_key[node.key] = self.table.ensure(node.key, result.created)
        if result.created:
            logger.debug("Allocated %d new entities", len(result.created))
        return result
