"""Domain models for the histree database layer."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from histree.core.forest import FILE_KIND
from histree.core.lines import Range


class ChangeKind(str, Enum):
    ADDED = "A"
    DELETED = "D"
    MODIFIED = "M"


class SkipStage(str, Enum):
    """Derivation stage a degraded path is missing from."""

    CHANGE = "change"
    PRESENCE = "presence"


@dataclass
class Entity:
    id: int
    parent_id: int | None
    file_id: int
    name: str
    kind: str

    @property
    def is_file(self) -> bool:
        return self.kind == FILE_KIND


@dataclass
class Commit:
    sha: str
    is_merge: bool
    author_date: int
    commit_date: int
    has_change_info: bool = False
    has_presence_info: bool = False
    has_reachability_info: bool = False
    id: int | None = None  # set after insert

    @property
    def is_complete(self) -> bool:
        return self.has_change_info and self.has_presence_info and self.has_reachability_info


@dataclass
class Ref:
    name: str
    commit_id: int
    id: int | None = None


@dataclass
class Change:
    commit_id: int
    entity_id: int
    kind: ChangeKind
    adds: int
    dels: int


@dataclass
class Presence:
    commit_id: int
    entity_id: int
    body_range: Range
    name_range: Range


@dataclass
class SkippedPath:
    commit_id: int
    path: str
    stage: SkipStage
    reason: str


@dataclass
class Dep:
    commit_id: int
    src_entity_id: int
    dest_entity_id: int
    kind: str
