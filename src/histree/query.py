"""Historical queries over mined data."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from histree.db.models import Change, Commit, Entity, Presence
from histree.db.repository import Repository
from histree.errors import HistreeError

PATH_SEPARATOR = "::"

_DURATION_RE = re.compile(r"^(\d+)\s*([ymwd])$")
_DURATION_DAYS = {"y": 365, "m": 30, "w": 7, "d": 1}


class EntityNotFound(HistreeError, LookupError):
    """No entity, or more than one, matches a qualified path."""


def parse_since(text: str, now: datetime | None = None) -> int:
    """Turn an ISO date or a duration (``2y``, ``6m``, ``3w``, ``30d``) into unix seconds.

    Durations count back from *now*; months are 30 days and years 365.
    Naive ISO dates are taken as UTC.

    Raises:
        ValueError: If *text* is neither form.
    """
    text = text.strip()
    m = _DURATION_RE.match(text)
    if m:
        now = now or datetime.now(timezone.utc)
        days = int(m.group(1)) * _DURATION_DAYS[m.group(2)]
        return int((now - timedelta(days=days)).timestamp())
    try:
        moment = datetime.fromisoformat(text)
    except ValueError:
        raise ValueError(
            f"Invalid date {text!r}: use an ISO date (2023-01-31) or a duration (2y, 6m, 30d)"
        ) from None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp())


def resolve_entity_path(repo: Repository, path: str) -> Entity:
    """Find the entity named by ``file::Outer::inner``.

    A segment may end in ``@kind`` to pick between siblings that share a name
    (``Shape.java::Shape@class``).

    Raises:
        EntityNotFound: If a segment matches nothing or is ambiguous.
    """
    file_path, *names = path.split(PATH_SEPARATOR)
    matches = repo.find_children(None, file_path)
    if not matches:
        raise EntityNotFound(f"No file entity '{file_path}'")
    entity = matches[0]
    for segment in names:
        name, _, kind = segment.partition("@")
        children = repo.find_children(entity.id, name)
        if kind:
            children = [c for c in children if c.kind == kind]
        if not children:
            raise EntityNotFound(f"No entity '{segment}' under '{entity.name}'")
        if len(children) > 1:
            kinds = ", ".join(sorted(c.kind for c in children))
            raise EntityNotFound(
                f"'{segment}' is ambiguous under '{entity.name}' ({kinds}); "
                f"append @kind, e.g. {name}@{children[0].kind}"
            )
        entity = children[0]
    return entity


@dataclass
class EntityHistory:
    entity: Entity
    presence: list[tuple[Commit, Presence]] = field(default_factory=list)
    changes: list[tuple[Commit, Change]] = field(default_factory=list)

    @property
    def present(self) -> bool:
        return bool(self.presence)


def entity_history(
    repo: Repository,
    entity: Entity,
    head_id: int | None = None,
    since: int | None = None,
) -> EntityHistory:
    """Collect presence and changes of *entity*.

    Args:
        repo: Open repository.
        entity: Entity to report on.
        head_id: When given, only *head_id* and its ancestors are considered
            (one reachability lookup, no graph walk).
        since: Optional unix time; commits dated earlier are left out.
    """
    commits: dict[int, Commit] = {}

    def commit(commit_id: int) -> Commit:
        if commit_id not in commits:
            commits[commit_id] = repo.get_commit(commit_id)
        return commits[commit_id]

    if head_id is not None:
        rows = repo.presence_within(entity.id, head_id, since)
        scope = repo.reachable_from(head_id) | {head_id}
    else:
        rows = repo.presence_history(entity.id)
        scope = None

    history = EntityHistory(entity=entity)
    for p in rows:
        c = commit(p.commit_id)
        if since is None or c.commit_date >= since:
            history.presence.append((c, p))
    for ch in repo.change_history(entity.id):
        if scope is not None and ch.commit_id not in scope:
            continue
        c = commit(ch.commit_id)
        if since is None or c.commit_date >= since:
            history.changes.append((c, ch))
    return history


def resolve_commit(repo: Repository, ref: str) -> Commit | None:
    """Find a mined commit by ref name, full sha or unique sha prefix (4+ chars)."""
    named = repo.get_ref(ref)
    if named is not None:
        return repo.get_commit(named.commit_id)
    if len(ref) < 4:
        return None
    matches = repo.find_commits_by_prefix(ref)
    return matches[0] if len(matches) == 1 else None
