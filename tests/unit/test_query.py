"""Tests for histree.query — path resolution and entity history."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from histree.db.models import ChangeKind
from histree.query import (
    EntityNotFound,
    entity_history,
    parse_since,
    resolve_commit,
    resolve_entity_path,
)

NOW = datetime(2024, 1, 31, tzinfo=timezone.utc)
DAY = 86_400


# ---------------------------------------------------------------------------
# parse_since
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("text", "days"),
    [("30d", 30), ("3w", 21), ("6m", 180), ("2y", 730), (" 1d ", 1)],
)
def test_parse_since_durations(text: str, days: int) -> None:
    assert parse_since(text, now=NOW) == int(NOW.timestamp()) - days * DAY


def test_parse_since_naive_iso_date_is_utc() -> None:
    assert parse_since("2023-01-31") == 1_675_123_200


def test_parse_since_iso_with_offset() -> None:
    assert parse_since("2023-01-31T00:00:00+01:00") == 1_675_123_200 - 3600


@pytest.mark.parametrize("text", ["yesterday", "5x", "", "d30"])
def test_parse_since_rejects_garbage(text: str) -> None:
    with pytest.raises(ValueError, match="Invalid date"):
        parse_since(text)


# ---------------------------------------------------------------------------
# resolve_entity_path
# ---------------------------------------------------------------------------


def test_resolve_file(mined) -> None:
    entity = resolve_entity_path(mined.repo, "Shape.java")
    assert entity.is_file
    assert entity.parent_id is None


def test_resolve_nested(mined) -> None:
    entity = resolve_entity_path(mined.repo, "Shape.java::Shape::area")
    assert (entity.name, entity.kind) == ("area", "method")
    parent = mined.repo.get_entity(entity.parent_id)
    assert (parent.name, parent.kind) == ("Shape", "class")


def test_resolve_ambiguous_name_needs_kind(mined) -> None:
    with pytest.raises(EntityNotFound, match="ambiguous"):
        resolve_entity_path(mined.repo, "Shape.java::Shape::size")


def test_resolve_kind_suffix(mined) -> None:
    field = resolve_entity_path(mined.repo, "Shape.java::Shape::size@field")
    method = resolve_entity_path(mined.repo, "Shape.java::Shape::size@method")
    assert field.kind == "field"
    assert method.kind == "method"
    assert field.id != method.id


@pytest.mark.parametrize(
    "path",
    ["Missing.java", "Shape.java::Nope", "Shape.java::Shape::area::inner", "Shape.java::Shape@method"],
)
def test_resolve_unknown(mined, path: str) -> None:
    with pytest.raises(EntityNotFound):
        resolve_entity_path(mined.repo, path)


def test_entity_not_found_is_lookup_error() -> None:
    assert issubclass(EntityNotFound, LookupError)


# ---------------------------------------------------------------------------
# entity_history
# ---------------------------------------------------------------------------


def _shas(pairs) -> list[str]:
    return [commit.sha for commit, _ in pairs]


def test_history_of_edited_method(mined) -> None:
    area = resolve_entity_path(mined.repo, "Shape.java::Shape::area")
    history = entity_history(mined.repo, area)

    assert history.present
    assert _shas(history.presence) == mined.commits
    assert [(c.sha, ch.kind) for c, ch in history.changes] == [
        (mined.commits[0], ChangeKind.ADDED),
        (mined.commits[1], ChangeKind.MODIFIED),
    ]


def test_history_of_removed_method(mined) -> None:
    perimeter = resolve_entity_path(mined.repo, "Shape.java::Shape::perimeter")
    history = entity_history(mined.repo, perimeter)

    assert _shas(history.presence) == mined.commits[:2]
    assert [ch.kind for _, ch in history.changes] == [ChangeKind.ADDED, ChangeKind.DELETED]


def test_history_limited_to_ancestors_of_head(mined) -> None:
    area = resolve_entity_path(mined.repo, "Shape.java::Shape::area")
    history = entity_history(mined.repo, area, head_id=mined.commit_id(0))

    assert _shas(history.presence) == mined.commits[:1]
    assert _shas(history.changes) == mined.commits[:1]


def test_history_since(mined) -> None:
    area = resolve_entity_path(mined.repo, "Shape.java::Shape::area")
    since = mined.repo.get_commit(mined.commit_id(1)).commit_date
    history = entity_history(mined.repo, area, since=since)

    assert _shas(history.presence) == mined.commits[1:]
    assert _shas(history.changes) == mined.commits[1:2]


def test_history_head_and_since_can_exclude_everything(mined) -> None:
    perimeter = resolve_entity_path(mined.repo, "Shape.java::Shape::perimeter")
    since = mined.repo.get_commit(mined.commit_id(2)).commit_date
    history = entity_history(mined.repo, perimeter, head_id=mined.commit_id(2), since=since)

    assert not history.present
    assert [ch.kind for _, ch in history.changes] == [ChangeKind.DELETED]


# ---------------------------------------------------------------------------
# resolve_commit
# ---------------------------------------------------------------------------


def test_resolve_commit_by_ref(mined) -> None:
    assert resolve_commit(mined.repo, "main").sha == mined.commits[-1]


def test_resolve_commit_by_sha_and_prefix(mined) -> None:
    sha = mined.commits[0]
    assert resolve_commit(mined.repo, sha).sha == sha
    assert resolve_commit(mined.repo, sha[:10]).sha == sha
    assert resolve_commit(mined.repo, sha[:10].upper()).sha == sha


@pytest.mark.parametrize("ref", ["abc", "zzzzzz", "release", ""])
def test_resolve_commit_unknown(mined, ref: str) -> None:
    assert resolve_commit(mined.repo, ref) is None
