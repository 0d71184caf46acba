"""Tests for histree.deps — dependency file parsing and endpoint resolution."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from histree.deps import DepsFormatError, Endpoint, EndpointResolver, import_deps, load_deps
from histree.query import resolve_entity_path


def _ep(name: str, kind: str = "function", line: int = 4, file: str = "Shape.java") -> dict:
    return {"object": name, "type": kind, "file": file, "lineNumber": line}


def _write(tmp_path: Path, details: list, name: str = "deps.json") -> Path:
    path = tmp_path / name
    path.write_text(json.dumps({"cells": [{"details": details}]}), encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# load_deps
# ---------------------------------------------------------------------------


def test_load_deps_reads_edges(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        [{"src": _ep("demo.Shape.area"), "dest": _ep("demo.Shape", "type", 2), "type": "Use"}],
    )
    [edge] = load_deps(path)
    assert edge.kind == "Use"
    assert edge.src == Endpoint("demo.Shape.area", "function", "Shape.java", 4)
    assert edge.src.name == "area"
    assert edge.dest.kind == "type"


def test_load_deps_multiple_cells(tmp_path: Path) -> None:
    detail = {"src": _ep("a"), "dest": _ep("b"), "type": "Call"}
    path = tmp_path / "deps.json"
    path.write_text(json.dumps({"cells": [{"details": [detail]}, {"details": [detail, detail]}]}))
    assert len(load_deps(path)) == 3


def test_load_deps_invalid_json(tmp_path: Path) -> None:
    path = tmp_path / "deps.json"
    path.write_text("{not json")
    with pytest.raises(DepsFormatError, match="invalid JSON"):
        load_deps(path)


@pytest.mark.parametrize("data", [[], {"cells": "x"}, {"other": []}])
def test_load_deps_wrong_shape(tmp_path: Path, data) -> None:
    path = tmp_path / "deps.json"
    path.write_text(json.dumps(data))
    with pytest.raises(DepsFormatError, match="cells"):
        load_deps(path)


def test_load_deps_unknown_dependency_type(tmp_path: Path) -> None:
    path = _write(tmp_path, [{"src": _ep("a"), "dest": _ep("b"), "type": "Inherit"}])
    with pytest.raises(DepsFormatError, match=r"cells\[0\]\.details\[0\].*Inherit"):
        load_deps(path)


def test_load_deps_unknown_endpoint_type(tmp_path: Path) -> None:
    path = _write(tmp_path, [{"src": _ep("a", kind="module"), "dest": _ep("b"), "type": "Call"}])
    with pytest.raises(DepsFormatError, match=r"\.src: unknown endpoint type"):
        load_deps(path)


def test_load_deps_missing_endpoint_field(tmp_path: Path) -> None:
    broken = _ep("b")
    del broken["lineNumber"]
    path = _write(tmp_path, [{"src": _ep("a"), "dest": broken, "type": "Call"}])
    with pytest.raises(DepsFormatError, match=r"\.dest: malformed endpoint"):
        load_deps(path)


def test_deps_format_error_is_value_error() -> None:
    assert issubclass(DepsFormatError, ValueError)


# ---------------------------------------------------------------------------
# EndpointResolver
# ---------------------------------------------------------------------------


@pytest.fixture
def resolver(mined) -> EndpointResolver:
    return EndpointResolver(mined.repo, mined.commit_id(0))


def _id(mined, path: str) -> int:
    return resolve_entity_path(mined.repo, path).id


def test_file_endpoint_resolves_to_file(mined, resolver) -> None:
    ep = Endpoint("Shape.java", "file", "Shape.java", 0)
    assert resolver.resolve(ep) == _id(mined, "Shape.java")


def test_line_zero_is_unresolved(resolver) -> None:
    assert resolver.resolve(Endpoint("demo.Shape.area", "function", "Shape.java", 0)) is None


def test_unknown_file_is_unresolved(resolver) -> None:
    assert resolver.resolve(Endpoint("x.Y", "type", "Y.java", 3)) is None


def test_line_outside_every_entity(resolver) -> None:
    assert resolver.resolve(Endpoint("x", "var", "Shape.java", 99)) is None


def test_name_match_wins(mined, resolver) -> None:
    assert resolver.resolve(Endpoint("demo.Shape.area", "function", "Shape.java", 4)) == _id(
        mined, "Shape.java::Shape::area"
    )
    assert resolver.resolve(Endpoint("demo.Shape", "type", "Shape.java", 4)) == _id(
        mined, "Shape.java::Shape"
    )


def test_deepest_candidate_without_name_match(mined, resolver) -> None:
    ep = Endpoint("demo.Shape.lambda$0", "function", "Shape.java", 8)
    assert resolver.resolve(ep) == _id(mined, "Shape.java::Shape::perimeter")


def test_same_named_siblings_resolve_by_line(mined, resolver) -> None:
    field = Endpoint("demo.Shape.size", "var", "Shape.java", 10)
    method = Endpoint("demo.Shape.size", "function", "Shape.java", 13)
    assert resolver.resolve(field) == _id(mined, "Shape.java::Shape::size@field")
    assert resolver.resolve(method) == _id(mined, "Shape.java::Shape::size@method")


def test_resolution_uses_presence_at_the_commit(mined) -> None:
    latest = EndpointResolver(mined.repo, mined.commit_id(2))
    # perimeter is gone; its old lines now belong to the field
    ep = Endpoint("demo.Shape.perimeter", "function", "Shape.java", 8)
    assert latest.resolve(ep) == _id(mined, "Shape.java::Shape::size@field")


# ---------------------------------------------------------------------------
# import_deps
# ---------------------------------------------------------------------------


def test_import_deps_counts(mined, tmp_path: Path) -> None:
    call = {"src": _ep("demo.Shape.area"), "dest": _ep("demo.Shape.perimeter", line=8), "type": "Call"}
    path = _write(
        tmp_path,
        [
            call,
            call,
            {"src": _ep("Shape.java", "file", 0), "dest": _ep("demo.Shape", "type", 2), "type": "Contain"},
            {"src": _ep("demo.Shape.area", line=0), "dest": _ep("demo.Shape", "type", 2), "type": "Use"},
        ],
    )
    commit_id = mined.commit_id(0)
    with mined.repo.transaction():
        stored, skipped = import_deps(mined.repo, commit_id, load_deps(path))

    assert (stored, skipped) == (2, 1)
    deps = mined.repo.list_deps(commit_id)
    assert {(d.src_entity_id, d.dest_entity_id, d.kind) for d in deps} == {
        (_id(mined, "Shape.java::Shape::area"), _id(mined, "Shape.java::Shape::perimeter"), "Call"),
        (_id(mined, "Shape.java"), _id(mined, "Shape.java::Shape"), "Contain"),
    }
    assert mined.repo.list_deps(mined.commit_id(1)) == []
