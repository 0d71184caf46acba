"""Tests for histree rich error messages."""

from __future__ import annotations

import pytest

from histree.cli.errors import (
    err_bad_date,
    err_config,
    err_deps_file,
    err_entity_not_found,
    err_git,
    err_graph,
    err_no_db,
    err_unknown_commit,
    warn_incomplete,
)


def _has_action(msg: str) -> bool:
    """Every error must tell the user what to do next."""
    lower = msg.lower()
    return any(kw in lower for kw in ["run:", "use ", "fix ", "check ", "examples:", "expected "])


ALL_MESSAGES = [
    err_no_db(".histree.db"),
    err_config("mining.workers must be a positive integer"),
    err_git("git log failed"),
    err_graph("parent abc was never ingested"),
    err_unknown_commit("release"),
    err_entity_not_found("A.java::B", "No entity 'B' under 'A.java'"),
    err_bad_date("Invalid date 'x'"),
    err_deps_file("deps.json: invalid JSON"),
    warn_incomplete(3),
]


@pytest.mark.parametrize("msg", ALL_MESSAGES)
def test_every_message_has_an_action(msg: str) -> None:
    assert _has_action(msg)


@pytest.mark.parametrize("msg", ALL_MESSAGES[:-1])
def test_errors_are_marked_red(msg: str) -> None:
    assert msg.startswith("[red]Error:[/]")


def test_err_no_db_names_path_and_mine() -> None:
    msg = err_no_db("/tmp/x.db")
    assert "/tmp/x.db" in msg
    assert "histree mine" in msg


def test_err_graph_suggests_unshallow() -> None:
    assert "--unshallow" in err_graph("x")


def test_err_unknown_commit_names_ref() -> None:
    msg = err_unknown_commit("feature/x")
    assert "feature/x" in msg
    assert "histree status" in msg


def test_err_entity_not_found_shows_path_form() -> None:
    msg = err_entity_not_found("A.java::B", "detail here")
    assert "A.java::B" in msg
    assert "detail here" in msg
    assert "::" in msg.splitlines()[-1]


def test_warn_incomplete_count() -> None:
    msg = warn_incomplete(7)
    assert "7 commit(s)" in msg
    assert "histree mine" in msg
