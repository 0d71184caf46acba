"""Tests for histree status."""

from __future__ import annotations

from pathlib import Path

from typer.testing import CliRunner

from histree.cli.main import app
from histree.db.models import Commit
from histree.db.repository import Repository

runner = CliRunner()


def test_status_no_db(tmp_path: Path) -> None:
    result = runner.invoke(app, ["status", "--db", str(tmp_path / "missing.db")])
    assert result.exit_code == 1
    assert "No database found" in result.output


def test_status_empty_db(tmp_db, tmp_path: Path) -> None:
    result = runner.invoke(app, ["status", "--db", str(tmp_path / ".histree.db")])
    assert result.exit_code == 0
    assert "Commits: 0" in result.output
    assert "No refs recorded" in result.output


def test_status_after_mining(mined) -> None:
    result = runner.invoke(app, ["status", "--db", str(mined.db_path)])
    assert result.exit_code == 0
    assert "Commits: 3" in result.output
    assert "main" in result.output
    assert mined.commits[-1][:12] in result.output
    assert "incomplete" not in result.output


def test_status_warns_about_incomplete_commits(tmp_db, tmp_path: Path) -> None:
    repo = Repository(tmp_db)
    with repo.transaction():
        repo.add_commit(Commit(sha="a" * 40, is_merge=False, author_date=1, commit_date=1))
    result = runner.invoke(app, ["status", "--db", str(tmp_path / ".histree.db")])
    assert result.exit_code == 0
    assert "1 commit(s) have incomplete" in result.output
