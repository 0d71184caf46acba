"""Tests for histree deps import / list."""

from __future__ import annotations

import json
from pathlib import Path

from typer.testing import CliRunner

from histree.cli.main import app

runner = CliRunner()


def _deps_file(tmp_path: Path) -> Path:
    def ep(name: str, kind: str, line: int) -> dict:
        return {"object": name, "type": kind, "file": "Shape.java", "lineNumber": line}

    path = tmp_path / "deps.json"
    path.write_text(
        json.dumps(
            {
                "cells": [
                    {
                        "details": [
                            {
                                "src": ep("demo.Shape.area", "function", 4),
                                "dest": ep("demo.Shape.size", "var", 7),
                                "type": "Use",
                            },
                            {
                                "src": ep("demo.Shape.area", "function", 0),
                                "dest": ep("demo.Shape", "type", 2),
                                "type": "Use",
                            },
                        ]
                    }
                ]
            }
        ),
        encoding="utf-8",
    )
    return path


def test_import_and_list(mined, tmp_path: Path) -> None:
    sha = mined.commits[-1]
    result = runner.invoke(
        app,
        ["deps", "import", str(_deps_file(tmp_path)), "--commit", sha, "--db", str(mined.db_path)],
    )
    assert result.exit_code == 0, result.output
    assert f"1 dependency edge(s) stored for {sha[:12]}" in result.output
    assert "(2 read)" in result.output
    assert "1 edge(s) skipped" in result.output

    result = runner.invoke(app, ["deps", "list", "--commit", "main", "--db", str(mined.db_path)])
    assert result.exit_code == 0
    assert "area (method)" in result.output
    assert "size (field)" in result.output
    assert "1 edge(s)" in result.output


def test_list_without_edges(mined) -> None:
    result = runner.invoke(app, ["deps", "list", "--commit", "main", "--db", str(mined.db_path)])
    assert result.exit_code == 0
    assert "No dependency edges" in result.output


def test_import_unknown_commit(mined, tmp_path: Path) -> None:
    result = runner.invoke(
        app,
        ["deps", "import", str(_deps_file(tmp_path)), "--commit", "nope", "--db", str(mined.db_path)],
    )
    assert result.exit_code == 1
    assert "not a mined ref" in result.output


def test_import_malformed_file(mined, tmp_path: Path) -> None:
    bad = tmp_path / "bad.json"
    bad.write_text('{"cells": [{"details": [{"type": "Sneeze"}]}]}')
    result = runner.invoke(
        app, ["deps", "import", str(bad), "--commit", "main", "--db", str(mined.db_path)]
    )
    assert result.exit_code == 1
    assert "Cannot import dependencies" in result.output


def test_import_missing_file(mined, tmp_path: Path) -> None:
    result = runner.invoke(
        app,
        ["deps", "import", str(tmp_path / "absent.json"), "--commit", "main", "--db", str(mined.db_path)],
    )
    assert result.exit_code == 1
    assert "Cannot import dependencies" in result.output


def test_import_no_db(tmp_path: Path) -> None:
    result = runner.invoke(
        app,
        ["deps", "import", str(_deps_file(tmp_path)), "--commit", "main", "--db", str(tmp_path / "x.db")],
    )
    assert result.exit_code == 1
    assert "No database found" in result.output
