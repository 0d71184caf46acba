"""Shared pytest fixtures."""

from __future__ import annotations

import os
import shutil
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest

from histree.config import HistreeConfig
from histree.core.hunks import EditDescriptor
from histree.core.lines import LineIndex
from histree.db.connection import Database
from histree.db.repository import Repository
from histree.db.schema import initialize
from histree.errors import ParseFailure
from histree.git.repo import GitRepository
from histree.parsing.base import Capture, ParseResult, StructuralParser
from histree.pipeline import Miner


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".histree.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


# ---------------------------------------------------------------------------
# Fake structural parser
# ---------------------------------------------------------------------------


class FakeParser(StructuralParser):
    """Brace-block parser for tests, no grammar packages needed.

    A line ``<kind> <name> {`` opens an entity whose body runs to the
    matching ``}`` line; any other line is plain text. Content containing
    ``SYNTAX ERROR`` fails to parse. Every call is recorded in ``calls``.
    """

    def __init__(self, languages: Sequence[str] = ("java",)) -> None:
        self.languages = set(languages)
        self.calls: list[tuple[Any, tuple[EditDescriptor, ...]]] = []

    def supports(self, language: str) -> bool:
        return language in self.languages

    def parse(
        self,
        content: bytes,
        language: str,
        previous: Any = None,
        edits: Sequence[EditDescriptor] = (),
    ) -> ParseResult:
        self.calls.append((previous, tuple(edits)))
        if b"SYNTAX ERROR" in content:
            raise ParseFailure("fake syntax error")
        index = LineIndex(content)
        captures = []
        open_stack: list[tuple[str, str, int, int, int]] = []
        offset = 0
        for raw in content.splitlines(keepends=True):
            line = raw.rstrip(b"\r\n")
            stripped = line.strip()
            indent = len(line) - len(line.lstrip())
            if stripped.endswith(b"{") and len(stripped.split()) == 3:
                kind, name, _ = stripped.decode("utf-8").split()
                name_start = offset + line.index(name.encode("utf-8"), indent + len(kind))
                open_stack.append((kind, name, offset + indent, name_start, name_start + len(name)))
            elif stripped == b"}":
                if not open_stack:
                    raise ParseFailure("unbalanced '}'")
                kind, name, body_start, name_start, name_end = open_stack.pop()
                body_end = offset + len(line)
                captures.append(
                    Capture(
                        kind=kind,
                        name=name,
                        name_range=index.range_of(name_start, name_end),
                        body_range=index.range_of(body_start, body_end),
                    )
                )
            offset += len(raw)
        if open_stack:
            raise ParseFailure("unclosed block")
        return ParseResult(captures=captures, tree=("fake-tree", content))


@pytest.fixture
def fake_parser() -> FakeParser:
    return FakeParser()


# ---------------------------------------------------------------------------
# Throwaway git repositories
# ---------------------------------------------------------------------------


class GitSandbox:
    """A scratch repository with deterministic commit dates."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._clock = 1_600_000_000
        self.git("init", "-q")
        self.git("symbolic-ref", "HEAD", "refs/heads/main")

    def git(self, *args: str) -> str:
        env = dict(
            os.environ,
            GIT_AUTHOR_NAME="Test",
            GIT_AUTHOR_EMAIL="test@example.com",
            GIT_COMMITTER_NAME="Test",
            GIT_COMMITTER_EMAIL="test@example.com",
            GIT_AUTHOR_DATE=f"@{self._clock} +0000",
            GIT_COMMITTER_DATE=f"@{self._clock} +0000",
        )
        result = subprocess.run(
            ["git", "-c", "commit.gpgsign=false", *args],
            cwd=self.path,
            env=env,
            check=True,
            capture_output=True,
            text=True,
        )
        return result.stdout.strip()

    def write(self, rel: str, text: str) -> None:
        target = self.path / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(text.encode("utf-8"))

    def remove(self, rel: str) -> None:
        self.git("rm", "-q", rel)

    def commit(self, files: dict[str, str] | None = None, message: str = "change") -> str:
        """Write *files* (relative path → text), commit everything, return the sha."""
        for rel, text in (files or {}).items():
            self.write(rel, text)
        self._clock += 86_400
        self.git("add", "-A")
        self.git("commit", "-q", "--allow-empty", "-m", message)
        return self.git("rev-parse", "HEAD")


@pytest.fixture
def sandbox(tmp_path) -> GitSandbox:
    if shutil.which("git") is None:
        pytest.skip("git executable not available")
    repo_dir = tmp_path / "repo"
    repo_dir.mkdir()
    return GitSandbox(repo_dir)


# ---------------------------------------------------------------------------
# A small mined history
# ---------------------------------------------------------------------------

SHAPE_SOURCE = (
    "package demo;\n"
    "class Shape {\n"
    "  method area {\n"
    "    return 1;\n"
    "  }\n"
    "  int sides = 4;\n"
    "  method perimeter {\n"
    "    return 2;\n"
    "  }\n"
    "  field size {\n"
    "  }\n"
    "  method size {\n"
    "    return 3;\n"
    "  }\n"
    "}\n"
)


@dataclass
class MinedHistory:
    repo: Repository
    db_path: Path
    commits: list[str]  # shas, oldest first

    def commit_id(self, index: int) -> int:
        return self.repo.get_commit_by_sha(self.commits[index]).id


@pytest.fixture
def mined(sandbox, tmp_db, tmp_path, fake_parser) -> MinedHistory:
    """Shape.java over three commits: added, ``area`` edited, ``perimeter`` removed."""
    v2 = SHAPE_SOURCE.replace("return 1;", "return 42;")
    v3 = v2.replace("  method perimeter {\n    return 2;\n  }\n", "")
    commits = [
        sandbox.commit({"Shape.java": SHAPE_SOURCE}),
        sandbox.commit({"Shape.java": v2}),
        sandbox.commit({"Shape.java": v3}),
    ]
    repo = Repository(tmp_db)
    Miner(GitRepository(sandbox.path), repo, HistreeConfig(), parser=fake_parser).mine(["main"])
    return MinedHistory(repo=repo, db_path=tmp_path / ".histree.db", commits=commits)
