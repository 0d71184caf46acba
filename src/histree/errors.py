"""Error kinds raised by the histree core and its collaborators.

Severity is decided by the ingestion pipeline, not here:

  MalformedHunk, ParseFailure, OutOfRange  → degrade one file transition
  GraphInvariantViolation, GitError        → abort the run
"""

from __future__ import annotations


class HistreeError(Exception):
    """Base class for every error raised by histree."""


class MalformedHunk(HistreeError, ValueError):
    """A hunk set violates the ordering or chaining rules of a unified diff.

    Attributes:
        index: Position of the offending hunk within its transition.
    """

    def __init__(self, message: str, index: int | None = None) -> None:
        super().__init__(message)
        self.index = index


class ParseFailure(HistreeError):
    """The structural parser could not produce a usable tree."""


class OutOfRange(HistreeError, IndexError):
    """A line number or byte offset lies outside the indexed buffer."""


class GraphInvariantViolation(HistreeError):
    """The commit graph has a cycle or a parent that was never indexed."""


class GitError(HistreeError, RuntimeError):
    """A git plumbing command failed. Messages never carry credentials."""
