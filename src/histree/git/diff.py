"""Parser for zero-context unified diffs as printed by ``git diff-tree -p``.

Only headers are interpreted; hunk bodies are consumed by count so that a
removed line that happens to look like a header (``--- a/x``) is never
mistaken for one. File contents are read from blobs, not from the diff.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from histree.core.hunks import Hunk

logger = logging.getLogger(__name__)

_HUNK_RE = re.compile(rb"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")
_INDEX_RE = re.compile(rb"^index ([0-9a-f]+)\.\.([0-9a-f]+)")
_NULL_SHA_RE = re.compile(r"^0+$")


@dataclass
class FileDiff:
    """One path's transition within a commit."""

    path: str
    status: str = "M"  # A, D or M
    old_blob: str | None = None
    new_blob: str | None = None
    hunks: list[Hunk] = field(default_factory=list)
    binary: bool = False


def _decode(raw: bytes) -> str:
    return raw.decode("utf-8", errors="surrogateescape")


def _path_from_header(rest: bytes) -> str | None:
    """Extract the path from ``a/P b/P`` (renames are disabled, so both match)."""
    if rest.startswith(b'"'):
        return None
    n = (len(rest) - 5) // 2
    if n <= 0 or rest[:2] != b"a/" or rest[2 + n : 5 + n] != b" b/":
        return None
    return _decode(rest[2 : 2 + n])


def _blob(sha: bytes) -> str | None:
    text = _decode(sha)
    return None if _NULL_SHA_RE.match(text) else text


def parse_diff(output: bytes) -> list[FileDiff]:
    """Parse raw ``diff-tree -p -U0`` output into per-file records.

    Paths git had to quote (control characters, quotes, backslashes) are
    skipped with a warning.
    """
    files: list[FileDiff] = []
    current: FileDiff | None = None
    skipping = False
    old_left = new_left = 0

    for line in output.split(b"\n"):
        if old_left or new_left:
            if line.startswith(b"-"):
                old_left -= 1
            elif line.startswith(b"+"):
                new_left -= 1
            elif line.startswith(b"\\"):
                pass
            elif line.startswith(b" "):
                old_left -= 1
                new_left -= 1
            continue

        if line.startswith(b"diff --git "):
            path = _path_from_header(line[len(b"diff --git ") :])
            if path is None:
                logger.warning("Skipping quoted or unparseable path in %r", _decode(line))
                current, skipping = None, True
                continue
            current, skipping = FileDiff(path=path), False
            files.append(current)
            continue
        if skipping or current is None:
            continue

        if line.startswith(b"new file mode"):
            current.status = "A"
        elif line.startswith(b"deleted file mode"):
            current.status = "D"
        elif line.startswith(b"index "):
            m = _INDEX_RE.match(line)
            if m:
                current.old_blob = _blob(m.group(1))
                current.new_blob = _blob(m.group(2))
        elif line.startswith(b"Binary files ") or line.startswith(b"GIT binary patch"):
            current.binary = True
        elif line.startswith(b"@@ "):
            m = _HUNK_RE.match(line)
            if m is None:
                logger.warning("Unparseable hunk header in %s: %r", current.path, _decode(line))
                continue
            old_start, old_lines, new_start, new_lines = (
                int(g) if g is not None else 1 for g in m.groups()
            )
            current.hunks.append(Hunk(old_start, old_lines, new_start, new_lines))
            old_left, new_left = old_lines, new_lines
    return files
