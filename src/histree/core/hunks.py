"""Diff hunks and their translation into incremental-parse edit descriptors.

A transition (old blob → new blob of one path) arrives as the ordered list of
zero-context hunks git reports for it. Each hunk becomes one ``EditDescriptor``
in the frame an incremental parser expects: every offset is measured in the
document obtained after applying all earlier hunks of the same transition.

git hunk conventions (``@@ -old_start,old_lines +new_start,new_lines @@``):

- ``old_lines == 0``: pure insertion *after* old line ``old_start``;
  ``new_start`` is the first inserted line, so ``new_start = old_start + 1``
  once earlier hunks' line delta is accounted for.
- ``new_lines == 0``: pure deletion; ``new_start`` names the new line
  *before* the removed block, hence ``new_start = old_start - 1``.
- otherwise the replaced block starts at the same shifted line.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from histree.core.lines import LineIndex, Point
from histree.errors import MalformedHunk


@dataclass(frozen=True)
class Hunk:
    """One ``@@`` block of a zero-context unified diff (1-based lines)."""

    old_start: int
    old_lines: int
    new_start: int
    new_lines: int

    @property
    def anchor(self) -> int:
        """First old line the hunk touches; for insertions, the line after."""
        if self.old_lines == 0:
            return self.old_start + 1
        return self.old_start

    def old_span(self) -> tuple[int, int] | None:
        """1-based inclusive old lines removed, or None for a pure insertion."""
        if self.old_lines == 0:
            return None
        return self.old_start, self.old_start + self.old_lines - 1

    def new_span(self) -> tuple[int, int] | None:
        """1-based inclusive new lines added, or None for a pure deletion."""
        if self.new_lines == 0:
            return None
        return self.new_start, self.new_start + self.new_lines - 1


@dataclass(frozen=True)
class EditDescriptor:
    """Byte and point ranges of one edit, before and after it is applied."""

    start_byte: int
    old_end_byte: int
    new_end_byte: int
    start_point: Point
    old_end_point: Point
    new_end_point: Point


def hunk_totals(hunks: Sequence[Hunk]) -> tuple[int, int]:
    """Return ``(adds, dels)`` summed over *hunks*."""
    return sum(h.new_lines for h in hunks), sum(h.old_lines for h in hunks)


def _expected_new_start(hunk: Hunk, line_delta: int) -> int:
    if hunk.old_lines == 0:
        return hunk.old_start + line_delta + 1
    if hunk.new_lines == 0:
        return hunk.old_start + line_delta - 1
    return hunk.old_start + line_delta


def validate_hunks(hunks: Sequence[Hunk]) -> None:
    """Check ordering, zero-start and chaining rules for one transition.

    Raises:
        MalformedHunk: On the first hunk that breaks a rule.
    """
    line_delta = 0
    next_free = 1
    for i, hunk in enumerate(hunks):
        if min(hunk.old_start, hunk.old_lines, hunk.new_start, hunk.new_lines) < 0:
            raise MalformedHunk(f"hunk {i} has a negative field: {hunk}", i)
        if hunk.old_lines == 0 and hunk.new_lines == 0:
            raise MalformedHunk(f"hunk {i} is empty: {hunk}", i)
        if hunk.old_start == 0 and (i > 0 or hunk.old_lines != 0):
            raise MalformedHunk(f"hunk {i} has old_start 0 but is not a leading insertion", i)
        if hunk.new_start == 0 and hunk.new_lines != 0:
            raise MalformedHunk(f"hunk {i} has new_start 0 but adds lines", i)
        if hunk.anchor < next_free:
            raise MalformedHunk(
                f"hunk {i} starts at old line {hunk.anchor}, overlapping or preceding "
                f"the previous hunk (next free line {next_free})",
                i,
            )
        expected = _expected_new_start(hunk, line_delta)
        if hunk.new_start != expected:
            raise MalformedHunk(
                f"hunk {i} has new_start {hunk.new_start}, expected {expected} "
                f"(old_start {hunk.old_start}, running line delta {line_delta})",
                i,
            )
        next_free = hunk.anchor + hunk.old_lines
        line_delta += hunk.new_lines - hunk.old_lines


class HunkEditTranslator:
    """Fold an ordered hunk list into edit descriptors.

    The running byte and line offsets are local to each ``translate`` call,
    so one translator may serve many files concurrently.
    """

    def translate(
        self,
        hunks: Sequence[Hunk],
        old_index: LineIndex,
        new_index: LineIndex,
    ) -> list[EditDescriptor]:
        """Return one ``EditDescriptor`` per hunk, in order.

        Args:
            hunks: Every hunk of the transition, in diff order.
            old_index: Line index over the old content.
            new_index: Line index over the new content; supplies the byte
                length of inserted lines.

        Raises:
            MalformedHunk: If the hunks break the chaining rules.
            OutOfRange: If a hunk addresses lines the contents do not have.
        """
        validate_hunks(hunks)

        edits: list[EditDescriptor] = []
        byte_delta = 0
        line_delta = 0
        for hunk in hunks:
            old_start = old_index.line_start(hunk.anchor)
            old_end = old_index.line_start(hunk.anchor + hunk.old_lines)
            inserted = new_index.line_length(hunk.new_start, hunk.new_lines)

            start_byte = old_start + byte_delta
            old_end_byte = old_end + byte_delta
            new_end_byte = start_byte + inserted

            old_end_row, old_end_col = old_index.position_of(old_end)
            edits.append(
                EditDescriptor(
                    start_byte=start_byte,
                    old_end_byte=old_end_byte,
                    new_end_byte=new_end_byte,
                    start_point=new_index.position_of(start_byte),
                    old_end_point=Point(old_end_row + line_delta, old_end_col),
                    new_end_point=new_index.position_of(new_end_byte),
                )
            )

            byte_delta += inserted - (old_end - old_start)
            line_delta += hunk.new_lines - hunk.old_lines
        return edits
