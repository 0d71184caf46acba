"""Byte offset ↔ (row, column) conversion over one file version."""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass
from typing import NamedTuple

from histree.errors import OutOfRange


class Point(NamedTuple):
    """Zero-based (row, column) position; column counts bytes."""

    row: int
    column: int


@dataclass(frozen=True)
class Range:
    """Immutable byte/row/column span, half-open on bytes."""

    start_byte: int
    start_row: int
    start_col: int
    end_byte: int
    end_row: int
    end_col: int

    @classmethod
    def from_points(cls, start_byte: int, start: Point, end_byte: int, end: Point) -> Range:
        return cls(start_byte, start.row, start.column, end_byte, end.row, end.column)

    @property
    def start_point(self) -> Point:
        return Point(self.start_row, self.start_col)

    @property
    def end_point(self) -> Point:
        return Point(self.end_row, self.end_col)

    def contains(self, other: Range) -> bool:
        return self.start_byte <= other.start_byte and other.end_byte <= self.end_byte

    def line_span(self) -> tuple[int, int]:
        """Return the 1-based inclusive (first, last) lines the range touches.

        A range that ends at column 0 of a later row stops on the row before.
        """
        first = self.start_row + 1
        last = self.end_row + 1
        if self.end_col == 0 and self.end_row > self.start_row:
            last -= 1
        return first, last


EMPTY_RANGE = Range(0, 0, 0, 0, 0, 0)


class LineIndex:
    """Line-start table for a byte buffer.

    Lines are counted the way git counts them: ``b"a\\nb"`` and ``b"a\\nb\\n"``
    both have two lines. ``line_start(line_count + 1)`` is the end of the
    buffer, which lets a hunk that reaches EOF name its end line.
    """

    def __init__(self, content: bytes) -> None:
        self.content = content
        starts = [0]
        pos = content.find(b"\n")
        while pos != -1:
            starts.append(pos + 1)
            pos = content.find(b"\n", pos + 1)
        self._starts = starts
        if content and not content.endswith(b"\n"):
            self.line_count = len(starts)
        else:
            self.line_count = len(starts) - 1

    def __len__(self) -> int:
        return len(self.content)

    def line_start(self, line_number: int) -> int:
        """Return the byte offset where 1-based *line_number* begins.

        Raises:
            OutOfRange: If *line_number* is below 1 or past ``line_count + 1``.
        """
        if line_number < 1 or line_number > self.line_count + 1:
            raise OutOfRange(
                f"line {line_number} outside 1..{self.line_count + 1} "
                f"({len(self.content)} bytes)"
            )
        if line_number - 1 < len(self._starts):
            return self._starts[line_number - 1]
        return len(self.content)

    def line_length(self, first: int, count: int) -> int:
        """Byte length of *count* lines starting at 1-based line *first*."""
        if count == 0:
            return 0
        return self.line_start(first + count) - self.line_start(first)

    def position_of(self, byte_offset: int) -> Point:
        """Return the zero-based (row, column) of *byte_offset*.

        Raises:
            OutOfRange: If *byte_offset* is negative or past the buffer end.
        """
        if byte_offset < 0 or byte_offset > len(self.content):
            raise OutOfRange(f"byte {byte_offset} outside 0..{len(self.content)}")
        row = bisect_right(self._starts, byte_offset) - 1
        return Point(row, byte_offset - self._starts[row])

    def range_of(self, start_byte: int, end_byte: int) -> Range:
        return Range.from_points(
            start_byte, self.position_of(start_byte), end_byte, self.position_of(end_byte)
        )

    def whole(self) -> Range:
        """Range covering the entire buffer."""
        return self.range_of(0, len(self.content))
