"""Attribution of diff line counts to the innermost enclosing entity.

Every changed line has exactly one owner: the deepest entity whose body
spans it, the earliest-starting one when same-depth siblings share a line,
or the file entity when no construct spans it. Deleted lines are looked up
in the old forest and added lines in the new one, so the per-entity counts
of a transition always sum to the hunk totals.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence

from histree.core.forest import Forest, ForestNode
from histree.core.hunks import Hunk, hunk_totals
from histree.core.matcher import MatchResult
from histree.db.models import Change, ChangeKind


def owner_of(root: ForestNode, line: int) -> ForestNode:
    """Return the innermost node of *root*'s tree whose body spans 1-based *line*."""
    node = root
    while True:
        for child in node.children:
            first, last = child.body_range.line_span()
            if first <= line <= last:
                node = child
                break
        else:
            return node


def count_lines(forest: Forest, spans: Sequence[tuple[int, int]]) -> dict[ForestNode, int]:
    """Count lines of the inclusive *spans* per owning node."""
    counts: dict[ForestNode, int] = defaultdict(int)
    if forest.root is None:
        return counts
    for first, last in spans:
        for line in range(first, last + 1):
            counts[owner_of(forest.root, line)] += 1
    return counts


class ChangeAttributor:
    """Turn one file transition into per-entity change rows."""

    def attribute(
        self,
        commit_id: int,
        hunks: Sequence[Hunk],
        old_forest: Forest,
        new_forest: Forest,
        match: MatchResult,
    ) -> list[Change]:
        """Return change rows for the entities the hunks touch.

        Args:
            commit_id: Commit the rows belong to.
            hunks: All hunks of the transition.
            old_forest: Forest of the parent version (empty for an added file).
            new_forest: Forest of the new version (empty for a deleted file).
            match: Identities of both forests' keys.

        Returns:
            One Change per entity with at least one attributed line, ordered
            by entity id.
        """
        dels = count_lines(old_forest, [s for s in (h.old_span() for h in hunks) if s])
        adds = count_lines(new_forest, [s for s in (h.new_span() for h in hunks) if s])

        totals: dict[int, list[int]] = defaultdict(lambda: [0, 0])
        for node, n in adds.items():
            totals[match.ids_by_key[node.key]][0] += n
        for node, n in dels.items():
            totals[match.ids_by_key[node.key]][1] += n

        changes = []
        for entity_id in sorted(totals):
            n_adds, n_dels = totals[entity_id]
            if n_adds == 0 and n_dels == 0:
                continue
            changes.append(
                Change(
                    commit_id=commit_id,
                    entity_id=entity_id,
                    kind=change_kind(entity_id, match),
                    adds=n_adds,
                    dels=n_dels,
                )
            )
        return changes

    def file_level(
        self,
        commit_id: int,
        file_id: int,
        hunks: Sequence[Hunk],
        kind: ChangeKind = ChangeKind.MODIFIED,
    ) -> list[Change]:
        """Single change on the file entity carrying the hunk totals.

        Used when a transition cannot be attributed structurally.
        """
        n_adds, n_dels = hunk_totals(hunks)
        if n_adds == 0 and n_dels == 0:
            return []
        return [Change(commit_id=commit_id, entity_id=file_id, kind=kind, adds=n_adds, dels=n_dels)]


def change_kind(entity_id: int, match: MatchResult) -> ChangeKind:
    if entity_id not in match.current_ids:
        return ChangeKind.DELETED
    if entity_id not in match.previous_ids:
        return ChangeKind.ADDED
    return ChangeKind.MODIFIED
