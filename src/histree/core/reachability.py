"""Materialized ancestor relation over the commit graph."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from histree.db.repository import Repository
from histree.errors import GraphInvariantViolation

logger = logging.getLogger(__name__)


class ReachabilityIndex:
    """Transitive closure of the parent relation, extended one commit at a time.

    A commit's closure is its parents plus their closures. Extension needs
    every parent indexed first, which topological ingestion guarantees.
    """

    def __init__(self, repo: Repository) -> None:
        self.repo = repo

    def extend(self, commit_id: int, parent_ids: Sequence[int]) -> int:
        """Record the ancestors of *commit_id* and set its reachability flag.

        Re-extending an indexed commit is a no-op. Does not commit; call
        inside the repository transaction of the commit.

        Returns:
            Number of (commit, ancestor) pairs added.

        Raises:
            GraphInvariantViolation: If a parent is unknown or not yet indexed,
                or if the commit would become its own ancestor.
        """
        commit = self.repo.get_commit(commit_id)
        if commit is None:
            raise GraphInvariantViolation(f"commit {commit_id} is not stored")
        if commit.has_reachability_info:
            return 0

        ancestors: set[int] = set()
        for parent_id in parent_ids:
            parent = self.repo.get_commit(parent_id)
            if parent is None:
                raise GraphInvariantViolation(
                    f"commit {commit.sha} has parent {parent_id} that was never ingested"
                )
            if not parent.has_reachability_info:
                raise GraphInvariantViolation(
                    f"parent {parent.sha} of {commit.sha} is not indexed yet"
                )
            ancestors.add(parent_id)
            ancestors |= self.repo.reachable_from(parent_id)

        if commit_id in ancestors:
            raise GraphInvariantViolation(f"commit {commit.sha} is reachable from itself")

        added = self.repo.add_reachability(commit_id, ancestors)
        self.repo.set_flags(commit_id, reachability=True)
        logger.debug("Indexed %s with %d ancestors", commit.sha[:12], len(ancestors))
        return added

    def is_ancestor(self, ancestor_id: int, descendant_id: int) -> bool:
        """True if *ancestor_id* is reachable backward from *descendant_id*."""
        return self.repo.is_reachable(descendant_id, ancestor_id)

    def ancestors(self, commit_id: int) -> set[int]:
        return self.repo.reachable_from(commit_id)
