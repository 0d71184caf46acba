"""Repository pattern for all histree database operations.

Single interface for: commits and their parents, refs, entities, ranges,
presence, changes, reachability, skipped paths and dependency edges.
Write methods never commit on their own; callers group one commit's derived
facts inside ``transaction()`` so they land atomically.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager

from histree.core.lines import Range
from histree.db.models import (
    Change,
    ChangeKind,
    Commit,
    Dep,
    Entity,
    Presence,
    Ref,
    SkippedPath,
    SkipStage,
)

_PRESENCE_SELECT = """
    SELECT p.commit_id, p.entity_id,
           b.start_byte AS b_start_byte, b.start_row AS b_start_row, b.start_col AS b_start_col,
           b.end_byte AS b_end_byte, b.end_row AS b_end_row, b.end_col AS b_end_col,
           n.start_byte AS n_start_byte, n.start_row AS n_start_row, n.start_col AS n_start_col,
           n.end_byte AS n_end_byte, n.end_row AS n_end_row, n.end_col AS n_end_col
    FROM presence p
    JOIN ranges b ON b.id = p.body_range_id
    JOIN ranges n ON n.id = p.name_range_id
"""

_COMMIT_COLUMNS = (
    "id, sha, is_merge, author_date, commit_date, "
    "has_change_info, has_presence_info, has_reachability_info"
)


class Repository:
    """Data access layer for all histree database entities.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with the schema initialised
                (see histree.db.schema.initialize).
        """
        self._conn = conn

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Commit everything written inside the block, or roll it all back."""
        try:
            yield
        except BaseException:
            self._conn.rollback()
            raise
        self._conn.commit()

    # ------------------------------------------------------------------
    # Commits
    # ------------------------------------------------------------------

    def add_commit(self, commit: Commit, parent_ids: Sequence[int] = ()) -> int:
        """Insert a commit with its ordered parents and return its id.

        Readiness flags are stored as given; ingestion inserts them false and
        raises them with ``set_flags`` once each stage is written.
        """
        cur = self._conn.execute(
            """
            INSERT INTO commits (sha, is_merge, author_date, commit_date,
                                 has_change_info, has_presence_info, has_reachability_info)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                commit.sha,
                int(commit.is_merge),
                commit.author_date,
                commit.commit_date,
                int(commit.has_change_info),
                int(commit.has_presence_info),
                int(commit.has_reachability_info),
            ),
        )
        commit.id = cur.lastrowid
        self._conn.executemany(
            "INSERT INTO commit_parents (commit_id, position, parent_id) VALUES (?, ?, ?)",
            [(commit.id, pos, pid) for pos, pid in enumerate(parent_ids)],
        )
        return commit.id

    def get_commit(self, commit_id: int) -> Commit | None:
        row = self._conn.execute(
            f"SELECT {_COMMIT_COLUMNS} FROM commits WHERE id = ?", (commit_id,)
        ).fetchone()
        return _row_to_commit(row) if row else None

    def get_commit_by_sha(self, sha: str) -> Commit | None:
        """Return a commit by its full 40-character sha, or None if unknown."""
        row = self._conn.execute(
            f"SELECT {_COMMIT_COLUMNS} FROM commits WHERE sha = ?", (sha,)
        ).fetchone()
        return _row_to_commit(row) if row else None

    def find_commits_by_prefix(self, prefix: str) -> list[Commit]:
        """Return commits whose sha starts with the hex string *prefix*."""
        if not prefix or any(ch not in "0123456789abcdef" for ch in prefix.lower()):
            return []
        rows = self._conn.execute(
            f"SELECT {_COMMIT_COLUMNS} FROM commits WHERE sha LIKE ? ORDER BY id",
            (prefix.lower() + "%",),
        ).fetchall()
        return [_row_to_commit(r) for r in rows]

    def list_commits(self) -> list[Commit]:
        """Return all commits in ingestion (topological) order."""
        rows = self._conn.execute(
            f"SELECT {_COMMIT_COLUMNS} FROM commits ORDER BY id"
        ).fetchall()
        return [_row_to_commit(r) for r in rows]

    def commit_parents(self, commit_id: int) -> list[int]:
        """Return parent commit ids, first parent first."""
        rows = self._conn.execute(
            "SELECT parent_id FROM commit_parents WHERE commit_id = ? ORDER BY position",
            (commit_id,),
        ).fetchall()
        return [r["parent_id"] for r in rows]

    def set_flags(
        self,
        commit_id: int,
        *,
        change: bool | None = None,
        presence: bool | None = None,
        reachability: bool | None = None,
    ) -> None:
        """Update the readiness flags that are not None."""
        updates = {
            "has_change_info": change,
            "has_presence_info": presence,
            "has_reachability_info": reachability,
        }
        for column, value in updates.items():
            if value is not None:
                self._conn.execute(
                    f"UPDATE commits SET {column} = ? WHERE id = ?",  # noqa: S608
                    (int(value), commit_id),
                )

    def count_incomplete_commits(self) -> int:
        return self._conn.execute(
            """
            SELECT COUNT(*) FROM commits
            WHERE NOT (has_change_info AND has_presence_info AND has_reachability_info)
            """
        ).fetchone()[0]

    def clear_commit_facts(self, commit_id: int) -> None:
        """Delete change, presence and skipped-path rows of an incomplete commit.

        Used before a commit is re-derived. Reachability pairs stay: they are
        only ever added to.
        """
        for table in ("changes", "presence", "skipped_paths"):
            self._conn.execute(
                f"DELETE FROM {table} WHERE commit_id = ?", (commit_id,)  # noqa: S608
            )
        self.set_flags(commit_id, change=False, presence=False)

    # ------------------------------------------------------------------
    # Refs
    # ------------------------------------------------------------------

    def upsert_ref(self, name: str, commit_id: int) -> None:
        """Point ref *name* at *commit_id*, replacing an older target."""
        self._conn.execute(
            """
            INSERT INTO refs (name, commit_id) VALUES (?, ?)
            ON CONFLICT(name) DO UPDATE SET commit_id = excluded.commit_id
            """,
            (name, commit_id),
        )

    def get_ref(self, name: str) -> Ref | None:
        row = self._conn.execute(
            "SELECT id, name, commit_id FROM refs WHERE name = ?", (name,)
        ).fetchone()
        return Ref(id=row["id"], name=row["name"], commit_id=row["commit_id"]) if row else None

    def list_refs(self) -> list[Ref]:
        rows = self._conn.execute("SELECT id, name, commit_id FROM refs ORDER BY name").fetchall()
        return [Ref(id=r["id"], name=r["name"], commit_id=r["commit_id"]) for r in rows]

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    def add_entities(self, entities: Iterable[Entity]) -> None:
        """Insert entities with explicit ids; parents must come first."""
        self._conn.executemany(
            "INSERT INTO entities (id, parent_id, file_id, name, kind) VALUES (?, ?, ?, ?, ?)",
            [(e.id, e.parent_id, e.file_id, e.name, e.kind) for e in entities],
        )

    def get_entity(self, entity_id: int) -> Entity | None:
        row = self._conn.execute(
            "SELECT id, parent_id, file_id, name, kind FROM entities WHERE id = ?", (entity_id,)
        ).fetchone()
        return _row_to_entity(row) if row else None

    def list_entities(self) -> list[Entity]:
        """Return every entity, parents before children."""
        rows = self._conn.execute(
            "SELECT id, parent_id, file_id, name, kind FROM entities ORDER BY id"
        ).fetchall()
        return [_row_to_entity(r) for r in rows]

    def find_children(self, parent_id: int | None, name: str) -> list[Entity]:
        """Return entities named *name* under *parent_id* (None: file entities)."""
        if parent_id is None:
            rows = self._conn.execute(
                "SELECT id, parent_id, file_id, name, kind FROM entities "
                "WHERE parent_id IS NULL AND name = ? ORDER BY id",
                (name,),
            ).fetchall()
        else:
            rows = self._conn.execute(
                "SELECT id, parent_id, file_id, name, kind FROM entities "
                "WHERE parent_id = ? AND name = ? ORDER BY id",
                (parent_id, name),
            ).fetchall()
        return [_row_to_entity(r) for r in rows]

    # ------------------------------------------------------------------
    # Ranges and presence
    # ------------------------------------------------------------------

    def add_range(self, rng: Range) -> int:
        cur = self._conn.execute(
            """
            INSERT INTO ranges (start_byte, start_row, start_col, end_byte, end_row, end_col)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (rng.start_byte, rng.start_row, rng.start_col, rng.end_byte, rng.end_row, rng.end_col),
        )
        return cur.lastrowid

    def add_presence(self, presence: Presence) -> None:
        body_id = self.add_range(presence.body_range)
        name_id = self.add_range(presence.name_range)
        self._conn.execute(
            """
            INSERT INTO presence (commit_id, entity_id, body_range_id, name_range_id)
            VALUES (?, ?, ?, ?)
            """,
            (presence.commit_id, presence.entity_id, body_id, name_id),
        )

    def carry_presence(self, from_commit: int, to_commit: int) -> int:
        """Copy every presence row of *from_commit* to *to_commit*, sharing ranges.

        Returns:
            Number of rows copied.
        """
        cur = self._conn.execute(
            """
            INSERT INTO presence (commit_id, entity_id, body_range_id, name_range_id)
            SELECT ?, entity_id, body_range_id, name_range_id
            FROM presence WHERE commit_id = ?
            """,
            (to_commit, from_commit),
        )
        return cur.rowcount

    def delete_file_presence(self, commit_id: int, file_id: int) -> None:
        """Drop presence rows of one file's entities at a not-yet-committed commit."""
        self._conn.execute(
            """
            DELETE FROM presence WHERE commit_id = ?
              AND entity_id IN (SELECT id FROM entities WHERE file_id = ?)
            """,
            (commit_id, file_id),
        )

    def present_entity_ids(self, commit_id: int, file_id: int) -> set[int]:
        """Return ids of the file's entities present at *commit_id*."""
        rows = self._conn.execute(
            """
            SELECT p.entity_id FROM presence p JOIN entities e ON e.id = p.entity_id
            WHERE p.commit_id = ? AND e.file_id = ?
            """,
            (commit_id, file_id),
        ).fetchall()
        return {r["entity_id"] for r in rows}

    def presence_at(self, commit_id: int, file_id: int | None = None) -> list[Presence]:
        """Return presence rows at *commit_id*, optionally limited to one file."""
        if file_id is None:
            rows = self._conn.execute(
                _PRESENCE_SELECT + " WHERE p.commit_id = ? ORDER BY p.entity_id", (commit_id,)
            ).fetchall()
        else:
            rows = self._conn.execute(
                _PRESENCE_SELECT
                + " JOIN entities e ON e.id = p.entity_id"
                + " WHERE p.commit_id = ? AND e.file_id = ? ORDER BY p.entity_id",
                (commit_id, file_id),
            ).fetchall()
        return [_row_to_presence(r) for r in rows]

    def get_presence(self, commit_id: int, entity_id: int) -> Presence | None:
        row = self._conn.execute(
            _PRESENCE_SELECT + " WHERE p.commit_id = ? AND p.entity_id = ?",
            (commit_id, entity_id),
        ).fetchone()
        return _row_to_presence(row) if row else None

    def presence_history(self, entity_id: int) -> list[Presence]:
        """Return every presence row of *entity_id* in commit order."""
        rows = self._conn.execute(
            _PRESENCE_SELECT + " WHERE p.entity_id = ? ORDER BY p.commit_id", (entity_id,)
        ).fetchall()
        return [_row_to_presence(r) for r in rows]

    def presence_within(
        self, entity_id: int, head_id: int, since: int | None = None
    ) -> list[Presence]:
        """Presence of *entity_id* at *head_id* and its ancestors.

        Args:
            entity_id: Entity to look up.
            head_id: Commit whose ancestry bounds the search (inclusive).
            since: Optional unix time; older commits (by commit date) are
                left out.
        """
        sql = (
            _PRESENCE_SELECT
            + """
            JOIN commits c ON c.id = p.commit_id
            WHERE p.entity_id = ?
              AND (p.commit_id = ? OR p.commit_id IN
                   (SELECT target_id FROM reachability WHERE source_id = ?))
            """
        )
        params: list[int] = [entity_id, head_id, head_id]
        if since is not None:
            sql += " AND c.commit_date >= ?"
            params.append(since)
        rows = self._conn.execute(sql + " ORDER BY p.commit_id", params).fetchall()
        return [_row_to_presence(r) for r in rows]

    # ------------------------------------------------------------------
    # Changes
    # ------------------------------------------------------------------

    def add_changes(self, changes: Iterable[Change]) -> None:
        self._conn.executemany(
            "INSERT INTO changes (commit_id, entity_id, kind, adds, dels) VALUES (?, ?, ?, ?, ?)",
            [(c.commit_id, c.entity_id, c.kind.value, c.adds, c.dels) for c in changes],
        )

    def changes_for_commit(self, commit_id: int) -> list[Change]:
        rows = self._conn.execute(
            "SELECT commit_id, entity_id, kind, adds, dels FROM changes "
            "WHERE commit_id = ? ORDER BY entity_id",
            (commit_id,),
        ).fetchall()
        return [_row_to_change(r) for r in rows]

    def change_history(self, entity_id: int) -> list[Change]:
        rows = self._conn.execute(
            "SELECT commit_id, entity_id, kind, adds, dels FROM changes "
            "WHERE entity_id = ? ORDER BY commit_id",
            (entity_id,),
        ).fetchall()
        return [_row_to_change(r) for r in rows]

    # ------------------------------------------------------------------
    # Reachability
    # ------------------------------------------------------------------

    def add_reachability(self, source_id: int, target_ids: Iterable[int]) -> int:
        """Record (source, target) pairs, ignoring ones already present.

        Returns:
            Number of new pairs.
        """
        before = self._conn.total_changes
        self._conn.executemany(
            "INSERT OR IGNORE INTO reachability (source_id, target_id) VALUES (?, ?)",
            [(source_id, t) for t in target_ids],
        )
        return self._conn.total_changes - before

    def reachable_from(self, source_id: int) -> set[int]:
        rows = self._conn.execute(
            "SELECT target_id FROM reachability WHERE source_id = ?", (source_id,)
        ).fetchall()
        return {r["target_id"] for r in rows}

    def is_reachable(self, source_id: int, target_id: int) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM reachability WHERE source_id = ? AND target_id = ?",
            (source_id, target_id),
        ).fetchone()
        return row is not None

    # ------------------------------------------------------------------
    # Skipped paths
    # ------------------------------------------------------------------

    def add_skipped(self, skipped: SkippedPath) -> None:
        self._conn.execute(
            """
            INSERT OR REPLACE INTO skipped_paths (commit_id, path, stage, reason)
            VALUES (?, ?, ?, ?)
            """,
            (skipped.commit_id, skipped.path, skipped.stage.value, skipped.reason),
        )

    def carry_skipped_presence(self, from_commit: int, to_commit: int) -> None:
        """Inherit the parent's presence gaps; untouched files keep them."""
        self._conn.execute(
            """
            INSERT OR IGNORE INTO skipped_paths (commit_id, path, stage, reason)
            SELECT ?, path, stage, reason FROM skipped_paths
            WHERE commit_id = ? AND stage = 'presence'
            """,
            (to_commit, from_commit),
        )

    def delete_skipped(self, commit_id: int, path: str) -> None:
        self._conn.execute(
            "DELETE FROM skipped_paths WHERE commit_id = ? AND path = ?", (commit_id, path)
        )

    def skipped_for_commit(self, commit_id: int) -> list[SkippedPath]:
        rows = self._conn.execute(
            "SELECT commit_id, path, stage, reason FROM skipped_paths "
            "WHERE commit_id = ? ORDER BY path, stage",
            (commit_id,),
        ).fetchall()
        return [
            SkippedPath(
                commit_id=r["commit_id"],
                path=r["path"],
                stage=SkipStage(r["stage"]),
                reason=r["reason"],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Dependency edges
    # ------------------------------------------------------------------

    def add_deps(self, deps: Iterable[Dep]) -> int:
        """Insert dependency edges, ignoring duplicates. Returns rows added."""
        before = self._conn.total_changes
        self._conn.executemany(
            """
            INSERT OR IGNORE INTO deps (commit_id, src_entity_id, dest_entity_id, kind)
            VALUES (?, ?, ?, ?)
            """,
            [(d.commit_id, d.src_entity_id, d.dest_entity_id, d.kind) for d in deps],
        )
        return self._conn.total_changes - before

    def list_deps(self, commit_id: int) -> list[Dep]:
        rows = self._conn.execute(
            "SELECT commit_id, src_entity_id, dest_entity_id, kind FROM deps "
            "WHERE commit_id = ? ORDER BY src_entity_id, dest_entity_id, kind",
            (commit_id,),
        ).fetchall()
        return [
            Dep(
                commit_id=r["commit_id"],
                src_entity_id=r["src_entity_id"],
                dest_entity_id=r["dest_entity_id"],
                kind=r["kind"],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def table_counts(self) -> dict[str, int]:
        """Return row counts for the user-facing tables."""
        tables = ("commits", "refs", "entities", "changes", "presence", "reachability", "deps")
        return {
            t: self._conn.execute(f"SELECT COUNT(*) FROM {t}").fetchone()[0]  # noqa: S608
            for t in tables
        }


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------

def _row_to_commit(row: sqlite3.Row) -> Commit:
    return Commit(
        id=row["id"],
        sha=row["sha"],
        is_merge=bool(row["is_merge"]),
        author_date=row["author_date"],
        commit_date=row["commit_date"],
        has_change_info=bool(row["has_change_info"]),
        has_presence_info=bool(row["has_presence_info"]),
        has_reachability_info=bool(row["has_reachability_info"]),
    )


def _row_to_entity(row: sqlite3.Row) -> Entity:
    return Entity(
        id=row["id"],
        parent_id=row["parent_id"],
        file_id=row["file_id"],
        name=row["name"],
        kind=row["kind"],
    )


def _row_to_change(row: sqlite3.Row) -> Change:
    return Change(
        commit_id=row["commit_id"],
        entity_id=row["entity_id"],
        kind=ChangeKind(row["kind"]),
        adds=row["adds"],
        dels=row["dels"],
    )


def _row_to_presence(row: sqlite3.Row) -> Presence:
    return Presence(
        commit_id=row["commit_id"],
        entity_id=row["entity_id"],
        body_range=Range(
            row["b_start_byte"], row["b_start_row"], row["b_start_col"],
            row["b_end_byte"], row["b_end_row"], row["b_end_col"],
        ),
        name_range=Range(
            row["n_start_byte"], row["n_start_row"], row["n_start_col"],
            row["n_end_byte"], row["n_end_row"], row["n_end_col"],
        ),
    )
