"""Forward-only migration runner for the histree database schema.

The store enforces the layout invariants itself: file entities have no
parent and every other entity has one, change kinds are A/D/M with at least
one positive line count, presence and reachability are unique per key, and
no commit reaches itself.
"""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS entities (
    id          INTEGER PRIMARY KEY,
    parent_id   INTEGER REFERENCES entities(id),
    file_id     INTEGER NOT NULL REFERENCES entities(id),
    name        TEXT NOT NULL,
    kind        TEXT NOT NULL,
    CHECK ((kind = 'file' AND parent_id IS NULL AND file_id = id) OR
           (kind != 'file' AND parent_id IS NOT NULL)),
    UNIQUE (parent_id, name, kind)
);

-- UNIQUE treats NULL parents as distinct, so file paths need their own index.
CREATE UNIQUE INDEX IF NOT EXISTS idx_entities_file_name
    ON entities(name) WHERE parent_id IS NULL;
CREATE INDEX IF NOT EXISTS idx_entities_file ON entities(file_id);

CREATE TABLE IF NOT EXISTS commits (
    id                      INTEGER PRIMARY KEY,
    sha                     TEXT NOT NULL UNIQUE CHECK (length(sha) = 40),
    is_merge                INTEGER NOT NULL,
    author_date             INTEGER NOT NULL,
    commit_date             INTEGER NOT NULL,
    has_change_info         INTEGER NOT NULL DEFAULT 0,
    has_presence_info       INTEGER NOT NULL DEFAULT 0,
    has_reachability_info   INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS commit_parents (
    commit_id   INTEGER NOT NULL REFERENCES commits(id),
    position    INTEGER NOT NULL,
    parent_id   INTEGER NOT NULL REFERENCES commits(id),
    PRIMARY KEY (commit_id, position),
    CHECK (commit_id != parent_id)
) WITHOUT ROWID;

CREATE TABLE IF NOT EXISTS refs (
    id          INTEGER PRIMARY KEY,
    commit_id   INTEGER NOT NULL REFERENCES commits(id),
    name        TEXT NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS ranges (
    id          INTEGER PRIMARY KEY,
    start_byte  INTEGER NOT NULL,
    start_row   INTEGER NOT NULL,
    start_col   INTEGER NOT NULL,
    end_byte    INTEGER NOT NULL,
    end_row     INTEGER NOT NULL,
    end_col     INTEGER NOT NULL,
    CHECK (start_byte <= end_byte)
);

CREATE TABLE IF NOT EXISTS presence (
    commit_id       INTEGER NOT NULL REFERENCES commits(id),
    entity_id       INTEGER NOT NULL REFERENCES entities(id),
    body_range_id   INTEGER NOT NULL REFERENCES ranges(id),
    name_range_id   INTEGER NOT NULL REFERENCES ranges(id),
    PRIMARY KEY (commit_id, entity_id)
) WITHOUT ROWID;

CREATE INDEX IF NOT EXISTS idx_presence_entity ON presence(entity_id);

CREATE TABLE IF NOT EXISTS changes (
    commit_id   INTEGER NOT NULL REFERENCES commits(id),
    entity_id   INTEGER NOT NULL REFERENCES entities(id),
    kind        TEXT NOT NULL CHECK (kind IN ('A', 'D', 'M')),
    adds        INTEGER NOT NULL CHECK (adds >= 0),
    dels        INTEGER NOT NULL CHECK (dels >= 0),
    PRIMARY KEY (commit_id, entity_id),
    CHECK (adds > 0 OR dels > 0)
) WITHOUT ROWID;

CREATE INDEX IF NOT EXISTS idx_changes_entity ON changes(entity_id);

CREATE TABLE IF NOT EXISTS reachability (
    source_id   INTEGER NOT NULL REFERENCES commits(id),
    target_id   INTEGER NOT NULL REFERENCES commits(id),
    PRIMARY KEY (source_id, target_id),
    CHECK (source_id != target_id)
) WITHOUT ROWID;

CREATE INDEX IF NOT EXISTS idx_reachability_target ON reachability(target_id);

CREATE TABLE IF NOT EXISTS skipped_paths (
    commit_id   INTEGER NOT NULL REFERENCES commits(id),
    path        TEXT NOT NULL,
    stage       TEXT NOT NULL CHECK (stage IN ('change', 'presence')),
    reason      TEXT NOT NULL,
    PRIMARY KEY (commit_id, path, stage)
) WITHOUT ROWID;

CREATE TABLE IF NOT EXISTS deps (
    commit_id       INTEGER NOT NULL REFERENCES commits(id),
    src_entity_id   INTEGER NOT NULL REFERENCES entities(id),
    dest_entity_id  INTEGER NOT NULL REFERENCES entities(id),
    kind            TEXT NOT NULL CHECK (kind IN (
        'Annotation', 'Call', 'Cast', 'Contain', 'Create', 'Extend',
        'Implement', 'Import', 'Parameter', 'Return', 'Throw', 'Use'
    )),
    PRIMARY KEY (commit_id, src_entity_id, dest_entity_id, kind)
) WITHOUT ROWID;
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
]


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()
