"""SQLite connection layer for .histree.db files."""

from __future__ import annotations

import sqlite3
from pathlib import Path

# ms a reader (status, history) waits while `mine` holds the write lock
BUSY_TIMEOUT_MS = 5000


class Database:
    """One mined repository's history database.

    Connections are used from the thread that opened them; the miner's worker
    threads never touch the database.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Open the database, creating it and its directory if needed.

        Foreign keys are enforced. WAL journaling with ``synchronous=NORMAL``
        keeps per-commit transactions cheap during a long mining run.
        """
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path, timeout=BUSY_TIMEOUT_MS / 1000)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        return conn

    def __enter__(self) -> sqlite3.Connection:
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None
