"""histree database layer."""

from histree.db.connection import Database
from histree.db.migrations import MIGRATIONS, run_migrations
from histree.db.repository import Repository
from histree.db.schema import initialize

__all__ = [
    "Database",
    "Repository",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
]
