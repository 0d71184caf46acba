"""histree status command.

Shows database stats, mined refs and commits whose derived facts are
incomplete.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from histree.cli.errors import err_no_db, warn_incomplete
from histree.db.connection import Database
from histree.db.repository import Repository
from histree.db.schema import initialize

console = Console()

_DEFAULT_DB = Path(".histree.db")


def status_cmd(
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .histree.db."),
    ] = _DEFAULT_DB,
) -> None:
    """Show what has been mined into the database."""
    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)

    conn = _open_db(db)
    try:
        repo = Repository(conn)
        _show_database_panel(db, repo)
        _show_refs_table(repo)
        incomplete = repo.count_incomplete_commits()
    finally:
        conn.close()

    if incomplete:
        console.print(warn_incomplete(incomplete))


# ---------------------------------------------------------------------------
# Renderers
# ---------------------------------------------------------------------------


def _show_database_panel(db: Path, repo: Repository) -> None:
    counts = repo.table_counts()
    size_mb = db.stat().st_size / (1024 * 1024)
    lines = [
        f"Database:  {db} ({size_mb:.1f} MB)",
        f"Commits: [bold]{counts['commits']:,}[/]  |  "
        f"Entities: [bold]{counts['entities']:,}[/]  |  "
        f"Changes: [bold]{counts['changes']:,}[/]",
        f"Presence: [bold]{counts['presence']:,}[/]  |  "
        f"Reachability: [bold]{counts['reachability']:,}[/]  |  "
        f"Deps: [bold]{counts['deps']:,}[/]",
    ]
    console.print(Panel("\n".join(lines), title="[bold]History[/]", expand=False))


def _show_refs_table(repo: Repository) -> None:
    refs = repo.list_refs()
    if not refs:
        console.print("[dim]No refs recorded.[/]")
        return
    table = Table(title="Refs", show_header=True, header_style="bold")
    table.add_column("Name", style="bold")
    table.add_column("Commit")
    table.add_column("Ancestors", justify="right")
    for ref in refs:
        commit = repo.get_commit(ref.commit_id)
        ancestors = len(repo.reachable_from(ref.commit_id))
        table.add_row(ref.name, commit.sha[:12] if commit else "?", f"{ancestors:,}")
    console.print(table)


def _open_db(db_path: Path) -> sqlite3.Connection:
    db = Database(db_path)
    conn = db.connect()
    initialize(conn)
    return conn
