"""histree history — presence and changes of one entity.

Usage:
  histree history src/Shape.java::Shape::area
  histree history src/Shape.java::Shape::area --ref main --since 2y
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from histree.cli.errors import err_bad_date, err_entity_not_found, err_no_db, err_unknown_commit
from histree.db.connection import Database
from histree.db.models import ChangeKind
from histree.db.repository import Repository
from histree.db.schema import initialize
from histree.query import (
    EntityHistory,
    EntityNotFound,
    entity_history,
    parse_since,
    resolve_commit,
    resolve_entity_path,
)

console = Console()

_DEFAULT_DB = Path(".histree.db")

_KIND_STYLE = {
    ChangeKind.ADDED: "[green]added[/]",
    ChangeKind.DELETED: "[red]deleted[/]",
    ChangeKind.MODIFIED: "[yellow]modified[/]",
}


def history_cmd(
    entity_path: Annotated[
        str,
        typer.Argument(help="Qualified entity path, e.g. src/Shape.java::Shape::area."),
    ],
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .histree.db."),
    ] = _DEFAULT_DB,
    ref: Annotated[
        str | None,
        typer.Option("--ref", help="Only consider this ref (or commit sha) and its ancestors."),
    ] = None,
    since: Annotated[
        str | None,
        typer.Option("--since", help="ISO date or duration such as 2y, 6m, 30d."),
    ] = None,
) -> None:
    """Show where and when an entity was present and changed."""
    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)

    since_ts = None
    if since is not None:
        try:
            since_ts = parse_since(since)
        except ValueError as exc:
            console.print(err_bad_date(str(exc)))
            raise typer.Exit(1) from None

    conn = _open_db(db)
    try:
        repo = Repository(conn)
        try:
            entity = resolve_entity_path(repo, entity_path)
        except EntityNotFound as exc:
            console.print(err_entity_not_found(entity_path, str(exc)))
            raise typer.Exit(1) from None

        head_id = None
        if ref is not None:
            head = resolve_commit(repo, ref)
            if head is None:
                console.print(err_unknown_commit(ref))
                raise typer.Exit(1)
            head_id = head.id

        history = entity_history(repo, entity, head_id=head_id, since=since_ts)
    finally:
        conn.close()

    _show_history(entity_path, history)


def _date(ts: int) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d")


def _show_history(entity_path: str, history: EntityHistory) -> None:
    entity = history.entity
    console.print(f"[bold]{entity_path}[/]  [dim]({entity.kind}, id {entity.id})[/]")

    if not history.present:
        console.print("  [yellow]Not present[/] in the selected commits.")
    else:
        first_commit, _ = history.presence[0]
        last_commit, last = history.presence[-1]
        first_line, last_line = last.body_range.line_span()
        console.print(
            f"  Present in [bold]{len(history.presence)}[/] commit(s): "
            f"{first_commit.sha[:12]} ({_date(first_commit.commit_date)}) → "
            f"{last_commit.sha[:12]} ({_date(last_commit.commit_date)})"
        )
        console.print(f"  Latest body: lines {first_line}–{last_line}")

    if not history.changes:
        console.print("  [dim]No recorded changes.[/]")
        return

    table = Table(title="Changes", show_header=True, header_style="bold")
    table.add_column("Commit", style="bold")
    table.add_column("Date")
    table.add_column("Kind")
    table.add_column("+", justify="right", style="green")
    table.add_column("-", justify="right", style="red")
    for commit, change in history.changes:
        table.add_row(
            commit.sha[:12],
            _date(commit.commit_date),
            _KIND_STYLE[change.kind],
            str(change.adds),
            str(change.dels),
        )
    console.print(table)


def _open_db(db_path: Path) -> sqlite3.Connection:
    db = Database(db_path)
    conn = db.connect()
    initialize(conn)
    return conn
