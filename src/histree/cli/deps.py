"""histree deps commands.

Commands:
  histree deps import <file> --commit <sha>  — store an extracted dependency graph
  histree deps list --commit <sha>           — show stored edges
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from histree.cli.errors import err_deps_file, err_no_db, err_unknown_commit
from histree.cli.logs import configure_logging
from histree.db.connection import Database
from histree.db.models import Commit
from histree.db.repository import Repository
from histree.db.schema import initialize
from histree.deps import DepsFormatError, import_deps, load_deps
from histree.query import resolve_commit

console = Console()

deps_app = typer.Typer(
    name="deps",
    help="Import and inspect entity dependency edges.",
    add_completion=False,
)

_DEFAULT_DB = Path(".histree.db")


@deps_app.command("import")
def deps_import_cmd(
    deps_file: Annotated[
        Path,
        typer.Argument(help="JSON output of the dependency extraction tool."),
    ],
    commit: Annotated[
        str,
        typer.Option("--commit", "-c", help="Mined ref or commit sha the file describes."),
    ],
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .histree.db."),
    ] = _DEFAULT_DB,
    verbose: Annotated[
        int,
        typer.Option("--verbose", "-v", count=True, help="Log unresolved endpoints."),
    ] = 0,
) -> None:
    """Resolve dependency endpoints to entities at one commit and store the edges."""
    configure_logging(verbose)
    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)

    try:
        edges = load_deps(deps_file)
    except (DepsFormatError, OSError) as exc:
        console.print(err_deps_file(str(exc)))
        raise typer.Exit(1) from None

    conn = _open_db(db)
    try:
        repo = Repository(conn)
        target = _commit_or_exit(repo, commit)
        with repo.transaction():
            stored, skipped = import_deps(repo, target.id, edges)
    finally:
        conn.close()

    console.print(
        f"[green]✓[/] {stored} dependency edge(s) stored for {target.sha[:12]}"
        f"  ({len(edges)} read)"
    )
    if skipped:
        console.print(
            f"  [yellow]{skipped} edge(s) skipped:[/] an endpoint did not resolve to a unique entity."
        )


@deps_app.command("list")
def deps_list_cmd(
    commit: Annotated[
        str,
        typer.Option("--commit", "-c", help="Mined ref or commit sha."),
    ],
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .histree.db."),
    ] = _DEFAULT_DB,
) -> None:
    """List dependency edges stored for a commit."""
    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)

    conn = _open_db(db)
    try:
        repo = Repository(conn)
        target = _commit_or_exit(repo, commit)
        deps = repo.list_deps(target.id)
        entities = {e.id: e for e in repo.list_entities()}
    finally:
        conn.close()

    if not deps:
        console.print(f"[yellow]No dependency edges for {target.sha[:12]}.[/]")
        raise typer.Exit(0)

    table = Table(title=f"Dependencies at {target.sha[:12]}", show_header=True, header_style="bold")
    table.add_column("Source", style="bold")
    table.add_column("Kind")
    table.add_column("Target")
    for dep in deps:
        src = entities[dep.src_entity_id]
        dest = entities[dep.dest_entity_id]
        table.add_row(f"{src.name} ({src.kind})", dep.kind, f"{dest.name} ({dest.kind})")
    console.print(table)
    console.print(f"\n  {len(deps)} edge(s)")


def _commit_or_exit(repo: Repository, ref: str) -> Commit:
    target = resolve_commit(repo, ref)
    if target is None:
        console.print(err_unknown_commit(ref))
        raise typer.Exit(1)
    return target


def _open_db(db_path: Path) -> sqlite3.Connection:
    db = Database(db_path)
    conn = db.connect()
    initialize(conn)
    return conn
