"""histree mine — ingest a repository's history into .histree.db.

Commits are processed parents-first. Commits whose three readiness flags are
already set are skipped; incomplete ones are derived again.

Usage:
  histree mine
  histree mine main release/2.x --repo ../project --workers 8 -v
  histree mine --repo https://github.com/org/project.git
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.progress import MofNCompleteColumn, Progress, SpinnerColumn, TextColumn

from histree.cli.errors import err_config, err_git, err_graph, warn_incomplete
from histree.cli.logs import configure_logging
from histree.config import ConfigError, HistreeConfig, load_config
from histree.db.connection import Database
from histree.db.repository import Repository
from histree.db.schema import initialize
from histree.errors import GitError, GraphInvariantViolation
from histree.git.repo import CommitInfo, is_remote, open_repository
from histree.pipeline import Miner, MineStats

console = Console()


def mine_cmd(
    refs: Annotated[
        list[str] | None,
        typer.Argument(help="Refs to mine (default: HEAD)."),
    ] = None,
    repo_path: Annotated[
        str,
        typer.Option("--repo", "-r", help="Repository path or remote URL."),
    ] = ".",
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the database (default: storage.db from config)."),
    ] = None,
    workers: Annotated[
        int | None,
        typer.Option("--workers", "-j", min=1, help="Worker threads per commit."),
    ] = None,
    verbose: Annotated[
        int,
        typer.Option("--verbose", "-v", count=True, help="More log output (-vv for debug)."),
    ] = 0,
) -> None:
    """Mine entity-level history from a git repository."""
    configure_logging(verbose)

    try:
        cfg = _load(repo_path)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from None
    if workers is not None:
        cfg.mining.workers = workers
    db_path = db if db is not None else Path(cfg.storage.db)
    targets = refs or ["HEAD"]

    conn = _open_db(db_path)
    try:
        with open_repository(repo_path) as git:
            miner = Miner(git, Repository(conn), cfg)
            stats = _run(miner, targets)
        incomplete = Repository(conn).count_incomplete_commits()
    except GraphInvariantViolation as exc:
        console.print(err_graph(str(exc)))
        raise typer.Exit(2) from None
    except GitError as exc:
        console.print(err_git(str(exc)))
        raise typer.Exit(1) from None
    finally:
        conn.close()

    _show_summary(stats, db_path)
    if incomplete:
        console.print(warn_incomplete(incomplete))


def _load(repo_path: str) -> HistreeConfig:
    project_dir = None
    if not is_remote(repo_path) and (Path(repo_path) / "histree.yaml").exists():
        project_dir = Path(repo_path)
    return load_config(project_dir)


def _run(miner: Miner, refs: list[str]) -> MineStats:
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        MofNCompleteColumn(),
        transient=True,
        console=console,
    ) as prog:
        task = prog.add_task("Mining…", total=None)

        def on_commit(info: CommitInfo, ingested: bool) -> None:
            verb = "Mined" if ingested else "Skipped"
            prog.update(task, advance=1, description=f"{verb} {info.sha[:12]}")

        return miner.mine(refs, on_commit=on_commit)


def _show_summary(stats: MineStats, db_path: Path) -> None:
    console.print(
        f"[green]✓[/] {stats.commits_ingested} commit(s) mined, "
        f"{stats.commits_skipped} already complete  →  {db_path}"
    )
    console.print(
        f"  [dim]{stats.files_derived} file transition(s), "
        f"{stats.entities_created} new entit{'y' if stats.entities_created == 1 else 'ies'}[/]"
    )
    if stats.files_degraded:
        console.print(
            f"  [yellow]{stats.files_degraded} file transition(s) recorded at file level only[/]"
        )


def _open_db(db_path: Path) -> sqlite3.Connection:
    db = Database(db_path)
    conn = db.connect()
    initialize(conn)
    return conn
