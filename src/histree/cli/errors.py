"""histree rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from histree.cli.errors import err_no_db
    console.print(err_no_db(".histree.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations


def err_no_db(db_path: str = ".histree.db") -> str:
    """No database at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  histree mine --repo <path-to-repository>"
    )


def err_config(message: str) -> str:
    """Invalid configuration file or environment value."""
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {message}\n"
        "  Fix histree.yaml, ~/.histree/config.yaml or the HISTREE_* variables."
    )


def err_git(message: str) -> str:
    """A git command failed. *message* is already free of credentials."""
    return (
        f"[red]Error:[/] {message}\n"
        "  Check that --repo points at a git repository and the refs exist."
    )


def err_graph(message: str) -> str:
    """The commit graph cannot be indexed consistently."""
    return (
        f"[red]Error:[/] Commit graph invariant violated: {message}\n"
        "  Shallow clones miss parent commits. Run:  git fetch --unshallow\n"
        "  then mine again."
    )


def err_unknown_commit(ref: str) -> str:
    """Ref or sha not present in the database."""
    return (
        f"[red]Error:[/] '{ref}' is not a mined ref or commit.\n"
        "  Run:  histree status  to see mined refs, or mine it first."
    )


def err_entity_not_found(path: str, detail: str) -> str:
    """Qualified entity path does not resolve."""
    return (
        f"[red]Error:[/] Cannot resolve '{path}': {detail}\n"
        "  Use the form  path/to/File.java::Class::method"
    )


def err_bad_date(message: str) -> str:
    return (
        f"[red]Error:[/] {message}\n"
        "  Examples:  --since 2023-01-31   --since 2y   --since 30d"
    )


def err_deps_file(message: str) -> str:
    """Dependency file unreadable or malformed."""
    return (
        f"[red]Error:[/] Cannot import dependencies: {message}\n"
        "  Expected the extraction tool's JSON output (cells[].details[])."
    )


def warn_incomplete(count: int) -> str:
    """Some commits still have a readiness flag unset."""
    return (
        f"[yellow]⚠[/] {count} commit(s) have incomplete derived facts.\n"
        "  Run:  histree mine  again to retry them."
    )
