"""histree CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from histree.cli.deps import deps_app
from histree.cli.history import history_cmd
from histree.cli.mine import mine_cmd
from histree.cli.status import status_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("histree")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"histree {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="histree",
    help=(
        "histree — entity-level history of a git repository.\n\n"
        "  histree mine      Record presence and changes of classes, methods and fields per commit.\n"
        "  histree history   Show when one entity existed and how it changed."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """histree — entity-level history of a git repository."""


app.command("mine")(mine_cmd)
app.command("status")(status_cmd)
app.command("history")(history_cmd)
app.add_typer(deps_app, name="deps")


@app.command("version")
def version_cmd() -> None:
    """Show the installed histree version."""
    typer.echo(f"histree {_installed_version()}")


if __name__ == "__main__":
    app()
