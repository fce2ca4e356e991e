"""tiddlyvec CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from tiddlyvec.cli.reindex import reindex_cmd
from tiddlyvec.cli.search import search_cmd
from tiddlyvec.cli.status import status_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("tiddlyvec")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"tiddlyvec {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="tiddlyvec",
    help=(
        "tiddlyvec: semantic search for TiddlyWiki.\n\n"
        "  tiddlyvec reindex  Embed new and edited tiddlers into the local index.\n"
        "  tiddlyvec search   Find tiddlers by meaning."
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
    """tiddlyvec: semantic search for TiddlyWiki."""


app.command("reindex")(reindex_cmd)
app.command("search")(search_cmd)
app.command("status")(status_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed tiddlyvec version."""
    typer.echo(f"tiddlyvec {_installed_version()}")


if __name__ == "__main__":
    app()
