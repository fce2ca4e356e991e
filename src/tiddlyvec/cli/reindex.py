"""tiddlyvec reindex: bring the embeddings index in line with the wiki.

Incremental by default: only new, edited, and (after 24h) previously failed
tiddlers are embedded; tiddlers deleted from the wiki are purged.

Usage:
  tiddlyvec reindex --wiki notes
  tiddlyvec reindex --wiki notes --force
  tiddlyvec reindex --wiki notes --status --json
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from tiddlyvec.cli.errors import (
    err_backend_unreachable,
    err_source_list,
    warn_entry_errors,
)
from tiddlyvec.cli.wiring import (
    build_chunker,
    build_embedder,
    build_source,
    err_console,
    load_wiki,
    open_repository,
    require_db_path,
    require_semantic_support,
)
from tiddlyvec.errors import SourceListError, UnreachableBackendError
from tiddlyvec.ingest.reconciler import Reconciler, ReindexSummary

console = Console()


def reindex_cmd(
    wiki: Annotated[
        str,
        typer.Option("--wiki", "-w", help="Wiki name from tiddlyvec.yaml."),
    ],
    force: Annotated[
        bool,
        typer.Option("--force", help="Re-embed every tiddler, changed or not."),
    ] = False,
    status: Annotated[
        bool,
        typer.Option("--status", help="Only show index stats; change nothing."),
    ] = False,
    json_out: Annotated[
        bool,
        typer.Option("--json", help="Print the summary as JSON."),
    ] = False,
) -> None:
    """Update the embeddings index for a wiki."""
    cfg, wiki_cfg = load_wiki(wiki)
    db_path = require_db_path(wiki_cfg, wiki)
    require_semantic_support()

    with open_repository(db_path, cfg.embedding.dimensions) as repo:
        if status:
            summary = ReindexSummary(action="status", stats=repo.stats())
        else:
            embedder = build_embedder(cfg)
            source = build_source(cfg, wiki_cfg)
            with _progress(quiet=json_out) as report:
                reconciler = Reconciler(
                    repo,
                    embedder,
                    source,
                    chunker=build_chunker(cfg),
                    batch_size=cfg.embedding.batch_size,
                    on_progress=report,
                )
                summary = _run(reconciler, wiki, force=force)

    if json_out:
        typer.echo(json.dumps(summary.to_dict(), indent=2))
        return

    _show_summary(summary)
    if summary.errors:
        err_console.print(warn_entry_errors(summary.errors, wiki))


@contextmanager
def _progress(quiet: bool) -> Iterator[Callable[[str], None]]:
    """Yield a progress callback: a transient spinner, or a no-op when *quiet*."""
    if quiet:
        yield lambda _msg: None
        return
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        transient=True,
        console=err_console,
    ) as prog:
        task = prog.add_task("Starting…", total=None)
        yield lambda msg: prog.update(task, description=msg)


def _run(reconciler: Reconciler, wiki: str, force: bool) -> ReindexSummary:
    """Run one pass; fatal errors exit with status 1."""
    try:
        return reconciler.reindex(force=force)
    except UnreachableBackendError as exc:
        err_console.print(err_backend_unreachable(exc.base_url))
        raise typer.Exit(1) from exc
    except SourceListError as exc:
        err_console.print(err_source_list(wiki, str(exc)))
        raise typer.Exit(1) from exc


def _show_summary(summary: ReindexSummary) -> None:
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column("Key", style="bold")
    table.add_column("Value", justify="right")

    if summary.action == "reindex":
        table.add_row("Newly indexed", f"[green]{summary.newly_indexed}[/]")
        table.add_row("Empty", str(summary.empty))
        table.add_row("Errors", f"[red]{summary.errors}[/]" if summary.errors else "0")
        table.add_row("Deleted", str(summary.deleted))

    stats = summary.stats
    table.add_row("Tiddlers tracked", f"{stats.total_synced_entries:,}")
    table.add_row("Embeddings", f"{stats.total_vectors:,}")
    for name, count in stats.counts_by_status.items():
        table.add_row(f"  {name}", f"{count:,}")

    title = "Reindex" if summary.action == "reindex" else "Index status"
    console.print(Panel(table, title=f"[bold]{title}[/]", expand=False))
