"""tiddlyvec search: semantic search over an indexed wiki.

Usage:
  tiddlyvec search "how do I back up the wiki" --wiki notes
  tiddlyvec search "backups" --wiki notes --limit 5 --json
"""

from __future__ import annotations

import json
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from tiddlyvec.cli.errors import (
    err_backend_unreachable,
    err_embedding_failed,
    warn_prefilter_ignored,
)
from tiddlyvec.cli.wiring import (
    build_embedder,
    err_console,
    load_wiki,
    open_repository,
    require_db_path,
    require_semantic_support,
)
from tiddlyvec.db.models import SearchHit
from tiddlyvec.errors import EmbeddingRequestError, UnreachableBackendError
from tiddlyvec.rag.search import DEFAULT_LIMIT, MAX_LIMIT, semantic_search

console = Console()

_SNIPPET_CHARS = 160


def search_cmd(
    query: Annotated[str, typer.Argument(help="Natural-language query.")],
    wiki: Annotated[
        str,
        typer.Option("--wiki", "-w", help="Wiki name from tiddlyvec.yaml."),
    ],
    limit: Annotated[
        int,
        typer.Option(
            "--limit", "-n", min=1, max=MAX_LIMIT, help="Maximum number of tiddlers to return."
        ),
    ] = DEFAULT_LIMIT,
    filter_expr: Annotated[
        str | None,
        typer.Option("--filter", help="TiddlyWiki filter to restrict results (not applied yet)."),
    ] = None,
    json_out: Annotated[
        bool,
        typer.Option("--json", help="Print results as JSON."),
    ] = False,
) -> None:
    """Find the tiddlers closest in meaning to QUERY."""
    cfg, wiki_cfg = load_wiki(wiki)
    db_path = require_db_path(wiki_cfg, wiki, must_exist=True)
    require_semantic_support()

    if filter_expr:
        err_console.print(warn_prefilter_ignored(filter_expr))

    embedder = build_embedder(cfg)
    with open_repository(db_path, cfg.embedding.dimensions) as repo:
        try:
            hits = semantic_search(query, repo, embedder, limit=limit, pre_filter=filter_expr)
        except UnreachableBackendError as exc:
            err_console.print(err_backend_unreachable(exc.base_url))
            raise typer.Exit(1) from exc
        except EmbeddingRequestError as exc:
            err_console.print(err_embedding_failed(str(exc)))
            raise typer.Exit(1) from exc

    if json_out:
        typer.echo(json.dumps([h.to_dict() for h in hits], indent=2))
        return

    if not hits:
        console.print(f"[dim]No matches in '{wiki}'. Has it been indexed?[/]")
        return
    _show_hits(hits)


def _show_hits(hits: list[SearchHit]) -> None:
    table = Table(show_lines=False)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Title", style="bold")
    table.add_column("Distance", justify="right")
    table.add_column("Excerpt", overflow="fold")

    for rank, hit in enumerate(hits, start=1):
        excerpt = " ".join(hit.text.split())
        if len(excerpt) > _SNIPPET_CHARS:
            excerpt = excerpt[:_SNIPPET_CHARS].rstrip() + "…"
        table.add_row(str(rank), escape(hit.title), f"{hit.distance:.4f}", escape(excerpt))

    console.print(table)
