"""tiddlyvec status command.

Shows whether the wiki answers, how many tiddlers it holds and when one was
last edited, plus the state of the embeddings database (if it exists).
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.panel import Panel

from tiddlyvec.capabilities import semantic_support
from tiddlyvec.cli.wiring import load_wiki, open_repository
from tiddlyvec.config import TiddlyVecConfig, WikiCfg
from tiddlyvec.discovery import resolve_base_url
from tiddlyvec.errors import DnsResolutionError, SourceListError
from tiddlyvec.source.tiddlywiki import ALL_TIDDLERS_FILTER, TiddlyWikiSource

console = Console()


def status_cmd(
    wiki: Annotated[
        str,
        typer.Option("--wiki", "-w", help="Wiki name from tiddlyvec.yaml."),
    ],
    json_out: Annotated[
        bool,
        typer.Option("--json", help="Print status as JSON."),
    ] = False,
) -> None:
    """Show wiki reachability and embeddings index state."""
    cfg, wiki_cfg = load_wiki(wiki)

    report: dict[str, Any] = {"wiki": wiki, **_wiki_report(cfg, wiki_cfg)}
    report["embeddings"] = _index_report(cfg, wiki_cfg.db_path)

    if json_out:
        typer.echo(json.dumps(report, indent=2))
        return

    _show_wiki_panel(report)
    _show_index_panel(report["embeddings"], wiki)


# ---------------------------------------------------------------------------
# Collectors
# ---------------------------------------------------------------------------


def _wiki_report(cfg: TiddlyVecConfig, wiki: WikiCfg) -> dict[str, Any]:
    try:
        base_url = resolve_base_url(wiki.url, timeout=cfg.embedding.dns_timeout)
        source = TiddlyWikiSource(
            base_url,
            auth_header=wiki.auth_header,
            auth_user=wiki.auth_user,
            timeout=wiki.read_timeout,
        )
        entries = source.list_entries(ALL_TIDDLERS_FILTER)
    except (DnsResolutionError, SourceListError) as exc:
        return {"url": wiki.url, "reachable": False, "error": str(exc)}

    modified = [e.modified for e in entries if e.modified]
    return {
        "url": base_url,
        "reachable": True,
        "tiddler_count": len(entries),
        "last_modified": max(modified) if modified else None,
    }


def _index_report(cfg: TiddlyVecConfig, db_path: Path | None) -> dict[str, Any]:
    report: dict[str, Any] = {
        "db_path": str(db_path) if db_path else None,
        "exists": bool(db_path and db_path.exists()),
    }
    capability = semantic_support()
    report["semantic_search"] = capability.available
    if not capability.available:
        report["reason"] = capability.reason
    if report["exists"] and capability.available:
        with open_repository(db_path, cfg.embedding.dimensions) as repo:
            report.update(repo.stats().to_dict())
    return report


# ---------------------------------------------------------------------------
# Panel renderers
# ---------------------------------------------------------------------------


def _show_wiki_panel(report: dict[str, Any]) -> None:
    lines = [f"URL:       {report['url']}"]
    if report["reachable"]:
        lines.append("Reachable: [green]✓[/]")
        lines.append(f"Tiddlers:  [bold]{report['tiddler_count']:,}[/]")
        lines.append(f"Last edit: [dim]{_format_tw_timestamp(report['last_modified'])}[/]")
    else:
        lines.append("Reachable: [red]✗[/]")
        lines.append(f"[red]{report['error']}[/]")
    console.print(Panel("\n".join(lines), title=f"[bold]Wiki: {report['wiki']}[/]", expand=False))


def _show_index_panel(index: dict[str, Any], wiki: str) -> None:
    if index["db_path"] is None:
        body = "[yellow]No embeddings_db configured.[/]"
    elif not index["exists"]:
        body = (
            f"Database:  {index['db_path']}\n"
            "[yellow]Not built yet.[/]\n"
            f"  Run:  tiddlyvec reindex --wiki {wiki}"
        )
    else:
        lines = [f"Database:  {index['db_path']}"]
        if not index["semantic_search"]:
            lines.append(f"[yellow]Semantic search unavailable:[/] {index['reason']}")
        else:
            lines.append(
                f"Tiddlers: [bold]{index['indexed']:,}[/]  |  "
                f"Embeddings: [bold]{index['embeddings']:,}[/]"
            )
            for name, count in index["by_status"].items():
                lines.append(f"  {name}: {count:,}")
        body = "\n".join(lines)
    console.print(Panel(body, title="[bold]Embeddings[/]", expand=False))


def _format_tw_timestamp(value: str | None) -> str:
    """``20240102030405000`` → ``2024-01-02 03:04:05``; anything else as-is."""
    if not value:
        return "never"
    if len(value) >= 14 and value[:14].isdigit():
        return f"{value[0:4]}-{value[4:6]}-{value[6:8]} {value[8:10]}:{value[10:12]}:{value[12:14]}"
    return value
