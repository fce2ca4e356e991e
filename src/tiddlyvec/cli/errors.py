"""tiddlyvec rich error messages: actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from tiddlyvec.cli.errors import err_no_db
    err_console.print(err_no_db(path, "notes"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from rich.markup import escape


def err_config(message: str, searched: list[str]) -> str:
    """Config file invalid or wiki unknown."""
    paths = "\n".join(f"    {p}" for p in searched)
    return (
        f"[red]Error:[/] {message}\n"
        "  Config files searched (lowest priority first):\n"
        f"{paths}"
    )


def err_no_embeddings_db(wiki: str) -> str:
    """Wiki has no embeddings_db configured."""
    return (
        f"[red]Error:[/] No embeddings_db configured for wiki '{wiki}'.\n"
        "  Add it to tiddlyvec.yaml:\n"
        f"    wikis:\n      {wiki}:\n        embeddings_db: /path/to/{wiki}.db"
    )


def err_no_db(db_path: str, wiki: str) -> str:
    """Embeddings database not built yet."""
    return (
        f"[red]Error:[/] No embeddings database at '{db_path}'.\n"
        f"  Run:  tiddlyvec reindex --wiki {wiki}"
    )


def err_dimension_mismatch(db_path: str, stored: int | None, requested: int) -> str:
    """Embeddings DB was built for a different vector width."""
    width = stored or "?"
    return (
        f"[red]Error:[/] '{db_path}' holds {width}-dimensional vectors, "
        f"but embedding.dimensions is {requested}.\n"
        f"  Rebuild the index for the new model:  delete {db_path}, then run tiddlyvec reindex\n"
        f"  Or restore the old width in tiddlyvec.yaml:  embedding.dimensions: {width}"
    )


def err_semantic_unavailable(reason: str) -> str:
    """sqlite-vec cannot be loaded in this interpreter."""
    return (
        f"[red]Error:[/] Semantic search is unavailable: {reason}.\n"
        "  Install the native extension:  pip install sqlite-vec\n"
        "  If sqlite3 lacks extension support, use a Python built with\n"
        "  --enable-loadable-sqlite-extensions (e.g. from python.org or pyenv)."
    )


def err_backend_unreachable(base_url: str) -> str:
    """Embedding backend failed its health check."""
    return (
        f"[red]Error:[/] Embedding backend not reachable at {base_url}.\n"
        f"  Check that Ollama is running:  curl {base_url}/\n"
        "  Or point to another backend:  export TIDDLYVEC_EMBEDDING_URL=http://host:11434"
    )


def err_dns(address: str, detail: str) -> str:
    """Service-discovery name could not be resolved."""
    return (
        f"[red]Error:[/] Cannot resolve '{address}': {detail}\n"
        "  Check the Consul service name, or configure a direct http:// URL instead."
    )


def err_source_list(wiki: str, detail: str) -> str:
    """Tiddler list could not be fetched."""
    return (
        f"[red]Error:[/] Cannot list tiddlers of wiki '{wiki}': {detail}\n"
        f"  Check the wiki is up:  tiddlyvec status --wiki {wiki}"
    )


def err_embedding_failed(detail: str) -> str:
    """Embedding a search query failed."""
    return (
        f"[red]Error:[/] Embedding the query failed: {detail}\n"
        "  Check that the embedding model is pulled:  ollama pull nomic-embed-text"
    )


def warn_prefilter_ignored(expression: str) -> str:
    """--filter accepted but not applied."""
    return (
        f"[yellow]⚠[/] --filter '{escape(expression)}' is not applied yet; "
        "results cover the whole index."
    )


def warn_entry_errors(count: int, wiki: str) -> str:
    """Some tiddlers failed during reindex."""
    return (
        f"[yellow]⚠[/] {count} tiddler(s) failed to index; they are retried after 24h "
        "or when edited.\n"
        f"  Force a retry now:  tiddlyvec reindex --wiki {wiki} --force"
    )
