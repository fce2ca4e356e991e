"""Builds the long-lived objects a command needs, once, from configuration.

Commands never construct clients ad hoc: they call these helpers at startup and
hand the results to the reconciler or the search function. Failures are turned
into rich error messages and ``typer.Exit(1)``.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import typer
from rich.console import Console

from tiddlyvec.capabilities import semantic_support
from tiddlyvec.cli.errors import (
    err_config,
    err_dimension_mismatch,
    err_dns,
    err_no_db,
    err_no_embeddings_db,
    err_semantic_unavailable,
)
from tiddlyvec.config import (
    ConfigError,
    TiddlyVecConfig,
    WikiCfg,
    config_search_paths,
    get_wiki,
    load_config,
)
from tiddlyvec.db.connection import Database
from tiddlyvec.db.repository import Repository
from tiddlyvec.db.vectors import vec_table_dimensions
from tiddlyvec.discovery import resolve_base_url
from tiddlyvec.errors import DnsResolutionError
from tiddlyvec.ingest.chunker import ParagraphChunker, count_tokens
from tiddlyvec.ingest.embedding_client import EmbeddingClient, EmbeddingConfig
from tiddlyvec.source.tiddlywiki import TiddlyWikiSource

err_console = Console(stderr=True)


def load_wiki(name: str) -> tuple[TiddlyVecConfig, WikiCfg]:
    """Load config and return it with the settings for wiki *name*."""
    try:
        cfg = load_config()
        return cfg, get_wiki(cfg, name)
    except ConfigError as exc:
        err_console.print(err_config(str(exc), [str(p) for p in config_search_paths()]))
        raise typer.Exit(1) from exc


def require_db_path(wiki: WikiCfg, name: str, must_exist: bool = False) -> Path:
    db_path = wiki.db_path
    if db_path is None:
        err_console.print(err_no_embeddings_db(name))
        raise typer.Exit(1)
    if must_exist and not db_path.exists():
        err_console.print(err_no_db(str(db_path), name))
        raise typer.Exit(1)
    return db_path


def require_semantic_support() -> None:
    capability = semantic_support()
    if not capability.available:
        err_console.print(err_semantic_unavailable(capability.reason))
        raise typer.Exit(1)


@contextmanager
def open_repository(db_path: Path, dimensions: int) -> Iterator[Repository]:
    """Open the embeddings DB, initialise the schema, close on exit."""
    conn = Database(db_path).connect()
    try:
        repo = Repository(conn, dimensions=dimensions)
        try:
            repo.init_schema()
        except ValueError as exc:
            stored = vec_table_dimensions(conn)
            err_console.print(err_dimension_mismatch(str(db_path), stored, dimensions))
            raise typer.Exit(1) from exc
        yield repo
    finally:
        conn.close()


def build_embedder(cfg: TiddlyVecConfig) -> EmbeddingClient:
    e = cfg.embedding
    try:
        return EmbeddingClient.from_address(
            e.url,
            EmbeddingConfig(
                model=e.model,
                embed_timeout=e.embed_timeout,
                health_timeout=e.health_timeout,
            ),
            dns_timeout=e.dns_timeout,
        )
    except DnsResolutionError as exc:
        err_console.print(err_dns(e.url, str(exc)))
        raise typer.Exit(1) from exc


def build_source(cfg: TiddlyVecConfig, wiki: WikiCfg) -> TiddlyWikiSource:
    try:
        base_url = resolve_base_url(wiki.url, timeout=cfg.embedding.dns_timeout)
    except DnsResolutionError as exc:
        err_console.print(err_dns(wiki.url, str(exc)))
        raise typer.Exit(1) from exc
    return TiddlyWikiSource(
        base_url,
        auth_header=wiki.auth_header,
        auth_user=wiki.auth_user,
        timeout=wiki.read_timeout,
    )


def build_chunker(cfg: TiddlyVecConfig) -> ParagraphChunker:
    model = cfg.embedding.tokenizer_model
    return ParagraphChunker(
        max_tokens=cfg.embedding.max_tokens,
        token_counter=lambda text: count_tokens(text, model),
    )
