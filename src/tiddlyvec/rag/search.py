"""Semantic search over the embeddings index.

The query is embedded with the query prefix, the index returns the nearest
chunks, and results are collapsed to one hit per tiddler (its closest chunk),
ordered by ascending distance.

``pre_filter`` is accepted for CLI compatibility but not applied: search always
covers the whole index. Restricting to a filter's titles needs per-search title
filtering inside the KNN query.
"""

from __future__ import annotations

from tiddlyvec.db.models import SearchHit
from tiddlyvec.db.repository import MAX_K, Repository
from tiddlyvec.errors import UnreachableBackendError
from tiddlyvec.ingest.embedding_client import QUERY_PREFIX, EmbeddingClient

DEFAULT_LIMIT = 10
MAX_LIMIT = MAX_K


def semantic_search(
    query: str,
    repo: Repository,
    embedder: EmbeddingClient,
    limit: int = DEFAULT_LIMIT,
    pre_filter: str | None = None,
) -> list[SearchHit]:
    """Return up to *limit* tiddlers most similar to *query*, best first.

    Raises:
        UnreachableBackendError: If the embedding backend fails its health check.
        EmbeddingRequestError: If embedding the query fails.
        ValueError: If *limit* is outside 1..MAX_LIMIT.
    """
    if not 1 <= limit <= MAX_LIMIT:
        raise ValueError(f"limit must be between 1 and {MAX_LIMIT}, got {limit}")
    if not embedder.health():
        raise UnreachableBackendError(embedder.base_url)

    [query_vector] = embedder.embed([f"{QUERY_PREFIX}{query}"])
    return dedupe_by_title(repo.search_nearest(query_vector, k=limit))


def dedupe_by_title(hits: list[SearchHit]) -> list[SearchHit]:
    """Keep the closest chunk per tiddler title, sorted by ascending distance."""
    best: dict[str, SearchHit] = {}
    for hit in hits:
        current = best.get(hit.title)
        if current is None or hit.distance < current.distance:
            best[hit.title] = hit
    return sorted(best.values(), key=lambda h: h.distance)
