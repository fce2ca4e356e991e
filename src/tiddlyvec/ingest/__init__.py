"""tiddlyvec indexing pipeline: chunker, embedding client, reconciler."""

from tiddlyvec.ingest.chunker import ParagraphChunker, chunk_text, count_tokens
from tiddlyvec.ingest.embedding_client import (
    DOCUMENT_PREFIX,
    QUERY_PREFIX,
    EmbeddingClient,
    EmbeddingConfig,
)
from tiddlyvec.ingest.reconciler import Reconciler, ReindexSummary

__all__ = [
    "ParagraphChunker",
    "chunk_text",
    "count_tokens",
    "DOCUMENT_PREFIX",
    "QUERY_PREFIX",
    "EmbeddingClient",
    "EmbeddingConfig",
    "Reconciler",
    "ReindexSummary",
]
