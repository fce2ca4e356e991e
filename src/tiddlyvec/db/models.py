"""Domain models for the embeddings database."""

from __future__ import annotations

from dataclasses import dataclass, field

STATUS_INDEXED = "indexed"
STATUS_EMPTY = "empty"
STATUS_ERROR = "error"


@dataclass
class ChunkMetadata:
    """Tiddler fields copied onto every chunk so filtered reads need no join."""

    created: str = ""
    modified: str = ""
    tags: str = ""


@dataclass
class NewChunk:
    chunk_index: int
    text: str
    embedding: list[float]
    metadata: ChunkMetadata = field(default_factory=ChunkMetadata)


@dataclass
class SyncStatus:
    title: str
    last_modified: str
    last_indexed_at: str
    total_chunks: int
    status: str
    error_message: str | None = None


@dataclass
class SearchHit:
    """One nearest-neighbour match. Smaller distance = more similar."""

    title: str
    chunk_index: int
    text: str
    metadata: ChunkMetadata
    distance: float

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "chunk_id": self.chunk_index,
            "chunk_text": self.text,
            "created": self.metadata.created,
            "modified": self.metadata.modified,
            "tags": self.metadata.tags,
            "distance": self.distance,
        }


@dataclass
class StoreStats:
    total_vectors: int = 0
    total_synced_entries: int = 0
    counts_by_status: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "embeddings": self.total_vectors,
            "indexed": self.total_synced_entries,
            "by_status": dict(self.counts_by_status),
        }
