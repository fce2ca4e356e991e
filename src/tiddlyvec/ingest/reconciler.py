"""Reconciliation engine: bring the embeddings index in line with the wiki.

One reindex pass:
  1. Health-check the embedding backend, list every non-system tiddler
     (metadata only) and drop unimported filesystem leftovers.
  2. Select tiddlers to (re)embed: never indexed, modified since last index,
     or failed more than RETRY_AFTER ago. ``force`` selects everything.
  3. Purge index data for titles that no longer exist in the wiki.
  4. Index the selection in sequential batches of ``batch_size``; members of a
     batch run concurrently and each member's outcome is recorded on its own.

Every decision is recomputed from sync_status, so an interrupted run is safe to
repeat.
"""

from __future__ import annotations

import concurrent.futures
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from tiddlyvec.db.migrations import MISSING_TIMESTAMP
from tiddlyvec.db.models import (
    STATUS_EMPTY,
    STATUS_ERROR,
    STATUS_INDEXED,
    ChunkMetadata,
    NewChunk,
    StoreStats,
)
from tiddlyvec.db.repository import TIMESTAMP_FORMAT, Repository
from tiddlyvec.errors import EmptyContentError, UnreachableBackendError
from tiddlyvec.ingest.chunker import ParagraphChunker
from tiddlyvec.ingest.embedding_client import DOCUMENT_PREFIX, EmbeddingClient
from tiddlyvec.source.base import DocumentSource, Entry
from tiddlyvec.source.tiddlywiki import ALL_TIDDLERS_FILTER

ProgressCb = Callable[[str], None]

BATCH_SIZE = 5
RETRY_AFTER = timedelta(hours=24)


@dataclass
class ReindexSummary:
    """Outcome of a reindex (or status-only) call."""

    action: str
    stats: StoreStats = field(default_factory=StoreStats)
    newly_indexed: int = 0
    empty: int = 0
    errors: int = 0
    deleted: int = 0

    def to_dict(self) -> dict:
        if self.action == "status":
            return {"action": self.action, **self.stats.to_dict()}
        return {
            "action": self.action,
            "newly_indexed": self.newly_indexed,
            "empty": self.empty,
            "errors": self.errors,
            "deleted": self.deleted,
            "total_indexed": self.stats.total_synced_entries,
            "total_embeddings": self.stats.total_vectors,
            "by_status": dict(self.stats.counts_by_status),
        }


def is_valid_title(title: str) -> bool:
    """False for raw filesystem paths left over from unimported .tid files."""
    return not title.startswith(("/", "\\")) and ".tid" not in title


class Reconciler:
    """Indexing orchestrator. All collaborators are injected.

    Args:
        repo: Open repository with schema initialised.
        embedder: Client for the embedding backend.
        source: Where tiddlers are read from.
        chunker: Splits tiddler text; defaults to a 6000-token ParagraphChunker.
        batch_size: Tiddlers processed concurrently per batch.
        clock: Returns the current UTC time; used for retry decisions and
            ``last_indexed`` stamps.
        on_progress: Receives human-readable progress lines.
    """

    def __init__(
        self,
        repo: Repository,
        embedder: EmbeddingClient,
        source: DocumentSource,
        chunker: ParagraphChunker | None = None,
        batch_size: int = BATCH_SIZE,
        clock: Callable[[], datetime] | None = None,
        on_progress: ProgressCb | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._repo = repo
        self._embedder = embedder
        self._source = source
        self._chunker = chunker or ParagraphChunker()
        self._batch_size = batch_size
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._progress = on_progress or (lambda _msg: None)

    def reindex(self, force: bool = False, status_only: bool = False) -> ReindexSummary:
        """Run one reconciliation pass and return its summary.

        Raises:
            UnreachableBackendError: The embedding backend failed its health check.
            SourceListError: The tiddler list could not be fetched.
        """
        if status_only:
            return ReindexSummary(action="status", stats=self._repo.stats())

        if not self._embedder.health():
            raise UnreachableBackendError(self._embedder.base_url)

        self._progress("Fetching tiddler list...")
        valid = [t for t in self._source.list_entries(ALL_TIDDLERS_FILTER) if is_valid_title(t.title)]
        self._progress(f"Found {len(valid)} tiddlers")

        if force:
            to_index = list(valid)
            self._progress(f"Force mode: re-indexing all {len(to_index)} tiddlers")
        else:
            now = self._clock()
            to_index = [t for t in valid if self._needs_indexing(t, now)]
            self._progress(f"{len(to_index)} tiddlers need indexing")

        summary = ReindexSummary(action="reindex")
        summary.deleted = self._purge_deleted({t.title for t in valid})
        if summary.deleted:
            self._progress(f"Removed {summary.deleted} deleted tiddlers from index")

        self._index_all(to_index, summary)

        summary.stats = self._repo.stats()
        return summary

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def _needs_indexing(self, entry: Entry, now: datetime) -> bool:
        sync = self._repo.get_sync_status(entry.title)
        if sync is None:
            return True
        if sync.last_modified != (entry.modified or MISSING_TIMESTAMP):
            return True
        if sync.status == STATUS_ERROR:
            last = _parse_timestamp(sync.last_indexed_at)
            return last is None or now - last > RETRY_AFTER
        return False

    def _purge_deleted(self, live_titles: set[str]) -> int:
        deleted = 0
        for title in self._repo.list_synced_titles():
            if title not in live_titles:
                self._repo.delete_entry(title)
                deleted += 1
        return deleted

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    def _index_all(self, entries: list[Entry], summary: ReindexSummary) -> None:
        if not entries:
            return
        with concurrent.futures.ThreadPoolExecutor(max_workers=self._batch_size) as executor:
            for start in range(0, len(entries), self._batch_size):
                batch = entries[start : start + self._batch_size]
                futures = [executor.submit(self._process, entry) for entry in batch]
                # Batch N settles completely before batch N+1 is submitted.
                for future in futures:
                    try:
                        outcome = future.result()
                    except Exception:
                        outcome = STATUS_ERROR
                    if outcome == STATUS_INDEXED:
                        summary.newly_indexed += 1
                    elif outcome == STATUS_EMPTY:
                        summary.empty += 1
                    else:
                        summary.errors += 1
                done = min(start + self._batch_size, len(entries))
                self._progress(f"Progress: {done}/{len(entries)}")

    def _process(self, entry: Entry) -> str:
        """Index one tiddler and record the outcome. Never raises for entry-level failures."""
        modified = entry.modified or MISSING_TIMESTAMP
        try:
            try:
                total = self._index_entry(entry)
            except EmptyContentError:
                self._repo.delete_chunks(entry.title)
                self._repo.upsert_sync_status(
                    entry.title, modified, 0, STATUS_EMPTY, indexed_at=self._clock()
                )
                return STATUS_EMPTY
        except Exception as exc:
            self._repo.upsert_sync_status(
                entry.title, modified, 0, STATUS_ERROR, _error_message(exc), indexed_at=self._clock()
            )
            self._progress(f"Error indexing '{entry.title}': {_error_message(exc)}")
            return STATUS_ERROR

        self._progress(f"Indexed '{entry.title}' ({total} chunks)")
        return STATUS_INDEXED

    def _index_entry(self, entry: Entry) -> int:
        full = self._source.get_entry(entry.title)
        if full is None or not full.text or not full.text.strip():
            raise EmptyContentError(entry.title)

        # Old chunks go only once the new text is in hand.
        self._repo.delete_chunks(entry.title)

        chunks = self._chunker.chunk(full.text)
        vectors = self._embedder.embed([f"{DOCUMENT_PREFIX}{c}" for c in chunks])

        metadata = ChunkMetadata(created=full.created, modified=full.modified, tags=full.tags)
        self._repo.insert_chunks(
            entry.title,
            [
                NewChunk(chunk_index=i, text=text, embedding=vector, metadata=metadata)
                for i, (text, vector) in enumerate(zip(chunks, vectors, strict=True))
            ],
        )
        self._repo.upsert_sync_status(
            entry.title,
            full.modified or MISSING_TIMESTAMP,
            len(chunks),
            STATUS_INDEXED,
            indexed_at=self._clock(),
        )
        return len(chunks)


def _parse_timestamp(value: str) -> datetime | None:
    try:
        return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
    except (TypeError, ValueError):
        return None


def _error_message(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__
