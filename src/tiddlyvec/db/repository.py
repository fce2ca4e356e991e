"""Repository pattern for all embeddings database operations.

Single interface for: chunk metadata, vec embeddings, nearest-neighbour search,
and per-tiddler sync status. Chunk rowids double as vec table rowids.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from collections.abc import Iterable
from datetime import datetime, timezone

from tiddlyvec.db.models import (
    STATUS_ERROR,
    ChunkMetadata,
    NewChunk,
    SearchHit,
    StoreStats,
    SyncStatus,
)
from tiddlyvec.db.schema import initialize
from tiddlyvec.db.vectors import DEFAULT_DIMENSIONS, VEC_TABLE

# sqlite datetime('now') format, always UTC.
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

# sqlite-vec refuses larger k in a vec0 KNN query.
MAX_K = 4096


class Repository:
    """Data access layer over one open sqlite3.Connection.

    Every public method takes the repository lock, so a single Repository can be
    shared by the reconciler's worker threads: statements from different
    threads never interleave inside a transaction. The connection is owned by
    the caller and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection, dimensions: int = DEFAULT_DIMENSIONS) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded (see
                tiddlyvec.db.connection.Database).
            dimensions: Embedding width used when init_schema() creates the
                vec table.
        """
        self._conn = conn
        self._dimensions = dimensions
        self._lock = threading.RLock()

    def init_schema(self) -> None:
        """Create tables and indexes if missing and run pending migrations."""
        with self._lock:
            initialize(self._conn, self._dimensions)

    # ------------------------------------------------------------------
    # Chunks + vectors
    # ------------------------------------------------------------------

    def insert_chunk(
        self,
        title: str,
        chunk_index: int,
        embedding: list[float],
        text: str,
        metadata: ChunkMetadata | None = None,
    ) -> int:
        """Insert one chunk row and its vector. Returns the shared rowid."""
        with self._lock, self._conn:
            return self._insert_row(title, chunk_index, embedding, text, metadata or ChunkMetadata())

    def insert_chunks(self, title: str, chunks: Iterable[NewChunk]) -> list[int]:
        """Insert a tiddler's whole chunk set in one transaction.

        Either every chunk and vector is written or none is.
        """
        with self._lock, self._conn:
            return [
                self._insert_row(title, c.chunk_index, c.embedding, c.text, c.metadata)
                for c in chunks
            ]

    def _insert_row(
        self,
        title: str,
        chunk_index: int,
        embedding: list[float],
        text: str,
        metadata: ChunkMetadata,
    ) -> int:
        cur = self._conn.execute(
            """
            INSERT INTO embedding_metadata (tiddler_title, chunk_id, chunk_text, created, modified, tags)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (title, chunk_index, text, metadata.created, metadata.modified, metadata.tags),
        )
        rowid = cur.lastrowid
        self._conn.execute(
            f"INSERT INTO {VEC_TABLE}(rowid, embedding) VALUES (?, ?)",
            (rowid, json.dumps(embedding)),
        )
        return rowid

    def count_chunks(self, title: str) -> int:
        """Return the number of stored chunks for *title*."""
        with self._lock:
            return self._conn.execute(
                "SELECT COUNT(*) FROM embedding_metadata WHERE tiddler_title = ?", (title,)
            ).fetchone()[0]

    def delete_chunks(self, title: str) -> int:
        """Delete every chunk and vector for *title*, keeping its sync row.

        Returns the number of chunks removed.
        """
        with self._lock, self._conn:
            return self._delete_chunk_rows(title)

    def delete_entry(self, title: str) -> int:
        """Delete chunks, vectors and the sync row for *title* as one unit.

        Returns the number of chunks removed.
        """
        with self._lock, self._conn:
            removed = self._delete_chunk_rows(title)
            self._conn.execute("DELETE FROM sync_status WHERE tiddler_title = ?", (title,))
            return removed

    def _delete_chunk_rows(self, title: str) -> int:
        rowids = [
            r[0]
            for r in self._conn.execute(
                "SELECT id FROM embedding_metadata WHERE tiddler_title = ?", (title,)
            ).fetchall()
        ]
        if not rowids:
            return 0
        placeholders = ",".join("?" * len(rowids))
        self._conn.execute(
            f"DELETE FROM {VEC_TABLE} WHERE rowid IN ({placeholders})", rowids  # noqa: S608
        )
        self._conn.execute("DELETE FROM embedding_metadata WHERE tiddler_title = ?", (title,))
        return len(rowids)

    # ------------------------------------------------------------------
    # Nearest-neighbour search
    # ------------------------------------------------------------------

    def search_nearest(self, embedding: list[float], k: int = 10) -> list[SearchHit]:
        """Return the *k* nearest chunks, ascending by distance.

        Distance is sqlite-vec's native metric for the table (L2).

        Raises:
            ValueError: If *k* is outside 1..MAX_K.
        """
        if not 1 <= k <= MAX_K:
            raise ValueError(f"k must be between 1 and {MAX_K}, got {k}")
        with self._lock:
            rows = self._conn.execute(
                f"""
                WITH knn AS (
                    SELECT rowid, distance FROM {VEC_TABLE}
                    WHERE embedding MATCH ? AND k = ?
                )
                SELECT m.tiddler_title, m.chunk_id, m.chunk_text,
                       m.created, m.modified, m.tags, knn.distance
                FROM knn JOIN embedding_metadata m ON m.id = knn.rowid
                ORDER BY knn.distance
                """,
                (json.dumps(embedding), k),
            ).fetchall()
        return [_row_to_hit(r) for r in rows]

    # ------------------------------------------------------------------
    # Sync status
    # ------------------------------------------------------------------

    def upsert_sync_status(
        self,
        title: str,
        last_modified: str,
        total_chunks: int,
        status: str,
        error_message: str | None = None,
        indexed_at: datetime | None = None,
    ) -> None:
        """Insert or replace the sync row for *title*.

        ``error_message`` is only kept for ``status='error'``. ``indexed_at``
        defaults to the current UTC time.
        """
        stamp = (indexed_at or datetime.now(timezone.utc)).strftime(TIMESTAMP_FORMAT)
        message = error_message if status == STATUS_ERROR else None
        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT INTO sync_status
                    (tiddler_title, last_modified, last_indexed, total_chunks, status, error_message)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(tiddler_title) DO UPDATE SET
                    last_modified = excluded.last_modified,
                    last_indexed  = excluded.last_indexed,
                    total_chunks  = excluded.total_chunks,
                    status        = excluded.status,
                    error_message = excluded.error_message
                """,
                (title, last_modified, stamp, total_chunks, status, message),
            )

    def get_sync_status(self, title: str) -> SyncStatus | None:
        """Return the sync row for *title*, or None if it was never indexed."""
        with self._lock:
            row = self._conn.execute(
                """
                SELECT tiddler_title, last_modified, last_indexed, total_chunks, status, error_message
                FROM sync_status WHERE tiddler_title = ?
                """,
                (title,),
            ).fetchone()
        return _row_to_sync(row) if row else None

    def list_synced_titles(self) -> list[str]:
        """Return every title that has a sync row."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT tiddler_title FROM sync_status ORDER BY tiddler_title"
            ).fetchall()
        return [r[0] for r in rows]

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def stats(self) -> StoreStats:
        """Return vector count, synced tiddler count and per-status counts."""
        with self._lock:
            vectors = self._conn.execute(f"SELECT COUNT(*) FROM {VEC_TABLE}").fetchone()[0]
            synced = self._conn.execute("SELECT COUNT(*) FROM sync_status").fetchone()[0]
            by_status = {
                r["status"]: r["c"]
                for r in self._conn.execute(
                    "SELECT status, COUNT(*) AS c FROM sync_status GROUP BY status ORDER BY status"
                ).fetchall()
            }
        return StoreStats(
            total_vectors=vectors,
            total_synced_entries=synced,
            counts_by_status=by_status,
        )


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------

def _row_to_hit(row: sqlite3.Row) -> SearchHit:
    return SearchHit(
        title=row["tiddler_title"],
        chunk_index=row["chunk_id"],
        text=row["chunk_text"],
        metadata=ChunkMetadata(
            created=row["created"] or "",
            modified=row["modified"] or "",
            tags=row["tags"] or "",
        ),
        distance=row["distance"],
    )


def _row_to_sync(row: sqlite3.Row) -> SyncStatus:
    return SyncStatus(
        title=row["tiddler_title"],
        last_modified=row["last_modified"],
        last_indexed_at=row["last_indexed"],
        total_chunks=row["total_chunks"],
        status=row["status"],
        error_message=row["error_message"],
    )
