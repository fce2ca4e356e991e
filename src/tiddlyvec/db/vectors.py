"""sqlite-vec virtual table management."""

from __future__ import annotations

import re
import sqlite3

VEC_TABLE = "entry_embeddings"

# nomic-embed-text produces 768-dimensional vectors.
DEFAULT_DIMENSIONS = 768

_DIMENSIONS_RE = re.compile(r"float\[(\d+)\]")


def ensure_vec_table(conn: sqlite3.Connection, dimensions: int = DEFAULT_DIMENSIONS) -> str:
    """Create the entry_embeddings virtual table if it doesn't already exist.

    Args:
        conn: Active database connection (sqlite-vec must be loaded).
        dimensions: Embedding vector dimensions (e.g. 768 for nomic-embed-text).

    Returns:
        The table name.

    Raises:
        ValueError: If *dimensions* is not positive, or the existing table was
            created for a different dimension.
    """
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    existing = vec_table_dimensions(conn)
    if existing is None:
        conn.execute(
            f"CREATE VIRTUAL TABLE IF NOT EXISTS {VEC_TABLE} USING vec0(embedding float[{dimensions}])"
        )
        conn.commit()
    elif existing != dimensions:
        raise ValueError(
            f"{VEC_TABLE} stores {existing}-dimensional vectors, "
            f"but {dimensions} were requested. Rebuild the database for the new model."
        )

    return VEC_TABLE


def vec_table_dimensions(conn: sqlite3.Connection) -> int | None:
    """Return the declared vector width of entry_embeddings, or None if absent."""
    row = conn.execute(
        "SELECT sql FROM sqlite_master WHERE type='table' AND name=?", (VEC_TABLE,)
    ).fetchone()
    if row is None:
        return None
    match = _DIMENSIONS_RE.search(row[0] or "")
    return int(match.group(1)) if match else None
