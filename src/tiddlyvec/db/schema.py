"""Database schema initialization."""

from __future__ import annotations

import sqlite3

from tiddlyvec.db.migrations import MIGRATIONS, run_migrations
from tiddlyvec.db.vectors import DEFAULT_DIMENSIONS, ensure_vec_table

CURRENT_VERSION = MIGRATIONS[-1][0]


def initialize(conn: sqlite3.Connection, dimensions: int = DEFAULT_DIMENSIONS) -> None:
    """Create every relation if missing and apply pending migrations (idempotent).

    Args:
        conn: Connection with sqlite-vec loaded.
        dimensions: Embedding width of the vec table. Must match the width of an
            existing table (ValueError otherwise).
    """
    run_migrations(conn)
    ensure_vec_table(conn, dimensions)
