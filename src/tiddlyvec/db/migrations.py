"""Forward-only migration runner for the embeddings database schema.

The vec table (entry_embeddings) is NOT migration-managed: its dimension depends
on the embedding model, so it is created by ensure_vec_table().
"""

from __future__ import annotations

import sqlite3

# Stored when a tiddler has no modified field. Same width as a TiddlyWiki
# timestamp (YYYYMMDDhhmmssSSS) so lexical comparisons stay well-defined.
MISSING_TIMESTAMP = "00000000000000000"

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS embedding_metadata (
    id              INTEGER PRIMARY KEY,
    tiddler_title   TEXT NOT NULL,
    chunk_id        INTEGER NOT NULL,
    chunk_text      TEXT NOT NULL,
    created         TEXT,
    modified        TEXT,
    tags            TEXT
);

CREATE TABLE IF NOT EXISTS sync_status (
    tiddler_title   TEXT PRIMARY KEY,
    last_modified   TEXT NOT NULL,
    last_indexed    TEXT NOT NULL,
    total_chunks    INTEGER NOT NULL DEFAULT 1,
    status          TEXT NOT NULL DEFAULT 'indexed',
    error_message   TEXT
);

CREATE INDEX IF NOT EXISTS idx_sync_status_modified
    ON sync_status(last_modified);
CREATE INDEX IF NOT EXISTS idx_embedding_metadata_tiddler
    ON embedding_metadata(tiddler_title);
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
]


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version. Always finishes with
    the empty-timestamp fix-up, which is a no-op on an already clean database.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()

    migrate_empty_timestamps(conn)


def migrate_empty_timestamps(conn: sqlite3.Connection) -> int:
    """Rewrite empty last_modified values to MISSING_TIMESTAMP.

    Databases written by early releases stored '' for tiddlers without a
    modified field. Returns the number of rows rewritten.
    """
    cur = conn.execute(
        "UPDATE sync_status SET last_modified = ? WHERE last_modified = ''",
        (MISSING_TIMESTAMP,),
    )
    conn.commit()
    return cur.rowcount
