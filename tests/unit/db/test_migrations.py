"""Tests for the forward-only migration runner."""

from __future__ import annotations

from tiddlyvec.db.connection import Database
from tiddlyvec.db.migrations import (
    MIGRATIONS,
    MISSING_TIMESTAMP,
    migrate_empty_timestamps,
    run_migrations,
)


def _fresh_conn(tmp_path):
    """Open a new connection without running migrations."""
    return Database(tmp_path / "test.db").connect()


def _table_exists(conn, name: str) -> bool:
    return conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (name,)
    ).fetchone() is not None


def _index_exists(conn, name: str) -> bool:
    return conn.execute(
        "SELECT name FROM sqlite_master WHERE type='index' AND name=?", (name,)
    ).fetchone() is not None


def _insert_sync(conn, title: str, last_modified: str) -> None:
    conn.execute(
        "INSERT INTO sync_status (tiddler_title, last_modified, last_indexed, total_chunks, status) "
        "VALUES (?, ?, '2024-01-01 00:00:00', 1, 'indexed')",
        (title, last_modified),
    )
    conn.commit()


# --- Bootstrap ---

def test_run_migrations_creates_schema_version(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    assert _table_exists(conn, "schema_version")
    conn.close()


def test_run_migrations_records_version(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    version = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
    assert version == MIGRATIONS[-1][0]
    conn.close()


def test_run_migrations_idempotent(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    run_migrations(conn)
    count = conn.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
    assert count == len(MIGRATIONS)
    conn.close()


# --- Relations ---

def test_run_migrations_creates_tables_and_indexes(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    assert _table_exists(conn, "embedding_metadata")
    assert _table_exists(conn, "sync_status")
    assert _index_exists(conn, "idx_sync_status_modified")
    assert _index_exists(conn, "idx_embedding_metadata_tiddler")
    conn.close()


# --- Empty timestamp fix-up ---

def test_empty_last_modified_rewritten(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    _insert_sync(conn, "Old", "")
    _insert_sync(conn, "New", "20240102030405000")

    assert migrate_empty_timestamps(conn) == 1

    rows = dict(conn.execute("SELECT tiddler_title, last_modified FROM sync_status").fetchall())
    assert rows == {"Old": MISSING_TIMESTAMP, "New": "20240102030405000"}
    conn.close()


def test_run_migrations_applies_fixup_on_reopen(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    _insert_sync(conn, "Old", "")
    run_migrations(conn)
    value = conn.execute(
        "SELECT last_modified FROM sync_status WHERE tiddler_title='Old'"
    ).fetchone()[0]
    assert value == MISSING_TIMESTAMP
    conn.close()


def test_empty_timestamp_fixup_is_noop_when_clean(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    _insert_sync(conn, "A", "20240102030405000")
    assert migrate_empty_timestamps(conn) == 0
    conn.close()


def test_missing_timestamp_is_seventeen_zeros():
    assert MISSING_TIMESTAMP == "0" * 17
