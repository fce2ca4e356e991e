"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from tiddlyvec.db.connection import Database
from tiddlyvec.db.repository import Repository
from tiddlyvec.db.schema import initialize

# Small vectors keep the tests readable; the schema accepts any width.
TEST_DIMENSIONS = 4


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / "embeddings.db")
    conn = db.connect()
    initialize(conn, dimensions=TEST_DIMENSIONS)
    yield conn
    conn.close()


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db, dimensions=TEST_DIMENSIONS)
