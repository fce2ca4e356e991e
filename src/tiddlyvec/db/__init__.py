"""tiddlyvec database layer."""

from tiddlyvec.db.connection import Database
from tiddlyvec.db.migrations import MIGRATIONS, MISSING_TIMESTAMP, run_migrations
from tiddlyvec.db.repository import Repository
from tiddlyvec.db.schema import initialize
from tiddlyvec.db.vectors import DEFAULT_DIMENSIONS, VEC_TABLE, ensure_vec_table

__all__ = [
    "Database",
    "Repository",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "MISSING_TIMESTAMP",
    "ensure_vec_table",
    "DEFAULT_DIMENSIONS",
    "VEC_TABLE",
]
