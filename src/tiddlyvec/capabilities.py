"""Process-wide probe for the optional native pieces semantic search needs.

Some Python builds (notably the macOS system interpreter) ship a sqlite3
module without extension loading, and sqlite-vec wheels are not available for
every platform. The probe runs once per process; commands check it before
opening a database instead of failing halfway through.
"""

from __future__ import annotations

import functools
import importlib
import sqlite3
from dataclasses import dataclass


@dataclass(frozen=True)
class Capability:
    available: bool
    reason: str = ""


@functools.lru_cache(maxsize=None)
def semantic_support() -> Capability:
    """Return whether sqlite-vec can be loaded into this interpreter's sqlite3."""
    if not hasattr(sqlite3.Connection, "enable_load_extension"):
        return Capability(
            False,
            "this Python's sqlite3 module was built without extension loading",
        )

    try:
        sqlite_vec = importlib.import_module("sqlite_vec")
    except ImportError as exc:
        return Capability(False, f"sqlite-vec is not installed ({exc})")

    conn = sqlite3.connect(":memory:")
    try:
        conn.enable_load_extension(True)
        sqlite_vec.load(conn)
        conn.enable_load_extension(False)
        version = conn.execute("SELECT vec_version()").fetchone()[0]
    except (sqlite3.Error, AttributeError, OSError) as exc:
        return Capability(False, f"sqlite-vec failed to load: {exc}")
    finally:
        conn.close()

    return Capability(True, f"sqlite-vec {version}")


def reset() -> None:
    """Forget the cached probe result (tests, or after installing packages)."""
    semantic_support.cache_clear()
