"""Tests for the reconciliation engine."""

from __future__ import annotations

import sqlite3
import threading
from datetime import datetime, timedelta, timezone

import pytest

from tiddlyvec.db.migrations import MISSING_TIMESTAMP
from tiddlyvec.errors import (
    EmbeddingRequestError,
    SourceListError,
    SourceRequestError,
    UnreachableBackendError,
)
from tiddlyvec.ingest.chunker import ParagraphChunker
from tiddlyvec.ingest.embedding_client import DOCUMENT_PREFIX
from tiddlyvec.ingest.reconciler import (
    RETRY_AFTER,
    Reconciler,
    ReindexSummary,
    is_valid_title,
)
from tiddlyvec.source.base import DocumentSource, Entry

T0 = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


# ------------------------------------------------------------------
# Fakes
# ------------------------------------------------------------------


class FakeSource(DocumentSource):
    def __init__(self, entries: list[Entry] | None = None) -> None:
        self.entries: dict[str, Entry] = {e.title: e for e in entries or []}
        self.fetched: list[str] = []
        self.list_error: Exception | None = None
        self.fetch_errors: dict[str, Exception] = {}
        self._lock = threading.Lock()

    def put(self, title: str, text: str | None, modified: str = "20240101000000000", **fields) -> None:
        self.entries[title] = Entry(title=title, text=text, modified=modified, **fields)

    def list_entries(self, filter_expression: str) -> list[Entry]:
        if self.list_error:
            raise self.list_error
        return [
            Entry(title=e.title, modified=e.modified, created=e.created, tags=e.tags)
            for e in sorted(self.entries.values(), key=lambda e: e.title)
        ]

    def get_entry(self, title: str) -> Entry | None:
        with self._lock:
            self.fetched.append(title)
        if title in self.fetch_errors:
            raise self.fetch_errors[title]
        return self.entries.get(title)


class FakeEmbedder:
    base_url = "http://fake:11434"

    def __init__(self) -> None:
        self.healthy = True
        self.fail_on: set[str] = set()
        self.calls: list[list[str]] = []
        self._lock = threading.Lock()

    def health(self) -> bool:
        return self.healthy

    def embed(self, texts: list[str]) -> list[list[float]]:
        with self._lock:
            self.calls.append(list(texts))
        for t in texts:
            if any(marker in t for marker in self.fail_on):
                raise EmbeddingRequestError("Embedding request failed: 500 boom", status_code=500)
        return [[float(len(t)), 1.0, 0.0, 0.0] for t in texts]


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def clock():
    return Clock(T0)


@pytest.fixture
def make_reconciler(repo, source, embedder, clock):
    def _make(**kwargs) -> Reconciler:
        kwargs.setdefault("chunker", ParagraphChunker(max_tokens=50, token_counter=lambda s: len(s.split())))
        kwargs.setdefault("clock", clock)
        return Reconciler(repo, embedder, source, **kwargs)

    return _make


# ------------------------------------------------------------------
# is_valid_title
# ------------------------------------------------------------------


@pytest.mark.parametrize(
    "title,valid",
    [
        ("Getting Started", True),
        ("notes/2024", True),
        ("/home/me/wiki/tiddlers/Foo.tid", False),
        ("\\\\server\\share\\Foo", False),
        ("Foo.tid", False),
    ],
)
def test_is_valid_title(title, valid):
    assert is_valid_title(title) is valid


# ------------------------------------------------------------------
# First run, idempotence
# ------------------------------------------------------------------


def test_first_run_indexes_text_and_marks_empty(make_reconciler, source, repo):
    source.put("A", "alpha text")
    source.put("B", "")
    source.put("C", "gamma text")

    summary = make_reconciler().reindex()

    assert summary.action == "reindex"
    assert summary.newly_indexed == 2
    assert summary.empty == 1
    assert summary.errors == 0
    assert summary.deleted == 0
    assert repo.get_sync_status("A").status == "indexed"
    assert repo.get_sync_status("B").status == "empty"
    assert repo.get_sync_status("B").total_chunks == 0
    assert repo.count_chunks("B") == 0
    assert summary.stats.total_vectors == 2
    assert summary.stats.counts_by_status == {"empty": 1, "indexed": 2}


def test_three_entry_scenario(make_reconciler, source, repo):
    source.put("A", "a " * 5)
    source.put("B", "")
    source.put("C", "c " * 6 + "\n\n" + "d " * 6)
    chunker = ParagraphChunker(max_tokens=6, token_counter=lambda s: len(s.split()))

    summary = make_reconciler(chunker=chunker).reindex()

    assert (summary.newly_indexed, summary.empty, summary.errors, summary.deleted) == (2, 1, 0, 0)
    assert summary.stats.counts_by_status["indexed"] == 2
    assert repo.count_chunks("A") == 1
    assert repo.count_chunks("C") == 2

    again = make_reconciler(chunker=chunker).reindex()
    assert (again.newly_indexed, again.empty, again.errors, again.deleted) == (0, 0, 0, 0)


def test_second_run_is_noop(make_reconciler, source, embedder, repo):
    source.put("A", "alpha text")
    source.put("B", "   ")
    make_reconciler().reindex()
    embedder.calls.clear()
    source.fetched.clear()

    summary = make_reconciler().reindex()

    assert (summary.newly_indexed, summary.empty, summary.errors, summary.deleted) == (0, 0, 0, 0)
    assert embedder.calls == []
    assert source.fetched == []
    assert summary.stats.total_vectors == 1


def test_chunks_embedded_with_document_prefix(make_reconciler, source, embedder):
    source.put("A", "alpha text")
    make_reconciler().reindex()
    assert embedder.calls == [[f"{DOCUMENT_PREFIX}alpha text"]]


def test_chunk_metadata_copied_from_tiddler(make_reconciler, source, repo):
    source.put("A", "alpha", modified="20240102000000000", created="20230101000000000", tags="x [[y z]]")
    make_reconciler().reindex()
    [hit] = repo.search_nearest([float(len(DOCUMENT_PREFIX) + 5), 1.0, 0.0, 0.0], k=1)
    assert hit.title == "A"
    assert hit.metadata.created == "20230101000000000"
    assert hit.metadata.modified == "20240102000000000"
    assert hit.metadata.tags == "x [[y z]]"


def test_multi_chunk_tiddler(make_reconciler, source, repo):
    source.put("Long", "one two three.\n\nfour five six.\n\nseven eight nine.")
    make_reconciler(chunker=ParagraphChunker(max_tokens=3, token_counter=lambda s: len(s.split()))).reindex()
    assert repo.count_chunks("Long") == 3
    assert repo.get_sync_status("Long").total_chunks == 3


def test_invalid_titles_skipped(make_reconciler, source, repo):
    source.put("/srv/wiki/tiddlers/Stray.tid", "leftover")
    source.put("Real", "content")
    summary = make_reconciler().reindex()
    assert summary.newly_indexed == 1
    assert repo.list_synced_titles() == ["Real"]


# ------------------------------------------------------------------
# Change detection
# ------------------------------------------------------------------


def test_edited_tiddler_reindexed_and_old_chunks_replaced(make_reconciler, source, repo):
    source.put("A", "one.\n\ntwo.", modified="20240101000000000")
    chunker = ParagraphChunker(max_tokens=1, token_counter=lambda s: len(s.split()))
    make_reconciler(chunker=chunker).reindex()
    assert repo.count_chunks("A") == 2

    source.put("A", "just one.", modified="20240201000000000")
    summary = make_reconciler(chunker=chunker).reindex()

    assert summary.newly_indexed == 1
    assert repo.count_chunks("A") == 1
    assert repo.get_sync_status("A").last_modified == "20240201000000000"
    assert summary.stats.total_vectors == 1


def test_deleted_tiddler_purged(make_reconciler, source, repo):
    source.put("A", "alpha")
    source.put("B", "beta")
    make_reconciler().reindex()

    del source.entries["B"]
    summary = make_reconciler().reindex()

    assert summary.deleted == 1
    assert repo.get_sync_status("B") is None
    assert repo.count_chunks("B") == 0
    assert repo.list_synced_titles() == ["A"]
    assert summary.stats.total_vectors == 1


def test_missing_modified_stored_as_sentinel(make_reconciler, source, embedder, repo):
    source.put("NoDate", "text", modified="")
    make_reconciler().reindex()
    assert repo.get_sync_status("NoDate").last_modified == MISSING_TIMESTAMP

    embedder.calls.clear()
    summary = make_reconciler().reindex()
    assert summary.newly_indexed == 0
    assert embedder.calls == []


def test_empty_tiddler_that_gains_text_is_indexed(make_reconciler, source, repo):
    source.put("A", "", modified="20240101000000000")
    make_reconciler().reindex()
    source.put("A", "now with words", modified="20240102000000000")
    summary = make_reconciler().reindex()
    assert summary.newly_indexed == 1
    assert repo.get_sync_status("A").status == "indexed"


def test_tiddler_emptied_loses_chunks(make_reconciler, source, repo):
    source.put("A", "words", modified="20240101000000000")
    make_reconciler().reindex()
    source.put("A", "", modified="20240102000000000")
    summary = make_reconciler().reindex()
    assert summary.empty == 1
    assert repo.count_chunks("A") == 0
    assert repo.get_sync_status("A").status == "empty"


def test_tiddler_gone_between_list_and_fetch_is_empty(make_reconciler, source, repo, monkeypatch):
    source.put("Ghost", "boo")
    monkeypatch.setattr(source, "get_entry", lambda title: None)
    summary = make_reconciler().reindex()
    assert summary.empty == 1
    assert repo.get_sync_status("Ghost").status == "empty"


def test_force_reindexes_everything(make_reconciler, source, embedder):
    source.put("A", "alpha")
    source.put("B", "beta")
    make_reconciler().reindex()
    embedder.calls.clear()

    summary = make_reconciler().reindex(force=True)

    assert summary.newly_indexed == 2
    assert len(embedder.calls) == 2
    assert summary.stats.total_vectors == 2


# ------------------------------------------------------------------
# Errors and retries
# ------------------------------------------------------------------


def test_entry_error_isolated(make_reconciler, source, embedder, repo):
    source.put("Good", "fine text")
    source.put("Bad", "boom text")
    embedder.fail_on = {"boom"}

    summary = make_reconciler().reindex()

    assert summary.newly_indexed == 1
    assert summary.errors == 1
    bad = repo.get_sync_status("Bad")
    assert bad.status == "error"
    assert "500" in bad.error_message
    assert repo.count_chunks("Bad") == 0
    assert repo.get_sync_status("Good").status == "indexed"


def test_fetch_error_recorded(make_reconciler, source, repo):
    source.put("A", "alpha")
    source.fetch_errors["A"] = SourceRequestError("GET failed: 502", status_code=502)
    summary = make_reconciler().reindex()
    assert summary.errors == 1
    assert repo.get_sync_status("A").error_message == "GET failed: 502"


def test_failure_while_clearing_empty_tiddler_recorded_as_error(make_reconciler, source, repo, monkeypatch):
    source.put("A", "   ")

    def locked(title: str) -> int:
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(repo, "delete_chunks", locked)
    summary = make_reconciler().reindex()

    assert summary.errors == 1
    assert summary.empty == 0
    sync = repo.get_sync_status("A")
    assert sync.status == "error"
    assert sync.error_message == "database is locked"


def test_error_retried_only_after_window(make_reconciler, source, embedder, repo, clock):
    source.put("Bad", "boom")
    embedder.fail_on = {"boom"}
    make_reconciler().reindex()
    assert repo.get_sync_status("Bad").last_indexed_at == "2024-06-01 12:00:00"

    embedder.fail_on = set()
    clock.now = T0 + timedelta(hours=1)
    summary = make_reconciler().reindex()
    assert summary.newly_indexed == 0
    assert repo.get_sync_status("Bad").status == "error"

    clock.now = T0 + RETRY_AFTER + timedelta(minutes=1)
    summary = make_reconciler().reindex()
    assert summary.newly_indexed == 1
    assert repo.get_sync_status("Bad").status == "indexed"
    assert repo.get_sync_status("Bad").error_message is None


def test_errored_tiddler_retried_immediately_when_edited(make_reconciler, source, embedder, repo, clock):
    source.put("Bad", "boom", modified="20240101000000000")
    embedder.fail_on = {"boom"}
    make_reconciler().reindex()

    embedder.fail_on = set()
    source.put("Bad", "boom fixed", modified="20240102000000000")
    clock.now = T0 + timedelta(minutes=5)
    summary = make_reconciler().reindex()
    assert summary.newly_indexed == 1


def test_failed_reindex_keeps_no_stale_partial_chunks(make_reconciler, source, embedder, repo):
    source.put("A", "first version", modified="20240101000000000")
    make_reconciler().reindex()
    assert repo.count_chunks("A") == 1

    source.put("A", "boom version", modified="20240102000000000")
    embedder.fail_on = {"boom"}
    make_reconciler().reindex()

    assert repo.get_sync_status("A").status == "error"
    assert repo.count_chunks("A") == 0


# ------------------------------------------------------------------
# Fatal conditions
# ------------------------------------------------------------------


def test_unreachable_backend_aborts_before_listing(make_reconciler, source, embedder):
    embedder.healthy = False
    source.list_error = AssertionError("must not list")
    with pytest.raises(UnreachableBackendError) as info:
        make_reconciler().reindex()
    assert info.value.base_url == "http://fake:11434"


def test_list_failure_propagates(make_reconciler, source, repo):
    repo.upsert_sync_status("Old", "1", 0, "empty")
    source.list_error = SourceListError("HTTP 500")
    with pytest.raises(SourceListError):
        make_reconciler().reindex()
    assert repo.get_sync_status("Old") is not None


# ------------------------------------------------------------------
# Status only, batching, progress
# ------------------------------------------------------------------


def test_status_only_touches_nothing(make_reconciler, source, embedder, repo):
    embedder.healthy = False
    source.list_error = AssertionError("must not list")
    repo.upsert_sync_status("A", "1", 0, "empty")

    summary = make_reconciler().reindex(status_only=True)

    assert summary.action == "status"
    assert summary.stats.total_synced_entries == 1
    assert summary.to_dict() == {"action": "status", "embeddings": 0, "indexed": 1, "by_status": {"empty": 1}}


def test_batches_report_progress(make_reconciler, source):
    for i in range(7):
        source.put(f"T{i}", f"text {i}")
    messages: list[str] = []

    summary = make_reconciler(batch_size=5, on_progress=messages.append).reindex()

    assert summary.newly_indexed == 7
    progress = [m for m in messages if m.startswith("Progress:")]
    assert progress == ["Progress: 5/7", "Progress: 7/7"]


def test_batch_members_overlap_and_batches_do_not(make_reconciler, source, monkeypatch):
    for i in range(7):
        source.put(f"T{i}", f"text {i}")
    first_batch = {f"T{i}" for i in range(5)}
    # All five first-batch fetches must be in flight at once to pass the barrier.
    barrier = threading.Barrier(len(first_batch), timeout=5)
    events: list[tuple[str, str]] = []
    fetch = source.get_entry

    def tracking_get_entry(title: str) -> Entry | None:
        events.append(("start", title))
        if title in first_batch:
            barrier.wait()
        return fetch(title)

    def on_progress(msg: str) -> None:
        if msg.startswith("Indexed '"):
            events.append(("done", msg.split("'")[1]))

    monkeypatch.setattr(source, "get_entry", tracking_get_entry)

    summary = make_reconciler(batch_size=5, on_progress=on_progress).reindex()

    assert summary.newly_indexed == 7
    assert summary.errors == 0
    last_first_done = max(i for i, (kind, t) in enumerate(events) if kind == "done" and t in first_batch)
    first_second_start = min(i for i, (kind, t) in enumerate(events) if kind == "start" and t not in first_batch)
    assert last_first_done < first_second_start


def test_batch_size_must_be_positive(repo, source, embedder):
    with pytest.raises(ValueError):
        Reconciler(repo, embedder, source, batch_size=0)


def test_summary_to_dict_for_reindex():
    summary = ReindexSummary(action="reindex", newly_indexed=2, empty=1, errors=0, deleted=3)
    d = summary.to_dict()
    assert d["action"] == "reindex"
    assert d["newly_indexed"] == 2
    assert d["deleted"] == 3
    assert d["total_indexed"] == 0
    assert d["total_embeddings"] == 0
    assert d["by_status"] == {}
