"""Exception hierarchy for indexing and search.

Fatal errors (UnreachableBackendError, SourceListError, DnsResolutionError) abort
the running command. TransientEntryError and its subclasses are caught at the
per-tiddler boundary of a reindex and recorded in sync_status instead.
"""

from __future__ import annotations


class TiddlyVecError(Exception):
    """Base class for all tiddlyvec errors."""


class DnsResolutionError(TiddlyVecError):
    """A service-discovery name could not be resolved to host:port."""


class UnreachableBackendError(TiddlyVecError):
    """The embedding backend failed its health check."""

    def __init__(self, base_url: str) -> None:
        super().__init__(f"Embedding backend not reachable at {base_url}")
        self.base_url = base_url


class SourceListError(TiddlyVecError):
    """The tiddler list could not be fetched from the wiki."""


class TransientEntryError(TiddlyVecError):
    """A single tiddler failed to fetch, chunk or embed. Retried later."""


class EmbeddingRequestError(TransientEntryError):
    """The embedding backend rejected a request, timed out, or returned bad data."""

    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class SourceRequestError(TransientEntryError):
    """Fetching a single tiddler from the wiki failed."""

    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class EmptyContentError(TiddlyVecError):
    """The tiddler has no text. Recorded as status 'empty', not as a failure."""

    def __init__(self, title: str) -> None:
        super().__init__(f"Tiddler '{title}' has no text")
        self.title = title
