"""Document source interface: where tiddlers are read from."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class Entry:
    """Read-only snapshot of one tiddler.

    ``text`` is None for metadata-only listings. ``modified`` and ``created``
    are 17-digit TiddlyWiki timestamps (``YYYYMMDDhhmmssSSS``) or "".
    """

    title: str
    text: str | None = None
    modified: str = ""
    created: str = ""
    tags: str = ""

    @classmethod
    def from_json(cls, data: dict) -> Entry:
        text = data.get("text")
        return cls(
            title=str(data["title"]),
            text=None if text is None else str(text),
            modified=str(data.get("modified") or ""),
            created=str(data.get("created") or ""),
            tags=str(data.get("tags") or ""),
        )


class DocumentSource(ABC):
    """Abstract read side of a wiki.

    Implementations raise SourceListError from ``list_entries`` and
    SourceRequestError from ``get_entry``.
    """

    @abstractmethod
    def list_entries(self, filter_expression: str) -> list[Entry]:
        """Return metadata (no text) for every tiddler matching *filter_expression*."""

    @abstractmethod
    def get_entry(self, title: str) -> Entry | None:
        """Return the full tiddler, or None if it does not exist."""
