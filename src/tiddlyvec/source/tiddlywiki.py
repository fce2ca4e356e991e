"""TiddlyWiki HTTP API client (read side).

Endpoints:
  GET {base}/recipes/default/tiddlers.json?filter=<expr>   skinny tiddlers, no text
  GET {base}/recipes/default/tiddlers/<title>              full tiddler, 404 if missing

Timeout: 30 seconds per request. An optional authenticated-user header is
attached to every request when configured.
"""

from __future__ import annotations

import json
import urllib.error
import urllib.parse
import urllib.request

from tiddlyvec.errors import SourceListError, SourceRequestError
from tiddlyvec.source.base import DocumentSource, Entry

READ_TIMEOUT = 30.0  # seconds

# All non-system tiddlers, ordered by title.
ALL_TIDDLERS_FILTER = "[!is[system]sort[title]]"


class TiddlyWikiSource(DocumentSource):
    """Reads tiddlers from a TiddlyWiki served by the Node.js web server.

    Args:
        base_url: Resolved ``http(s)://host:port`` of the wiki.
        auth_header: Header name the wiki trusts for the user (e.g. ``X-Remote-User``).
        auth_user: Value sent in *auth_header*.
        timeout: Seconds allowed per request.
    """

    def __init__(
        self,
        base_url: str,
        auth_header: str | None = None,
        auth_user: str | None = None,
        timeout: float = READ_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._headers: dict[str, str] = {"Accept": "application/json"}
        if auth_header and auth_user:
            self._headers[auth_header] = auth_user
        self._timeout = timeout

    def list_entries(self, filter_expression: str = ALL_TIDDLERS_FILTER) -> list[Entry]:
        """Return skinny tiddlers matching *filter_expression*.

        Raises:
            SourceListError: On any transport error, non-2xx status or bad JSON.
        """
        query = urllib.parse.quote(filter_expression, safe="")
        url = f"{self.base_url}/recipes/default/tiddlers.json?filter={query}"
        try:
            data = self._get_json(url)
        except urllib.error.HTTPError as exc:
            raise SourceListError(
                f"Filter query failed: {exc.code} {exc.reason}{_body_suffix(exc)}"
            ) from exc
        except (urllib.error.URLError, OSError) as exc:
            raise SourceListError(f"Filter query failed: {_describe(exc, self._timeout)}") from exc
        except ValueError as exc:
            raise SourceListError(f"Filter query returned invalid JSON: {exc}") from exc

        if not isinstance(data, list):
            raise SourceListError("Filter query returned a non-list response")
        return [Entry.from_json(item) for item in data if isinstance(item, dict) and "title" in item]

    def get_entry(self, title: str) -> Entry | None:
        """Return the full tiddler *title*, or None on 404.

        Raises:
            SourceRequestError: On any other failure.
        """
        url = f"{self.base_url}/recipes/default/tiddlers/{urllib.parse.quote(title, safe='')}"
        try:
            data = self._get_json(url)
        except urllib.error.HTTPError as exc:
            if exc.code == 404:
                return None
            body = _read_body(exc)
            raise SourceRequestError(
                f'GET "{title}" failed: {exc.code} {exc.reason}{" - " + body if body else ""}',
                status_code=exc.code,
                body=body,
            ) from exc
        except (urllib.error.URLError, OSError) as exc:
            raise SourceRequestError(f'GET "{title}" failed: {_describe(exc, self._timeout)}') from exc
        except ValueError as exc:
            raise SourceRequestError(f'GET "{title}" returned invalid JSON: {exc}') from exc

        if not isinstance(data, dict):
            raise SourceRequestError(f'GET "{title}" returned a non-object response')
        data.setdefault("title", title)
        return Entry.from_json(data)

    def _get_json(self, url: str) -> object:
        request = urllib.request.Request(url, headers=self._headers, method="GET")
        with urllib.request.urlopen(request, timeout=self._timeout) as resp:
            return json.loads(resp.read().decode("utf-8"))


def _read_body(exc: urllib.error.HTTPError) -> str:
    try:
        return exc.read().decode("utf-8", errors="replace").strip()
    except Exception:
        return ""


def _body_suffix(exc: urllib.error.HTTPError) -> str:
    body = _read_body(exc)
    return f" - {body}" if body else ""


def _describe(exc: BaseException, timeout: float) -> str:
    reason = getattr(exc, "reason", exc)
    if isinstance(reason, TimeoutError) or isinstance(exc, TimeoutError):
        return f"request timed out after {timeout:g}s"
    return str(reason)
