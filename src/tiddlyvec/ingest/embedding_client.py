"""Embedding backend client: health probe + batched embeddings via LiteLLM.

The backend is an Ollama-compatible model server. One ``embed()`` call is one
``POST {base_url}/api/embed`` request carrying every input text; vectors come
back in input order. All calls carry explicit timeouts.

nomic-embed-text expects task prefixes: stored chunks are embedded with
DOCUMENT_PREFIX and queries with QUERY_PREFIX. Mixing them up silently degrades
ranking, so both live here next to the client.
"""

from __future__ import annotations

import urllib.error
import urllib.request
from dataclasses import dataclass

import litellm

from tiddlyvec.discovery import DNS_TIMEOUT, resolve_base_url
from tiddlyvec.errors import EmbeddingRequestError

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True

DOCUMENT_PREFIX = "search_document: "
QUERY_PREFIX = "search_query: "

DEFAULT_MODEL = "nomic-embed-text"
EMBED_TIMEOUT = 120.0  # seconds
HEALTH_TIMEOUT = 10.0  # seconds


@dataclass
class EmbeddingConfig:
    """Embedding backend settings.

    Attributes:
        model: Model name on the backend (e.g. ``nomic-embed-text``). A bare name
            is routed through LiteLLM's ``ollama/`` provider.
        embed_timeout: Seconds allowed for one embed request.
        health_timeout: Seconds allowed for the health probe.
    """

    model: str = DEFAULT_MODEL
    embed_timeout: float = EMBED_TIMEOUT
    health_timeout: float = HEALTH_TIMEOUT


class EmbeddingClient:
    """Talks to one resolved embedding backend.

    Construct once at startup (see :meth:`from_address`) and pass it to the
    reconciler and the search function.
    """

    def __init__(self, base_url: str, config: EmbeddingConfig | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self._config = config or EmbeddingConfig()

    @classmethod
    def from_address(
        cls,
        address: str,
        config: EmbeddingConfig | None = None,
        dns_timeout: float = DNS_TIMEOUT,
    ) -> EmbeddingClient:
        """Resolve a URL, Consul service name or bare host, then build a client.

        Raises:
            DnsResolutionError: If a service name cannot be resolved.
        """
        return cls(resolve_base_url(address, timeout=dns_timeout), config)

    @property
    def model(self) -> str:
        return self._config.model

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def health(self) -> bool:
        """Return True if ``GET {base_url}/`` answers 2xx within the health timeout."""
        request = urllib.request.Request(f"{self.base_url}/", method="GET")
        try:
            with urllib.request.urlopen(request, timeout=self._config.health_timeout) as resp:
                return 200 <= resp.status < 300
        except (urllib.error.URLError, OSError, ValueError):
            return False

    # ------------------------------------------------------------------
    # Embedding
    # ------------------------------------------------------------------

    def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed *texts* in a single request; vectors are returned in input order.

        Raises:
            EmbeddingRequestError: On non-2xx responses (status and body are
                attached), timeouts, or a response with the wrong number of
                vectors.
        """
        if not texts:
            return []

        label = f"embed({len(texts)} texts)"
        try:
            response = litellm.embedding(
                model=self._litellm_model(),
                input=texts,
                api_base=self.base_url,
                timeout=self._config.embed_timeout,
            )
        except litellm.Timeout as exc:
            raise EmbeddingRequestError(
                f"{label} timed out after {self._config.embed_timeout:g}s"
            ) from exc
        except Exception as exc:
            status = getattr(exc, "status_code", None)
            body = str(getattr(exc, "message", "") or exc)
            raise EmbeddingRequestError(
                f"Embedding request failed: {status or 'no status'} {body}",
                status_code=status,
                body=body,
            ) from exc

        vectors = [item["embedding"] for item in response.data]
        if len(vectors) != len(texts):
            raise EmbeddingRequestError(
                f"{label} returned {len(vectors)} vectors for {len(texts)} inputs"
            )
        return vectors

    def _litellm_model(self) -> str:
        model = self._config.model
        return model if "/" in model else f"ollama/{model}"
