"""tiddlyvec configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site, not in this module)
  2. Environment variables  (TIDDLYVEC_EMBEDDING_URL, TIDDLYVEC_EMBEDDING_MODEL)
  3. Per-project tiddlyvec.yaml  (current directory)
  4. Global ~/.config/tiddlyvec/config.yaml
  5. Hardcoded defaults

All YAML reads use yaml.safe_load(), never yaml.load().

Example::

    embedding:
      url: ollama.service.consul
      model: nomic-embed-text
    wikis:
      notes:
        url: http://localhost:8080
        embeddings_db: ~/.local/share/tiddlyvec/notes.db
        auth_header: X-Remote-User
        auth_user: me
"""

from __future__ import annotations

import os
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_PATH: Path = Path.home() / ".config" / "tiddlyvec" / "config.yaml"
_PROJECT_CONFIG_NAME: str = "tiddlyvec.yaml"

# Known top-level sections; unknown keys produce a warning.
# ollama_url is the pre-1.0 spelling of embedding.url.
_KNOWN_SECTIONS: frozenset[str] = frozenset(["embedding", "wikis", "ollama_url"])


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid value or a wiki is unknown."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class EmbeddingCfg:
    """Embedding backend configuration (tiddlyvec.yaml: embedding:).

    ``url`` may be an http(s) URL, a ``*.service.consul`` name resolved via DNS
    SRV, or a bare ``host:port``.
    """

    url: str = "http://localhost:11434"
    model: str = "nomic-embed-text"
    dimensions: int = 768
    max_tokens: int = 6_000
    tokenizer_model: str = "gpt-3.5-turbo"
    batch_size: int = 5
    embed_timeout: float = 120.0
    health_timeout: float = 10.0
    dns_timeout: float = 10.0


@dataclass
class WikiCfg:
    """One wiki (tiddlyvec.yaml: wikis.<name>:)."""

    url: str
    embeddings_db: str | None = None
    auth_header: str | None = None
    auth_user: str | None = None
    read_timeout: float = 30.0

    @property
    def db_path(self) -> Path | None:
        return Path(self.embeddings_db).expanduser() if self.embeddings_db else None


@dataclass
class TiddlyVecConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    wikis: dict[str, WikiCfg] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}'; ignored.",
                UserWarning,
                stacklevel=4,
            )


def _positive(value: Any, name: str, cast: type = int) -> Any:
    try:
        result = cast(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be a number, got {value!r}") from exc
    if result <= 0:
        raise ConfigError(f"{name} must be > 0, got {value!r}")
    return result


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _parse_wiki(name: str, raw: Any) -> WikiCfg:
    if not isinstance(raw, dict) or not raw.get("url"):
        raise ConfigError(f"wikis.{name} must be a mapping with at least a 'url' key")
    return WikiCfg(
        url=str(raw["url"]),
        embeddings_db=str(raw["embeddings_db"]) if raw.get("embeddings_db") else None,
        auth_header=raw.get("auth_header"),
        auth_user=raw.get("auth_user"),
        read_timeout=_positive(raw.get("read_timeout", 30.0), f"wikis.{name}.read_timeout", float),
    )


def _cfg_from_dict(data: dict[str, Any]) -> TiddlyVecConfig:
    """Build a *TiddlyVecConfig* from a merged raw YAML dict."""
    cfg = TiddlyVecConfig()

    if data.get("ollama_url"):
        cfg.embedding.url = str(data["ollama_url"])

    if "embedding" in data:
        e = data["embedding"] or {}
        d = cfg.embedding
        cfg.embedding = EmbeddingCfg(
            url=str(e.get("url", d.url)),
            model=str(e.get("model", d.model)),
            dimensions=_positive(e.get("dimensions", d.dimensions), "embedding.dimensions"),
            max_tokens=_positive(e.get("max_tokens", d.max_tokens), "embedding.max_tokens"),
            tokenizer_model=str(e.get("tokenizer_model", d.tokenizer_model)),
            batch_size=_positive(e.get("batch_size", d.batch_size), "embedding.batch_size"),
            embed_timeout=_positive(e.get("embed_timeout", d.embed_timeout), "embedding.embed_timeout", float),
            health_timeout=_positive(e.get("health_timeout", d.health_timeout), "embedding.health_timeout", float),
            dns_timeout=_positive(e.get("dns_timeout", d.dns_timeout), "embedding.dns_timeout", float),
        )

    if "wikis" in data:
        wikis = data["wikis"] or {}
        if not isinstance(wikis, dict):
            raise ConfigError("wikis must be a mapping of name → settings")
        cfg.wikis = {str(name): _parse_wiki(str(name), raw) for name, raw in wikis.items()}

    return cfg


def _apply_env_overrides(cfg: TiddlyVecConfig) -> TiddlyVecConfig:
    """Apply TIDDLYVEC_* environment variable overrides."""
    if url := os.environ.get("TIDDLYVEC_EMBEDDING_URL"):
        cfg.embedding.url = url
    if model := os.environ.get("TIDDLYVEC_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    return cfg


def _read_yaml(path: Path) -> dict[str, Any]:
    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file '{path}' must contain a mapping at the top level")
    return raw


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def config_search_paths(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> list[Path]:
    """Return the config files load_config() consults, lowest priority first."""
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()
    return [global_path, search_dir / _PROJECT_CONFIG_NAME]


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> TiddlyVecConfig:
    """Load and return a merged *TiddlyVecConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *tiddlyvec.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If a file is malformed or holds invalid values.
    """
    merged: dict[str, Any] = {}
    for path in config_search_paths(project_dir, global_config_path=global_config_path):
        if path.exists():
            raw = _read_yaml(path)
            _warn_unknown_keys(raw, path)
            merged = _deep_merge(merged, raw)

    cfg = _cfg_from_dict(merged)
    return _apply_env_overrides(cfg)


def get_wiki(cfg: TiddlyVecConfig, name: str) -> WikiCfg:
    """Return the settings for wiki *name*.

    Raises:
        ConfigError: If *name* is not configured; the message lists the
            configured wikis.
    """
    wiki = cfg.wikis.get(name)
    if wiki is None:
        available = ", ".join(sorted(cfg.wikis)) or "(none)"
        raise ConfigError(f"Unknown wiki '{name}'. Available: {available}")
    return wiki
