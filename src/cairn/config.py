"""Layered settings for a cairn knowledge base.

Each layer overrides the one below it:

  - command-line flags, applied by the CLI after load_config() returns
  - environment (CAIRN_DB_PATH or RAG_DB_PATH, CAIRN_BACKEND, SUPABASE_URL,
    CAIRN_EMBEDDING_PROVIDER)
  - cairn.yaml in the project directory
  - ~/.cairn/config.yaml
  - the dataclass defaults below

Credentials (GEMINI_API_KEY or GOOGLE_API_KEY, OPENAI_API_KEY, SUPABASE_KEY)
only ever come from the environment. A YAML layer holding a key that looks
like a secret is rejected outright. Files are parsed with yaml.safe_load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".cairn"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "cairn.yaml"

# Fields that suggest an API key; forbidden in global config.
# Does NOT match legitimate config keys like max_input_chars or top_k.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_key$"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["storage", "embedding", "chunking", "retrieval", "ingest"]
)

_BACKENDS: frozenset[str] = frozenset(["auto", "sqlite", "supabase"])
_PROVIDERS: frozenset[str] = frozenset(["gemini", "openai"])


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class StorageCfg:
    """Persistence backend selection (cairn.yaml: storage:)."""

    backend: str = "auto"  # auto | sqlite | supabase
    db_path: str = "./cairn.db"
    native_ranking: bool = True
    supabase_url: str | None = None


@dataclass
class EmbeddingCfg:
    """Embedding providers, retry and batching (cairn.yaml: embedding:)."""

    preferred: str = "gemini"  # gemini | openai
    gemini_model: str = "gemini/text-embedding-004"
    openai_model: str = "openai/text-embedding-3-small"
    max_attempts: int = 3
    retry_delays: list[float] = field(default_factory=lambda: [1.0, 2.0, 4.0])
    max_input_chars: int = 8_000
    cache_size: int = 1_000
    batch_size: int = 10
    batch_pause: float = 0.2
    concurrency: int = 10


@dataclass
class ChunkingCfg:
    """Sentence chunker settings in characters (cairn.yaml: chunking:)."""

    chunk_size: int = 800
    overlap: int = 200
    min_chunk_size: int = 100


@dataclass
class RetrievalCfg:
    """Search defaults (cairn.yaml: retrieval:)."""

    top_k: int = 10
    max_chars_per_result: int = 2_500
    dedupe_by_source: bool = True
    candidate_multiplier: int = 3


@dataclass
class IngestCfg:
    """Ingestion lock settings (cairn.yaml: ingest:)."""

    lock_timeout: float = 15 * 60.0


@dataclass
class CairnConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    storage: StorageCfg = field(default_factory=StorageCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    ingest: IngestCfg = field(default_factory=IngestCfg)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _validate(cfg: CairnConfig) -> None:
    if cfg.storage.backend not in _BACKENDS:
        raise ConfigError(
            f"storage.backend must be one of {sorted(_BACKENDS)}, got '{cfg.storage.backend}'"
        )
    if cfg.embedding.preferred not in _PROVIDERS:
        raise ConfigError(
            f"embedding.preferred must be one of {sorted(_PROVIDERS)}, got '{cfg.embedding.preferred}'"
        )
    if cfg.embedding.max_attempts < 1:
        raise ConfigError("embedding.max_attempts must be >= 1")
    if not cfg.embedding.retry_delays:
        raise ConfigError("embedding.retry_delays must not be empty")
    ch = cfg.chunking
    if ch.chunk_size < 1 or ch.overlap < 0 or ch.min_chunk_size < 0:
        raise ConfigError("chunking sizes must be positive")
    if ch.overlap >= ch.chunk_size:
        raise ConfigError(
            f"chunking.overlap ({ch.overlap}) must be smaller than chunking.chunk_size ({ch.chunk_size})"
        )


# ---------------------------------------------------------------------------
# Reading YAML layers
# ---------------------------------------------------------------------------


def _find_secret_key(data: dict[str, Any]) -> tuple[str, str] | None:
    """Return (dotted path, key) of the first secret-looking key in *data*."""
    pending: list[tuple[str, dict[str, Any]]] = [("", data)]
    while pending:
        prefix, node = pending.pop()
        for key, value in node.items():
            dotted = f"{prefix}.{key}" if prefix else str(key)
            if _API_KEY_RE.search(str(key)):
                return dotted, str(key)
            if isinstance(value, dict):
                pending.append((dotted, value))
    return None


def _read_layer(path: Path) -> dict[str, Any]:
    """Parse one YAML layer; an absent file is an empty layer."""
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file '{path}' must contain a mapping at the top level.")

    secret = _find_secret_key(data)
    if secret is not None:
        dotted, key = secret
        env_name = key.upper().replace("-", "_")
        raise ConfigError(
            f"Config file '{path}' contains a forbidden key '{dotted}'.\n"
            f"  Credentials are read from the environment only.\n"
            f"  Delete '{dotted}' from {path.name}, then: export {env_name}=<value>"
        )

    for section in data.keys() - _KNOWN_SECTIONS:
        warnings.warn(
            f"Ignoring unknown section '{section}' in config file '{path}'.",
            UserWarning,
            stacklevel=3,
        )
    return data


def _overlay(target: dict[str, Any], layer: dict[str, Any]) -> None:
    """Merge *layer* into *target* in place; nested mappings merge key by key."""
    for key, value in layer.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged = dict(current)
            _overlay(merged, value)
            target[key] = merged
        else:
            target[key] = value


# ---------------------------------------------------------------------------
# Building the dataclasses
# ---------------------------------------------------------------------------


def _coerce(default: Any, value: Any) -> Any:
    """Convert a YAML *value* to the type of the field's *default*."""
    if value is None:
        return default
    if isinstance(default, bool):
        return bool(value)
    if isinstance(default, (int, float)):
        return type(default)(value)
    if isinstance(default, list):
        return [float(item) for item in value]
    return str(value)


def _build_section(defaults: Any, raw: Any) -> Any:
    if raw is None:
        return defaults
    if not isinstance(raw, dict):
        raise ConfigError(f"Config section for {type(defaults).__name__} must be a mapping.")
    names = {f.name for f in fields(defaults)}
    updates = {
        name: _coerce(getattr(defaults, name), value)
        for name, value in raw.items()
        if name in names
    }
    return replace(defaults, **updates)


def _cfg_from_dict(data: dict[str, Any]) -> CairnConfig:
    base = CairnConfig()
    cfg = CairnConfig(
        **{name: _build_section(getattr(base, name), data.get(name)) for name in _KNOWN_SECTIONS}
    )
    cfg.storage.backend = cfg.storage.backend.lower()
    cfg.embedding.preferred = cfg.embedding.preferred.lower()
    return cfg


def _apply_env_overrides(cfg: CairnConfig) -> CairnConfig:
    if db_path := os.environ.get("CAIRN_DB_PATH") or os.environ.get("RAG_DB_PATH"):
        cfg.storage.db_path = db_path
    if backend := os.environ.get("CAIRN_BACKEND"):
        cfg.storage.backend = backend.lower()
    if url := os.environ.get("SUPABASE_URL"):
        cfg.storage.supabase_url = url
    if provider := os.environ.get("CAIRN_EMBEDDING_PROVIDER"):
        cfg.embedding.preferred = provider.lower()
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> CairnConfig:
    """Merge the global file, the project file and the environment.

    Args:
        project_dir: Where to look for *cairn.yaml*; the working directory
            when omitted.
        global_config_path: Replaces ~/.cairn/config.yaml (tests use this).

    Raises:
        ConfigError: A layer holds a secret-looking key, is not a mapping,
            or a merged value is out of range.
    """
    layers = (
        global_config_path or _GLOBAL_CONFIG_PATH,
        (project_dir or Path.cwd()) / _PROJECT_CONFIG_NAME,
    )
    merged: dict[str, Any] = {}
    for path in layers:
        _overlay(merged, _read_layer(path))

    cfg = _apply_env_overrides(_cfg_from_dict(merged))
    _validate(cfg)
    return cfg


def resolve_backend(cfg: StorageCfg) -> str:
    """Return the concrete backend name for *cfg* ('auto' → detect from env)."""
    if cfg.backend != "auto":
        return cfg.backend
    if cfg.supabase_url and supabase_key():
        return "supabase"
    return "sqlite"


def supabase_key() -> str | None:
    return os.environ.get("SUPABASE_KEY") or os.environ.get("SUPABASE_ANON_KEY")
