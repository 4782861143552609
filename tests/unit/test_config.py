"""Tests for the cairn config loader."""

from __future__ import annotations

import warnings
from pathlib import Path

import pytest
import yaml

from cairn.config import (
    CairnConfig,
    ConfigError,
    StorageCfg,
    load_config,
    resolve_backend,
    supabase_key,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_yaml(path: Path, data: dict) -> None:
    path.write_text(yaml.dump(data), encoding="utf-8")


@pytest.fixture
def project(tmp_path: Path) -> Path:
    d = tmp_path / "project"
    d.mkdir()
    return d


@pytest.fixture
def global_cfg(tmp_path: Path) -> Path:
    return tmp_path / "global" / "config.yaml"


def _load(project: Path, global_cfg: Path) -> CairnConfig:
    return load_config(project_dir=project, global_config_path=global_cfg)


# ---------------------------------------------------------------------------
# Defaults with no config files present
# ---------------------------------------------------------------------------


def test_load_config_defaults_no_files(project: Path, global_cfg: Path) -> None:
    """No config files → all hardcoded defaults."""
    cfg = _load(project, global_cfg)

    assert cfg.storage.backend == "auto"
    assert cfg.storage.db_path == "./cairn.db"
    assert cfg.storage.native_ranking is True
    assert cfg.embedding.preferred == "gemini"
    assert cfg.embedding.gemini_model == "gemini/text-embedding-004"
    assert cfg.embedding.openai_model == "openai/text-embedding-3-small"
    assert cfg.embedding.retry_delays == [1.0, 2.0, 4.0]
    assert cfg.embedding.cache_size == 1_000
    assert cfg.embedding.max_input_chars == 8_000
    assert (cfg.chunking.chunk_size, cfg.chunking.overlap, cfg.chunking.min_chunk_size) == (800, 200, 100)
    assert cfg.retrieval.top_k == 10
    assert cfg.retrieval.max_chars_per_result == 2_500
    assert cfg.retrieval.dedupe_by_source is True
    assert cfg.ingest.lock_timeout == 900


# ---------------------------------------------------------------------------
# Layering
# ---------------------------------------------------------------------------


def test_global_overrides_defaults(project: Path, global_cfg: Path) -> None:
    global_cfg.parent.mkdir()
    _write_yaml(global_cfg, {"embedding": {"preferred": "openai", "batch_size": 5}})

    cfg = _load(project, global_cfg)
    assert cfg.embedding.preferred == "openai"
    assert cfg.embedding.batch_size == 5
    # Other defaults unchanged
    assert cfg.embedding.cache_size == 1_000


def test_empty_or_null_global_file(project: Path, global_cfg: Path) -> None:
    global_cfg.parent.mkdir()
    global_cfg.write_text("", encoding="utf-8")
    assert _load(project, global_cfg).retrieval.top_k == 10
    global_cfg.write_text("null\n", encoding="utf-8")
    assert _load(project, global_cfg).retrieval.top_k == 10


def test_project_overrides_global(project: Path, global_cfg: Path) -> None:
    global_cfg.parent.mkdir()
    _write_yaml(global_cfg, {"retrieval": {"top_k": 3, "max_chars_per_result": 100}})
    _write_yaml(project / "cairn.yaml", {"retrieval": {"top_k": 7}})

    cfg = _load(project, global_cfg)
    assert cfg.retrieval.top_k == 7
    # deep merge keeps the global value for keys the project does not set
    assert cfg.retrieval.max_chars_per_result == 100


def test_storage_and_chunking_sections(project: Path, global_cfg: Path) -> None:
    _write_yaml(
        project / "cairn.yaml",
        {
            "storage": {"backend": "SQLite", "db_path": "data/kb.db", "native_ranking": False},
            "chunking": {"chunk_size": 400, "overlap": 50, "min_chunk_size": 40},
            "ingest": {"lock_timeout": 60},
        },
    )
    cfg = _load(project, global_cfg)
    assert cfg.storage == StorageCfg(backend="sqlite", db_path="data/kb.db", native_ranking=False)
    assert (cfg.chunking.chunk_size, cfg.chunking.overlap, cfg.chunking.min_chunk_size) == (400, 50, 40)
    assert cfg.ingest.lock_timeout == 60.0


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "data, match",
    [
        ({"storage": {"backend": "postgres"}}, "storage.backend"),
        ({"embedding": {"preferred": "cohere"}}, "embedding.preferred"),
        ({"embedding": {"max_attempts": 0}}, "max_attempts"),
        ({"embedding": {"retry_delays": []}}, "retry_delays"),
        ({"chunking": {"chunk_size": 100, "overlap": 100}}, "overlap"),
    ],
)
def test_invalid_values_raise(project: Path, global_cfg: Path, data: dict, match: str) -> None:
    _write_yaml(project / "cairn.yaml", data)
    with pytest.raises(ConfigError, match=match):
        _load(project, global_cfg)


@pytest.mark.parametrize(
    "bad_key",
    ["api_key", "apikey", "OPENAI_API_KEY", "supabase_key", "secret", "password", "token", "api-key"],
)
def test_global_config_rejects_api_key_fields(project: Path, global_cfg: Path, bad_key: str) -> None:
    """Global config containing API key-like field names raises ConfigError."""
    global_cfg.parent.mkdir()
    global_cfg.write_text(f"{bad_key}: sk-abc123\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="forbidden key"):
        _load(project, global_cfg)


def test_project_config_rejects_nested_api_key(project: Path, global_cfg: Path) -> None:
    _write_yaml(project / "cairn.yaml", {"embedding": {"openai_api_key": "sk-secret"}})
    with pytest.raises(ConfigError, match="embedding.openai_api_key"):
        _load(project, global_cfg)


def test_legitimate_keys_not_mistaken_for_secrets(project: Path, global_cfg: Path) -> None:
    _write_yaml(project / "cairn.yaml", {"embedding": {"max_input_chars": 100}, "retrieval": {"top_k": 2}})
    assert _load(project, global_cfg).embedding.max_input_chars == 100


def test_unknown_top_level_key_warns(project: Path, global_cfg: Path) -> None:
    """Unknown top-level key in config emits UserWarning (not error)."""
    _write_yaml(project / "cairn.yaml", {"unknown_section": {"foo": "bar"}})

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        cfg = _load(project, global_cfg)

    assert any("unknown_section" in str(w.message) for w in caught)
    assert cfg.retrieval.top_k == 10


# ---------------------------------------------------------------------------
# Environment variable overrides
# ---------------------------------------------------------------------------


def test_env_overrides_file_values(project: Path, global_cfg: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _write_yaml(project / "cairn.yaml", {"storage": {"db_path": "from-file.db", "backend": "sqlite"}})
    monkeypatch.setenv("CAIRN_DB_PATH", "/data/env.db")
    monkeypatch.setenv("CAIRN_BACKEND", "Supabase")
    monkeypatch.setenv("SUPABASE_URL", "https://proj.supabase.co")
    monkeypatch.setenv("CAIRN_EMBEDDING_PROVIDER", "OPENAI")

    cfg = _load(project, global_cfg)
    assert cfg.storage.db_path == "/data/env.db"
    assert cfg.storage.backend == "supabase"
    assert cfg.storage.supabase_url == "https://proj.supabase.co"
    assert cfg.embedding.preferred == "openai"


def test_rag_db_path_is_accepted(project: Path, global_cfg: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RAG_DB_PATH", "/data/rag.db")
    assert _load(project, global_cfg).storage.db_path == "/data/rag.db"


def test_invalid_env_provider_is_rejected(project: Path, global_cfg: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CAIRN_EMBEDDING_PROVIDER", "voyage")
    with pytest.raises(ConfigError, match="embedding.preferred"):
        _load(project, global_cfg)


# ---------------------------------------------------------------------------
# Backend resolution
# ---------------------------------------------------------------------------


def test_resolve_backend_auto_without_credentials() -> None:
    assert resolve_backend(StorageCfg(supabase_url="https://proj.supabase.co")) == "sqlite"


def test_resolve_backend_auto_with_url_and_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon")
    assert supabase_key() == "anon"
    assert resolve_backend(StorageCfg(supabase_url="https://proj.supabase.co")) == "supabase"
    assert resolve_backend(StorageCfg()) == "sqlite"


def test_resolve_backend_explicit_wins(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SUPABASE_KEY", "service")
    assert resolve_backend(StorageCfg(backend="sqlite", supabase_url="https://proj.supabase.co")) == "sqlite"
    assert resolve_backend(StorageCfg(backend="supabase")) == "supabase"
