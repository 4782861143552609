"""Shared pytest fixtures."""

from __future__ import annotations

import logging

import pytest
import structlog

from cairn.db.connection import Database
from cairn.db.repository import SqliteRepository
from cairn.db.schema import initialize
from cairn.embedding.backends import EmbeddingBackend
from cairn.embedding.provider import EmbeddingProvider, RetryPolicy
from cairn.errors import EmbeddingError

_CREDENTIAL_VARS = (
    "GEMINI_API_KEY",
    "GOOGLE_API_KEY",
    "OPENAI_API_KEY",
    "SUPABASE_URL",
    "SUPABASE_KEY",
    "SUPABASE_ANON_KEY",
    "CAIRN_DB_PATH",
    "RAG_DB_PATH",
    "CAIRN_BACKEND",
    "CAIRN_EMBEDDING_PROVIDER",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Tests never see the developer's real credentials or overrides."""
    for var in _CREDENTIAL_VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture(autouse=True)
def _restore_logging():
    """Undo configure_logging() so later tests never write to a closed stream."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    structlog.reset_defaults()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / "cairn.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def repo(tmp_db):
    return SqliteRepository(tmp_db)


class FakeBackend(EmbeddingBackend):
    """Deterministic in-memory backend: a bag-of-letters vector per text.

    ``fail_times`` makes the first N calls raise EmbeddingError.
    """

    def __init__(self, name: str = "gemini", dimensions: int = 8, fail_times: int = 0, api_key: str = "k"):
        super().__init__(name=name, model=f"{name}/fake-embed", api_key=api_key, dimensions=dimensions)
        object.__setattr__(self, "calls", [])
        object.__setattr__(self, "fail_times", fail_times)

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if len(self.calls) <= self.fail_times:
            raise EmbeddingError("simulated outage", provider_name=self.name, status_code=503)
        return letter_vector(text, self.dimensions)


def letter_vector(text: str, dimensions: int = 8) -> list[float]:
    vec = [0.0] * dimensions
    for ch in text.lower():
        if ch.isalpha():
            vec[(ord(ch) - ord("a")) % dimensions] += 1.0
    if not any(vec):
        vec[0] = 1.0
    return vec


async def _no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def embedder(fake_backend):
    """EmbeddingProvider over a single FakeBackend with sleeps disabled."""
    return EmbeddingProvider(
        [fake_backend],
        preferred=fake_backend.name,
        retry=RetryPolicy(max_attempts=3, delays=(1.0, 2.0, 4.0)),
        sleep=_no_sleep,
    )


@pytest.fixture
def make_backend():
    """Factory for FakeBackend instances (name, dimensions, fail_times, api_key)."""
    return FakeBackend


@pytest.fixture
def vector_for():
    """The FakeBackend vector function, for computing expected query vectors."""
    return letter_vector


@pytest.fixture
def no_sleep():
    return _no_sleep
