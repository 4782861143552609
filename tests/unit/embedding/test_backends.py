"""Tests for the LiteLLM embedding backends."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from cairn.config import EmbeddingCfg
from cairn.embedding.backends import EmbeddingBackend, backends_from_config, resolve_api_key
from cairn.errors import EmbeddingError


def _response(vector):
    resp = MagicMock()
    resp.data = [{"embedding": vector}] if vector is not None else []
    return resp


class _UpstreamError(Exception):
    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


# ------------------------------------------------------------------
# embed()
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_embed_returns_float_vector():
    backend = EmbeddingBackend("openai", "openai/text-embedding-3-small", api_key="sk-test", dimensions=3)
    with patch("cairn.embedding.backends.litellm.aembedding", new=AsyncMock(return_value=_response([1, 0.5, 0]))):
        assert await backend.embed("hello") == [1.0, 0.5, 0.0]


@pytest.mark.asyncio
async def test_embed_passes_single_input_and_disables_litellm_retries():
    backend = EmbeddingBackend("gemini", "gemini/text-embedding-004", api_key="g-key")
    mock = AsyncMock(return_value=_response([0.1]))
    with patch("cairn.embedding.backends.litellm.aembedding", new=mock):
        await backend.embed("test text")
    kwargs = mock.call_args.kwargs
    assert kwargs["model"] == "gemini/text-embedding-004"
    assert kwargs["input"] == ["test text"]
    assert kwargs["api_key"] == "g-key"
    assert kwargs["num_retries"] == 0


@pytest.mark.asyncio
async def test_upstream_error_mapped_with_status_and_body():
    backend = EmbeddingBackend("openai", "openai/text-embedding-3-small", api_key="sk-test")
    err = _UpstreamError("rate limited", status_code=429)
    with patch("cairn.embedding.backends.litellm.aembedding", new=AsyncMock(side_effect=err)):
        with pytest.raises(EmbeddingError) as exc_info:
            await backend.embed("hello")
    assert exc_info.value.status_code == 429
    assert exc_info.value.body == "rate limited"
    assert exc_info.value.provider_name == "openai"
    assert exc_info.value.__cause__ is err
    assert str(exc_info.value).startswith("[openai] ")


@pytest.mark.asyncio
@pytest.mark.parametrize("vector", [None, []])
async def test_empty_vector_is_an_error(vector):
    backend = EmbeddingBackend("gemini", "gemini/text-embedding-004", api_key="g")
    with patch("cairn.embedding.backends.litellm.aembedding", new=AsyncMock(return_value=_response(vector))):
        with pytest.raises(EmbeddingError, match="empty"):
            await backend.embed("hello")


@pytest.mark.asyncio
async def test_dimension_mismatch_is_an_error():
    backend = EmbeddingBackend("gemini", "gemini/text-embedding-004", api_key="g", dimensions=768)
    with patch("cairn.embedding.backends.litellm.aembedding", new=AsyncMock(return_value=_response([0.1] * 10))):
        with pytest.raises(EmbeddingError, match="expected 768 dimensions"):
            await backend.embed("hello")


# ------------------------------------------------------------------
# Properties / config wiring
# ------------------------------------------------------------------


def test_model_name_strips_provider_prefix():
    assert EmbeddingBackend("gemini", "gemini/text-embedding-004").model_name == "text-embedding-004"
    assert EmbeddingBackend("x", "bare-model").model_name == "bare-model"


def test_configured_requires_api_key():
    assert EmbeddingBackend("openai", "openai/m", api_key="sk").configured
    assert not EmbeddingBackend("openai", "openai/m").configured


def test_resolve_api_key_prefers_gemini_then_google(monkeypatch):
    monkeypatch.setenv("GOOGLE_API_KEY", "google")
    assert resolve_api_key("gemini") == "google"
    monkeypatch.setenv("GEMINI_API_KEY", "gemini")
    assert resolve_api_key("gemini") == "gemini"


def test_resolve_api_key_unknown_provider():
    assert resolve_api_key("cohere") is None


def test_backends_from_config(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    gemini, openai = backends_from_config(EmbeddingCfg())
    assert (gemini.name, gemini.model, gemini.dimensions, gemini.configured) == (
        "gemini",
        "gemini/text-embedding-004",
        768,
        False,
    )
    assert (openai.name, openai.dimensions, openai.api_key) == ("openai", 1536, "sk-test")


def test_backends_from_config_unknown_model_skips_dimension_check():
    gemini, _ = backends_from_config(EmbeddingCfg(gemini_model="gemini/some-new-model"))
    assert gemini.dimensions is None
