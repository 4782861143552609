"""LiteLLM embedding backends (Gemini and OpenAI).

Each backend is a LiteLLM model string plus its credential. LiteLLM's own
retry is disabled (``num_retries=0``); retries and provider fallback are
governed by ``EmbeddingProvider``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

import litellm

from cairn.config import EmbeddingCfg
from cairn.errors import EmbeddingError

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True

# ------------------------------------------------------------------
# Provider → credential env vars (first match wins) and declared dimensions
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, tuple[str, ...]] = {
    "gemini": ("GEMINI_API_KEY", "GOOGLE_API_KEY"),
    "openai": ("OPENAI_API_KEY",),
}

MODEL_DIMENSIONS: dict[str, int] = {
    "gemini/text-embedding-004": 768,
    "openai/text-embedding-3-small": 1536,
    "openai/text-embedding-3-large": 3072,
    "openai/text-embedding-ada-002": 1536,
}


@dataclass(frozen=True)
class EmbeddingBackend:
    """One embedding endpoint.

    ``dimensions`` of None skips the dimension check (unknown model).
    """

    name: str
    model: str
    api_key: str | None = None
    dimensions: int | None = None

    @property
    def model_name(self) -> str:
        """Model identifier without the LiteLLM provider prefix."""
        return self.model.split("/", 1)[-1]

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def embed(self, text: str) -> list[float]:
        """Call litellm.aembedding() once and return the vector.

        Raises:
            EmbeddingError: On any upstream failure, an empty vector, or a
                vector whose length differs from ``dimensions``.
        """
        try:
            response = await litellm.aembedding(
                model=self.model,
                input=[text],
                api_key=self.api_key,
                num_retries=0,
            )
        except Exception as exc:  # litellm maps provider errors to many types
            raise EmbeddingError(
                str(exc),
                provider_name=self.name,
                status_code=getattr(exc, "status_code", None),
                body=getattr(exc, "message", None),
            ) from exc

        vector = response.data[0]["embedding"] if response.data else None
        if not vector:
            raise EmbeddingError("empty embedding returned", provider_name=self.name)
        if self.dimensions is not None and len(vector) != self.dimensions:
            raise EmbeddingError(
                f"expected {self.dimensions} dimensions from {self.model}, got {len(vector)}",
                provider_name=self.name,
            )
        return [float(x) for x in vector]


def resolve_api_key(provider: str) -> str | None:
    """Return the first non-empty credential env var for *provider*."""
    for env_var in _PROVIDER_ENV.get(provider, ()):
        if value := os.environ.get(env_var):
            return value
    return None


def backends_from_config(cfg: EmbeddingCfg) -> list[EmbeddingBackend]:
    """Build the [gemini, openai] backend pair with credentials from the environment."""
    return [
        EmbeddingBackend(
            name="gemini",
            model=cfg.gemini_model,
            api_key=resolve_api_key("gemini"),
            dimensions=MODEL_DIMENSIONS.get(cfg.gemini_model),
        ),
        EmbeddingBackend(
            name="openai",
            model=cfg.openai_model,
            api_key=resolve_api_key("openai"),
            dimensions=MODEL_DIMENSIONS.get(cfg.openai_model),
        ),
    ]
