"""cairn embedding layer — LiteLLM backends behind a caching, retrying provider."""

from cairn.embedding.backends import EmbeddingBackend, backends_from_config
from cairn.embedding.provider import Embedding, EmbeddingProvider, RetryPolicy

__all__ = [
    "Embedding",
    "EmbeddingBackend",
    "EmbeddingProvider",
    "RetryPolicy",
    "backends_from_config",
]
