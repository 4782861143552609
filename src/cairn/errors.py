"""Exception hierarchy for cairn.

    CairnError  (base; optional ``provider_name``)
    +-- ExtractionError            bad or unreachable input, rejected content
    +-- EmbeddingError             one embedding backend call failed
    +-- EmbeddingUnavailableError  every provider in the fallback chain failed
    +-- PersistenceError           a store read or write failed
    +-- RankingUnavailableError    the store's native ranking is unusable
    +-- LockContentionError        another ingest holds a fresh lock marker

A duplicate submission is not an error: the ingestion coordinator returns
an ``IngestResult`` with ``status == "duplicate"``.
"""

from __future__ import annotations


class CairnError(Exception):
    """Base exception for all cairn errors.

    ``__str__`` prefixes the provider name in brackets when one is set,
    e.g. ``[openai] status 429: rate limited``.
    """

    def __init__(self, message: str = "An unexpected error occurred", provider_name: str | None = None) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


class ExtractionError(CairnError):
    """Raised when source content cannot be fetched, parsed, or fails validation."""

    def __init__(self, message: str = "Content extraction failed", provider_name: str | None = None) -> None:
        super().__init__(message=message, provider_name=provider_name)


class EmbeddingError(CairnError):
    """Raised when a single embedding backend call fails.

    ``status_code`` and ``body`` carry the upstream HTTP response when known.
    """

    def __init__(
        self,
        message: str = "Embedding request failed",
        provider_name: str | None = None,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
        self.status_code = status_code
        self.body = body


class EmbeddingUnavailableError(CairnError):
    """Raised when no provider returned a non-empty embedding."""

    def __init__(self, message: str = "No embedding available: all providers failed") -> None:
        super().__init__(message=message)


class PersistenceError(CairnError):
    """Raised when the knowledge store rejects a read or write."""

    def __init__(self, message: str = "Knowledge store operation failed", provider_name: str | None = None) -> None:
        super().__init__(message=message, provider_name=provider_name)


class RankingUnavailableError(PersistenceError):
    """Raised by a store whose native vector ranking cannot serve a query."""

    def __init__(self, message: str = "Native vector ranking unavailable", provider_name: str | None = None) -> None:
        super().__init__(message=message, provider_name=provider_name)


class LockContentionError(CairnError):
    """Raised immediately when another ingestion is already in progress."""

    def __init__(self, message: str = "Another ingestion is already in progress") -> None:
        super().__init__(message=message)
