"""Text → vector with an LRU cache, retry/backoff and provider fallback.

Resolution order for ``embed(text)``:

1. Cache hit on ``(preferred provider, text)`` → return (refreshes recency).
2. Walk the attempt chain ``[preferred, *others]``. Each backend gets the
   shared ``RetryPolicy``: up to ``max_attempts`` calls with the delay table
   between them (the last delay repeats if attempts outrun the table).
   Input is truncated to ``max_input_chars`` before every call.
3. The first non-empty vector is cached and returned.
4. When every backend is exhausted, ``EmbeddingUnavailableError`` is raised.

``embed_batch`` processes inputs in fixed groups with bounded parallelism
and a pause between groups. Output order always matches input order.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

import structlog
from cachetools import LRUCache

from cairn.config import EmbeddingCfg
from cairn.embedding.backends import EmbeddingBackend, backends_from_config
from cairn.errors import EmbeddingError, EmbeddingUnavailableError

logger = structlog.get_logger(logger_name=__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class Embedding:
    """An embedding vector labelled with the provider/model that produced it."""

    vector: list[float]
    provider: str
    model: str


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded attempts with a fixed backoff table (seconds)."""

    max_attempts: int = 3
    delays: tuple[float, ...] = (1.0, 2.0, 4.0)

    def delay_for(self, failed_attempt: int) -> float:
        """Delay after the *failed_attempt*-th failure (0-based)."""
        if not self.delays:
            return 0.0
        return self.delays[min(failed_attempt, len(self.delays) - 1)]


class EmbeddingProvider:
    """Embed text through an ordered chain of backends.

    Args:
        backends: Configured backends in primary → secondary order.
        preferred: Name of the backend tried first.
        retry: Retry policy shared by every backend in the chain.
        max_input_chars: Input truncation budget applied before each call.
        cache_size: LRU capacity (entries).
        batch_size: Group size for embed_batch().
        batch_pause: Seconds to wait between groups.
        concurrency: Maximum in-flight calls within a group.
        sleep: Awaitable sleep, injectable for tests.
    """

    def __init__(
        self,
        backends: Sequence[EmbeddingBackend],
        preferred: str = "gemini",
        retry: RetryPolicy | None = None,
        max_input_chars: int = 8_000,
        cache_size: int = 1_000,
        batch_size: int = 10,
        batch_pause: float = 0.2,
        concurrency: int = 10,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if not backends:
            raise ValueError("at least one embedding backend is required")
        if batch_size < 1 or concurrency < 1:
            raise ValueError("batch_size and concurrency must be >= 1")
        self._backends = list(backends)
        self.preferred = preferred
        self.retry = retry or RetryPolicy()
        self.max_input_chars = max_input_chars
        self.batch_size = batch_size
        self.batch_pause = batch_pause
        self.concurrency = concurrency
        self._sleep = sleep
        self._cache: LRUCache = LRUCache(maxsize=cache_size)

    @classmethod
    def from_config(cls, cfg: EmbeddingCfg, *, sleep: Sleep = asyncio.sleep) -> EmbeddingProvider:
        return cls(
            backends_from_config(cfg),
            preferred=cfg.preferred,
            retry=RetryPolicy(max_attempts=cfg.max_attempts, delays=tuple(cfg.retry_delays)),
            max_input_chars=cfg.max_input_chars,
            cache_size=cfg.cache_size,
            batch_size=cfg.batch_size,
            batch_pause=cfg.batch_pause,
            concurrency=cfg.concurrency,
            sleep=sleep,
        )

    @property
    def cache_len(self) -> int:
        return len(self._cache)

    def attempt_chain(self) -> list[EmbeddingBackend]:
        """Configured backends, preferred first, then the rest in declared order."""
        ordered = sorted(self._backends, key=lambda b: b.name != self.preferred)
        return [b for b in ordered if b.configured]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def embed(self, text: str) -> Embedding:
        """Return an embedding for *text*.

        Raises:
            EmbeddingUnavailableError: If no backend produced a vector.
        """
        key = (self.preferred, text)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        payload = text[: self.max_input_chars]
        chain = self.attempt_chain()
        if not chain:
            logger.error("no_embedding_backend_configured")

        last_error: EmbeddingError | None = None
        for position, backend in enumerate(chain):
            if position:
                logger.warning(
                    "embedding_provider_fallback",
                    from_provider=chain[position - 1].name,
                    to_provider=backend.name,
                )
            try:
                vector = await self._call_with_retry(backend, payload)
            except EmbeddingError as exc:
                last_error = exc
                continue
            result = Embedding(vector=vector, provider=backend.name, model=backend.model_name)
            self._cache[key] = result
            return result

        raise EmbeddingUnavailableError() from last_error

    async def embed_batch(self, texts: Sequence[str]) -> list[Embedding]:
        """Embed *texts* in groups of ``batch_size``, preserving input order.

        Raises:
            EmbeddingUnavailableError: If any single text cannot be embedded.
        """
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _bounded(text: str) -> Embedding:
            async with semaphore:
                return await self.embed(text)

        results: list[Embedding] = []
        for start in range(0, len(texts), self.batch_size):
            if start:
                await self._sleep(self.batch_pause)
            group = texts[start : start + self.batch_size]
            tasks = [asyncio.create_task(_bounded(t)) for t in group]
            try:
                results.extend(await asyncio.gather(*tasks))
            except BaseException:
                # One failure aborts the batch; siblings must not keep calling upstream.
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise
        return results

    # ------------------------------------------------------------------
    # Retry
    # ------------------------------------------------------------------

    async def _call_with_retry(self, backend: EmbeddingBackend, payload: str) -> list[float]:
        attempts = max(1, self.retry.max_attempts)
        for attempt in range(attempts - 1):
            try:
                return await backend.embed(payload)
            except EmbeddingError as exc:
                delay = self.retry.delay_for(attempt)
                logger.warning(
                    "embedding_retry",
                    provider=backend.name,
                    attempt=attempt + 1,
                    delay=delay,
                    status_code=exc.status_code,
                    error=str(exc),
                )
                await self._sleep(delay)
        try:
            return await backend.embed(payload)
        except EmbeddingError as exc:
            logger.warning(
                "embedding_provider_exhausted",
                provider=backend.name,
                attempts=attempts,
                error=str(exc),
            )
            raise
