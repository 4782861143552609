"""Retrieval coordinator: embed query → rank → (optionally) assemble a prompt.

Search and query are read-only and take no ingestion lock.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from cairn.config import RetrievalCfg
from cairn.db.base import KnowledgeStore
from cairn.embedding.provider import EmbeddingProvider
from cairn.rag.assembler import build_context, build_prompt
from cairn.rag.similarity import SearchResult, SimilarityEngine

logger = structlog.get_logger(logger_name=__name__)


@dataclass
class QueryResult:
    """LLM-ready query envelope. ``answer`` is always None: no generation here."""

    results: list[SearchResult] = field(default_factory=list)
    prompt: str | None = None
    context: str | None = None
    backend: str = ""
    answer: str | None = None

    def to_dict(self) -> dict:
        return {
            "answer": self.answer,
            "results": [r.to_dict() for r in self.results],
            "prompt": self.prompt,
            "context": self.context,
            "backend": self.backend,
        }


class RetrievalCoordinator:
    """Answer semantic searches against a knowledge store.

    Args:
        store: Knowledge store to search.
        embedder: Provider used to embed the query text.
        config: Retrieval defaults (top_k, truncation, dedup).
    """

    def __init__(
        self,
        store: KnowledgeStore,
        embedder: EmbeddingProvider,
        config: RetrievalCfg | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._config = config or RetrievalCfg()
        self.engine = SimilarityEngine(store, candidate_multiplier=self._config.candidate_multiplier)

    async def search(
        self,
        query: str,
        top_k: int | None = None,
        max_chars_per_result: int | None = None,
        dedupe_by_source: bool | None = None,
    ) -> list[SearchResult]:
        """Embed *query* and return ranked, projected results.

        Raises:
            EmbeddingUnavailableError: If the query cannot be embedded.
        """
        cfg = self._config
        embedding = await self._embedder.embed(query)
        results = self.engine.search(
            embedding.vector,
            top_k=top_k if top_k is not None else cfg.top_k,
            dedupe=cfg.dedupe_by_source if dedupe_by_source is None else dedupe_by_source,
            max_chars=max_chars_per_result if max_chars_per_result is not None else cfg.max_chars_per_result,
        )
        logger.info(
            "search_completed",
            backend=self._store.backend,
            path=self.engine.last_path,
            provider=embedding.provider,
            results=len(results),
        )
        return results

    async def query(
        self,
        question: str,
        top_k: int | None = None,
        max_chars_per_result: int | None = None,
        dedupe_by_source: bool | None = None,
    ) -> QueryResult:
        """Search, then build the grounding context and instruction prompt."""
        results = await self.search(
            question,
            top_k=top_k,
            max_chars_per_result=max_chars_per_result,
            dedupe_by_source=dedupe_by_source,
        )
        if not results:
            return QueryResult(backend=self._store.backend)

        context = build_context(results)
        return QueryResult(
            results=results,
            prompt=build_prompt(question, context),
            context=context,
            backend=self._store.backend,
        )
