"""Similarity ranking over stored chunks.

Two ranking paths yield the same result shape:
  - native: the store ranks inside the backend (sqlite-vec / pgvector RPC)
  - fallback: cosine similarity computed in-process over every embedded chunk

The fallback is used when the store has no native ranking or when native
ranking raises RankingUnavailableError for a query.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

import structlog

from cairn.db.base import KnowledgeStore
from cairn.db.models import StoredChunk
from cairn.errors import RankingUnavailableError

logger = structlog.get_logger(logger_name=__name__)


@dataclass
class SearchResult:
    """Projection of a ranked chunk returned to callers."""

    source_id: int
    title: str | None
    url: str | None
    source_type: str
    content: str
    similarity: float
    chunk_index: int

    def to_dict(self) -> dict:
        return {
            "sourceId": self.source_id,
            "title": self.title,
            "url": self.url,
            "sourceType": self.source_type,
            "content": self.content,
            "similarity": self.similarity,
            "chunkIndex": self.chunk_index,
        }


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between *a* and *b*, in [-1, 1].

    Returns 0.0 when the lengths differ or either vector has zero norm.
    """
    if len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (norm_a * norm_b)


def rank_chunks(query_vector: Sequence[float], chunks: list[StoredChunk]) -> list[StoredChunk]:
    """Score every embedded chunk and sort best-first.

    The sort is stable: chunks with equal similarity keep their input order.
    """
    scored = [c for c in chunks if c.embedding is not None]
    for chunk in scored:
        chunk.similarity = cosine_similarity(query_vector, chunk.embedding)
    return sorted(scored, key=lambda c: c.similarity, reverse=True)


def dedupe_by_source(ranked: list[StoredChunk]) -> list[StoredChunk]:
    """Keep only the first (highest-ranked) chunk per source, preserving order."""
    seen: set[int] = set()
    kept: list[StoredChunk] = []
    for chunk in ranked:
        if chunk.source_id in seen:
            continue
        seen.add(chunk.source_id)
        kept.append(chunk)
    return kept


class SimilarityEngine:
    """Rank a store's chunks against a query vector.

    Args:
        store: Knowledge store to rank against.
        candidate_multiplier: Native ranking fetches ``top_k * multiplier``
            candidates so that per-source dedup can still fill ``top_k``.
            When a full candidate page still dedupes to fewer than ``top_k``
            sources, the request is doubled until it fills or the store runs dry.
    """

    def __init__(self, store: KnowledgeStore, candidate_multiplier: int = 3) -> None:
        self._store = store
        self.candidate_multiplier = max(1, candidate_multiplier)
        self.last_path: str | None = None

    def search(
        self,
        query_vector: Sequence[float],
        top_k: int = 10,
        dedupe: bool = True,
        max_chars: int = 2_500,
    ) -> list[SearchResult]:
        """Return the top-K projected results for *query_vector*."""
        query = list(query_vector)
        candidates = top_k * self.candidate_multiplier
        ranked = self._rank(query, candidates)
        while (
            dedupe
            and self.last_path == "native"
            and len(ranked) >= candidates
            and len(dedupe_by_source(ranked)) < top_k
        ):
            candidates *= 2
            logger.debug("native_candidates_expanded", candidates=candidates, top_k=top_k)
            ranked = self._rank(query, candidates)
        if dedupe:
            ranked = dedupe_by_source(ranked)
        return [_project(c, max_chars) for c in ranked[:top_k]]

    def _rank(self, query_vector: list[float], candidates: int) -> list[StoredChunk]:
        if self._store.native_ranking:
            try:
                ranked = self._store.vector_search(query_vector, candidates)
            except RankingUnavailableError as exc:
                logger.warning("native_ranking_unavailable", backend=self._store.backend, error=str(exc))
            else:
                self.last_path = "native"
                logger.info("search_ranked", path="native", backend=self._store.backend, hits=len(ranked))
                return ranked

        chunks = self._store.get_all_chunks_with_embeddings()
        self.last_path = "fallback"
        logger.info("search_ranked", path="fallback", backend=self._store.backend, pool=len(chunks))
        return rank_chunks(query_vector, chunks)


def _project(chunk: StoredChunk, max_chars: int) -> SearchResult:
    return SearchResult(
        source_id=chunk.source_id,
        title=chunk.title,
        url=chunk.url,
        source_type=chunk.source_type,
        content=chunk.content[:max_chars],
        similarity=float(chunk.similarity or 0.0),
        chunk_index=chunk.chunk_index,
    )
