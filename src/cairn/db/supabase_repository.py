"""Supabase (Postgres + pgvector) implementation of the knowledge store contract.

Expected schema: tables ``rag_sources`` and ``rag_chunks`` mirroring the
SQLite layout (``rag_chunks.source_id`` references ``rag_sources.id`` with
ON DELETE CASCADE, ``embedding vector``), plus an RPC function::

    match_rag_chunks(query_embedding vector, match_count int)
      returns table (id, source_id, chunk_index, content, title, url,
                     source_type, similarity)

PostgREST offers no multi-statement transactions, so the source/chunk pair
is made atomic by deleting the source row again when the chunk batch fails.
Postgres arbitrates concurrent writers, so ingestion takes no file lock.
"""

from __future__ import annotations

import structlog
from supabase import Client, PostgrestAPIError, create_client

from cairn.db.base import KnowledgeStore
from cairn.db.models import Chunk, Source, StoredChunk, StoreStats
from cairn.db.vectors import from_pgvector, to_pgvector
from cairn.errors import PersistenceError, RankingUnavailableError

logger = structlog.get_logger(logger_name=__name__)

_SOURCES = "rag_sources"
_CHUNKS = "rag_chunks"
_MATCH_RPC = "match_rag_chunks"
# PostgREST caps each response at db-max-rows (1000 by default).
_PAGE_SIZE = 1000


class SupabaseRepository(KnowledgeStore):
    """Knowledge store backed by a Supabase project.

    Args:
        client: A supabase-py ``Client`` (see from_credentials()).
    """

    backend = "supabase"

    def __init__(self, client: Client) -> None:
        self._client = client

    @classmethod
    def from_credentials(cls, url: str, key: str) -> SupabaseRepository:
        if not url or not key:
            raise PersistenceError(
                "SUPABASE_URL and SUPABASE_KEY are required for the Supabase backend",
                provider_name=cls.backend,
            )
        return cls(create_client(url, key))

    @property
    def native_ranking(self) -> bool:
        return True

    @property
    def arbitrates_writers(self) -> bool:
        return True

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def source_exists(self, normalized_url: str | None, content_hash: str) -> int | None:
        try:
            if normalized_url:
                by_url = (
                    self._client.table(_SOURCES)
                    .select("id")
                    .eq("url_normalized", normalized_url)
                    .limit(1)
                    .execute()
                )
                if by_url.data:
                    return by_url.data[0]["id"]
            by_hash = (
                self._client.table(_SOURCES)
                .select("id")
                .eq("content_hash", content_hash)
                .limit(1)
                .execute()
            )
        except PostgrestAPIError as exc:
            raise _persistence_error("duplicate lookup", exc) from exc
        return by_hash.data[0]["id"] if by_hash.data else None

    def insert_source(self, source: Source) -> int:
        payload = {
            "url": source.url,
            "url_normalized": source.url_normalized,
            "title": source.title,
            "source_type": getattr(source.source_type, "value", source.source_type),
            "summary": source.summary,
            "raw_content": source.raw_content,
            "content_hash": source.content_hash,
            "tags": list(source.tags),
            "metadata": source.metadata,
        }
        try:
            result = self._client.table(_SOURCES).insert(payload).execute()
        except PostgrestAPIError as exc:
            raise _persistence_error("source insert", exc) from exc
        source.id = result.data[0]["id"]
        return source.id

    def get_source(self, source_id: int) -> Source | None:
        try:
            result = self._client.table(_SOURCES).select("*").eq("id", source_id).limit(1).execute()
        except PostgrestAPIError as exc:
            raise _persistence_error("source lookup", exc) from exc
        return _record_to_source(result.data[0]) if result.data else None

    def list_sources(
        self, limit: int = 50, offset: int = 0, source_type: str | None = None
    ) -> list[Source]:
        query = self._client.table(_SOURCES).select("*")
        if source_type:
            query = query.eq("source_type", source_type)
        try:
            result = (
                query.order("created_at", desc=True)
                .range(offset, offset + limit - 1)
                .execute()
            )
        except PostgrestAPIError as exc:
            raise _persistence_error("source listing", exc) from exc
        return [_record_to_source(r) for r in result.data]

    def delete_source(self, source_id: int) -> int:
        try:
            result = self._client.table(_SOURCES).delete().eq("id", source_id).execute()
        except PostgrestAPIError as exc:
            raise _persistence_error("source delete", exc) from exc
        return len(result.data or [])

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def insert_chunks(self, source_id: int, chunks: list[Chunk]) -> None:
        rows = [
            {
                "source_id": source_id,
                "chunk_index": i,
                "content": chunk.content,
                "embedding": to_pgvector(chunk.embedding) if chunk.embedding is not None else None,
                "embedding_provider": chunk.provider,
                "embedding_model": chunk.model,
            }
            for i, chunk in enumerate(chunks)
        ]
        try:
            self._client.table(_CHUNKS).insert(rows).execute()
        except PostgrestAPIError as exc:
            raise _persistence_error("chunk insert", exc) from exc
        for i, chunk in enumerate(chunks):
            chunk.source_id = source_id
            chunk.chunk_index = i

    def insert_source_with_chunks(self, source: Source, chunks: list[Chunk]) -> int:
        """Insert source then chunks; delete the source again if the chunks fail."""
        source_id = self.insert_source(source)
        try:
            self.insert_chunks(source_id, chunks)
        except PersistenceError:
            logger.warning("chunk_insert_failed_rolling_back_source", source_id=source_id)
            self.delete_source(source_id)
            source.id = None
            raise
        return source_id

    def get_all_chunks_with_embeddings(self) -> list[StoredChunk]:
        try:
            rows = self._select_all(
                lambda: self._client.table(_CHUNKS)
                .select(
                    "id, source_id, chunk_index, content, embedding, "
                    f"{_SOURCES}!inner(title, url, source_type)"
                )
                .not_.is_("embedding", "null")
                .order("id")
            )
        except PostgrestAPIError as exc:
            raise _persistence_error("chunk scan", exc) from exc
        return [
            StoredChunk(
                id=r["id"],
                source_id=r["source_id"],
                chunk_index=r["chunk_index"],
                content=r["content"],
                title=r[_SOURCES]["title"],
                url=r[_SOURCES]["url"],
                source_type=r[_SOURCES]["source_type"],
                embedding=from_pgvector(r["embedding"]),
            )
            for r in rows
        ]

    def vector_search(self, query_vector: list[float], k: int) -> list[StoredChunk]:
        try:
            result = self._client.rpc(
                _MATCH_RPC, {"query_embedding": query_vector, "match_count": k}
            ).execute()
        except PostgrestAPIError as exc:
            raise RankingUnavailableError(
                f"{_MATCH_RPC} RPC failed: {exc}", provider_name=self.backend
            ) from exc
        return [
            StoredChunk(
                id=r["id"],
                source_id=r["source_id"],
                chunk_index=r["chunk_index"],
                content=r["content"],
                title=r.get("title"),
                url=r.get("url"),
                source_type=r["source_type"],
                similarity=float(r["similarity"]),
            )
            for r in result.data or []
        ]

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_stats(self) -> StoreStats:
        try:
            sources = self._client.table(_SOURCES).select("id", count="exact").limit(1).execute()
            chunks = self._client.table(_CHUNKS).select("id", count="exact").limit(1).execute()
            types = self._select_all(
                lambda: self._client.table(_SOURCES).select("source_type").order("id")
            )
        except PostgrestAPIError as exc:
            raise _persistence_error("stats", exc) from exc

        by_type: dict[str, int] = {}
        for row in types:
            by_type[row["source_type"]] = by_type.get(row["source_type"], 0) + 1
        return StoreStats(
            total_sources=sources.count or 0,
            total_chunks=chunks.count or 0,
            by_type=by_type,
            backend=self.backend,
        )

    def _select_all(self, build_query) -> list[dict]:
        """Run a select page by page until a short page comes back.

        *build_query* returns a fresh, ordered query builder for each page.
        """
        rows: list[dict] = []
        start = 0
        while True:
            page = build_query().range(start, start + _PAGE_SIZE - 1).execute().data or []
            rows.extend(page)
            if len(page) < _PAGE_SIZE:
                return rows
            start += _PAGE_SIZE


def _persistence_error(operation: str, exc: PostgrestAPIError) -> PersistenceError:
    return PersistenceError(f"Supabase {operation} failed: {exc}", provider_name="supabase")


def _record_to_source(r: dict) -> Source:
    return Source(
        id=r["id"],
        url=r.get("url"),
        url_normalized=r.get("url_normalized"),
        title=r.get("title") or "",
        source_type=r["source_type"],
        summary=r.get("summary") or "",
        raw_content=r.get("raw_content") or "",
        content_hash=r.get("content_hash") or "",
        tags=list(r.get("tags") or []),
        metadata=dict(r.get("metadata") or {}),
        created_at=r.get("created_at"),
        updated_at=r.get("updated_at"),
    )
