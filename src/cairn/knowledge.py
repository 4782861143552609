"""KnowledgeBase facade — one object wiring store, embedder, chunker, lock and coordinators."""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

import structlog

from cairn.config import CairnConfig, load_config
from cairn.db import open_store
from cairn.db.base import KnowledgeStore
from cairn.db.models import Source, StoreStats
from cairn.embedding.provider import EmbeddingProvider
from cairn.ingest.chunker import SentenceChunker
from cairn.ingest.extractors import Extractor, extract
from cairn.ingest.lock import IngestLock
from cairn.ingest.pipeline import IngestionCoordinator, IngestResult
from cairn.rag.retriever import QueryResult, RetrievalCoordinator
from cairn.rag.similarity import SearchResult

logger = structlog.get_logger(logger_name=__name__)


class KnowledgeBase:
    """Ingest and search a personal knowledge store.

    Use from_config() for the normal wiring; the constructor accepts
    pre-built collaborators for tests and embedding in other programs.
    """

    def __init__(
        self,
        store: KnowledgeStore,
        embedder: EmbeddingProvider,
        config: CairnConfig | None = None,
        extractor: Extractor = extract,
    ) -> None:
        self.config = config or CairnConfig()
        self.store = store
        self.embedder = embedder
        ch = self.config.chunking
        lock = IngestLock.for_database(self.config.storage.db_path, timeout=self.config.ingest.lock_timeout)
        self.ingestion = IngestionCoordinator(
            store,
            embedder,
            chunker=SentenceChunker(ch.chunk_size, ch.overlap, ch.min_chunk_size),
            lock=lock,
            extractor=extractor,
        )
        self.retrieval = RetrievalCoordinator(store, embedder, self.config.retrieval)

    @classmethod
    def from_config(
        cls, config: CairnConfig | None = None, project_dir: Path | None = None
    ) -> KnowledgeBase:
        """Build a KnowledgeBase from *config* (or the layered config files)."""
        cfg = config or load_config(project_dir)
        store = open_store(cfg.storage)
        logger.debug("knowledge_base_opened", backend=store.backend, db_path=cfg.storage.db_path)
        return cls(store, EmbeddingProvider.from_config(cfg.embedding), cfg)

    @property
    def backend(self) -> str:
        return self.store.backend

    # ------------------------------------------------------------------
    # Ingest / retrieve
    # ------------------------------------------------------------------

    async def ingest(
        self,
        value: str,
        source_type: str | None = None,
        tags: Iterable[str] = (),
        metadata: dict | None = None,
    ) -> IngestResult:
        return await self.ingestion.ingest(value, source_type=source_type, tags=tags, metadata=metadata)

    async def search(self, query: str, **options) -> list[SearchResult]:
        return await self.retrieval.search(query, **options)

    async def query(self, question: str, **options) -> QueryResult:
        return await self.retrieval.query(question, **options)

    # ------------------------------------------------------------------
    # Source management
    # ------------------------------------------------------------------

    def list_sources(
        self, limit: int = 50, offset: int = 0, source_type: str | None = None
    ) -> list[Source]:
        return self.store.list_sources(limit=limit, offset=offset, source_type=source_type)

    def get_source(self, source_id: int) -> Source | None:
        return self.store.get_source(source_id)

    def delete_source(self, source_id: int) -> int:
        """Delete a source and its chunks. Returns the number of sources removed."""
        return self.store.delete_source(source_id)

    def stats(self) -> StoreStats:
        return self.store.get_stats()

    def close(self) -> None:
        self.store.close()

    def __enter__(self) -> KnowledgeBase:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
