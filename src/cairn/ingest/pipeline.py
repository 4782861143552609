"""Ingestion coordinator: extract → dedup-check → chunk → embed → persist.

State machine (FAILED reachable from any state)::

    IDLE → LOCKED → EXTRACTING → DUPLICATE_CHECK → CHUNKING → EMBEDDING
         → PERSISTING → DONE

Every chunk is embedded before anything is written, so an embedding failure
leaves the store untouched. The lock is released on every exit path,
including the duplicate short-circuit.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

import structlog

from cairn.db.base import KnowledgeStore
from cairn.db.models import Chunk, Source
from cairn.embedding.provider import EmbeddingProvider
from cairn.errors import ExtractionError
from cairn.ingest.chunker import SentenceChunker
from cairn.ingest.dedup import Deduplicator
from cairn.ingest.extractors import Extractor, extract
from cairn.ingest.lock import IngestLock, NullLock

logger = structlog.get_logger(logger_name=__name__)


class IngestState(str, Enum):
    IDLE = "idle"
    LOCKED = "locked"
    EXTRACTING = "extracting"
    DUPLICATE_CHECK = "duplicate_check"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class IngestRun:
    """State trace of one ingest call, never shared between calls."""

    state: IngestState = IngestState.IDLE
    history: list[IngestState] = field(default_factory=list)

    def enter(self, state: IngestState) -> None:
        self.state = state
        self.history.append(state)


@dataclass
class IngestResult:
    """Outcome of one ingest call: ``status`` is "success" or "duplicate"."""

    status: str
    source_id: int
    title: str | None = None
    source_type: str | None = None
    chunk_count: int | None = None
    backend: str | None = None

    def to_dict(self) -> dict:
        if self.status == "duplicate":
            return {"status": self.status, "sourceId": self.source_id}
        return {
            "status": self.status,
            "sourceId": self.source_id,
            "title": self.title,
            "sourceType": self.source_type,
            "chunkCount": self.chunk_count,
            "backend": self.backend,
        }


class IngestionCoordinator:
    """Serialize and run ingests into one knowledge store.

    Args:
        store: Target knowledge store.
        embedder: Embedding provider for chunk vectors.
        chunker: Sentence chunker (defaults to 800/200/100).
        lock: IngestLock for stores that do not arbitrate writers; ignored
            (replaced by NullLock) when ``store.arbitrates_writers``.
        extractor: Callable ``(input, source_type) → ExtractedContent``.
    """

    def __init__(
        self,
        store: KnowledgeStore,
        embedder: EmbeddingProvider,
        chunker: SentenceChunker | None = None,
        lock: IngestLock | NullLock | None = None,
        extractor: Extractor = extract,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._chunker = chunker or SentenceChunker()
        self._lock = NullLock() if store.arbitrates_writers or lock is None else lock
        self._extractor = extractor
        self._dedup = Deduplicator(store)
        self.last_run: IngestRun | None = None

    async def ingest(
        self,
        value: str,
        source_type: str | None = None,
        tags: Iterable[str] = (),
        metadata: dict | None = None,
        run: IngestRun | None = None,
    ) -> IngestResult:
        """Ingest a URL, file path or raw text.

        Each call records its states on its own IngestRun (*run*, or a fresh
        one), also published as ``last_run`` when the call starts.

        Raises:
            LockContentionError: Another ingest holds a fresh lock.
            ExtractionError: Extraction or content validation failed.
            EmbeddingUnavailableError: A chunk could not be embedded.
            PersistenceError: The store rejected the write.
        """
        run = run or IngestRun()
        self.last_run = run
        run.enter(IngestState.IDLE)
        try:
            with self._lock:
                run.enter(IngestState.LOCKED)
                return await self._run(run, value, source_type, list(tags), dict(metadata or {}))
        except Exception as exc:
            run.enter(IngestState.FAILED)
            logger.warning("ingest_failed", input=value[:100], error=str(exc), error_type=type(exc).__name__)
            raise

    async def _run(
        self, run: IngestRun, value: str, source_type: str | None, tags: list[str], metadata: dict
    ) -> IngestResult:
        run.enter(IngestState.EXTRACTING)
        logger.info("extracting", input=value[:100], source_type=source_type)
        extracted = await asyncio.to_thread(self._extractor, value, source_type)

        run.enter(IngestState.DUPLICATE_CHECK)
        check = self._dedup.check(extracted.url, extracted.content)
        if check.is_duplicate:
            run.enter(IngestState.DONE)
            return IngestResult(status="duplicate", source_id=check.existing_id)

        run.enter(IngestState.CHUNKING)
        pieces = self._chunker.chunk(extracted.content)
        if not pieces:
            raise ExtractionError("Extracted content is empty after normalization")
        logger.info("chunked", chars=len(extracted.content), chunks=len(pieces))

        run.enter(IngestState.EMBEDDING)
        embeddings = await self._embedder.embed_batch([p.content for p in pieces])

        run.enter(IngestState.PERSISTING)
        source = Source(
            url=extracted.url,
            url_normalized=check.normalized_url,
            title=extracted.title,
            source_type=extracted.source_type,
            raw_content=extracted.content,
            content_hash=check.content_hash,
            summary=extracted.excerpt,
            tags=tags,
            metadata=metadata,
        )
        chunks = [
            Chunk(
                chunk_index=piece.index,
                content=piece.content,
                embedding=emb.vector,
                provider=emb.provider,
                model=emb.model,
            )
            for piece, emb in zip(pieces, embeddings)
        ]
        source_id = self._store.insert_source_with_chunks(source, chunks)

        run.enter(IngestState.DONE)
        logger.info(
            "ingest_succeeded",
            source_id=source_id,
            title=extracted.title,
            source_type=extracted.source_type,
            chunks=len(chunks),
            backend=self._store.backend,
        )
        return IngestResult(
            status="success",
            source_id=source_id,
            title=extracted.title,
            source_type=extracted.source_type,
            chunk_count=len(chunks),
            backend=self._store.backend,
        )
