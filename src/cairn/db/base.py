"""Knowledge store contract shared by every persistence backend.

Callers (the ingestion and retrieval coordinators) depend only on this
interface; the concrete backend is chosen once, at construction, by
``cairn.db.open_store()``. The only behavioural branch the core takes on a
backend is ``native_ranking``: whether ``vector_search()`` may be used.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from cairn.db.models import Chunk, Source, StoredChunk, StoreStats


class KnowledgeStore(ABC):
    """Abstract persistence collaborator for sources and embedded chunks."""

    #: Short backend name reported in results and stats.
    backend: str = ""

    @property
    def native_ranking(self) -> bool:
        """True when vector_search() ranks inside the backend."""
        return False

    @property
    def arbitrates_writers(self) -> bool:
        """True when the backend itself serializes concurrent writers.

        When False, the ingestion coordinator takes the file lock.
        """
        return False

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    @abstractmethod
    def source_exists(self, normalized_url: str | None, content_hash: str) -> int | None:
        """Return the id of a source matching either dedup key, or None.

        The normalized URL is checked first, then the content hash.
        """

    @abstractmethod
    def insert_source(self, source: Source) -> int:
        """Insert *source* and return its new id."""

    @abstractmethod
    def get_source(self, source_id: int) -> Source | None:
        """Return the full source row, or None if not found."""

    @abstractmethod
    def list_sources(
        self, limit: int = 50, offset: int = 0, source_type: str | None = None
    ) -> list[Source]:
        """Return sources newest first, optionally filtered by type."""

    @abstractmethod
    def delete_source(self, source_id: int) -> int:
        """Delete a source and (by cascade) its chunks. Returns rows removed."""

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    @abstractmethod
    def insert_chunks(self, source_id: int, chunks: list[Chunk]) -> None:
        """Insert all *chunks* for *source_id* as one batch.

        ``chunk_index`` is assigned from list position (0..N-1).
        """

    def insert_source_with_chunks(self, source: Source, chunks: list[Chunk]) -> int:
        """Insert a source and its chunk batch as one unit. Returns the source id.

        Backends override this to make the pair atomic.
        """
        source_id = self.insert_source(source)
        self.insert_chunks(source_id, chunks)
        return source_id

    @abstractmethod
    def get_all_chunks_with_embeddings(self) -> list[StoredChunk]:
        """Return every chunk that has an embedding, in insertion order."""

    def vector_search(self, query_vector: list[float], k: int) -> list[StoredChunk]:
        """Rank chunks inside the backend. Only valid when native_ranking is True.

        Raises:
            RankingUnavailableError: If native ranking fails for this query.
        """
        raise NotImplementedError(f"{type(self).__name__} has no native vector ranking")

    # ------------------------------------------------------------------
    # Stats / lifecycle
    # ------------------------------------------------------------------

    @abstractmethod
    def get_stats(self) -> StoreStats:
        """Return source/chunk totals and a per-type source count."""

    def close(self) -> None:
        """Release backend resources (no-op by default)."""
