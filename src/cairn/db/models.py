"""Domain models for the cairn knowledge store."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class SourceType(str, Enum):
    ARTICLE = "article"
    VIDEO = "video"
    TWEET = "tweet"
    PDF = "pdf"
    TEXT = "text"


@dataclass
class Source:
    """One deduplicated ingested unit (URL, file, or text blob)."""

    url: str | None
    title: str
    source_type: str
    raw_content: str
    content_hash: str
    url_normalized: str | None = None
    summary: str = ""
    tags: list[str] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)
    id: int | None = None  # set after insert
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Chunk:
    """A bounded slice of a source's content together with its embedding."""

    chunk_index: int
    content: str
    embedding: list[float] | None = None
    provider: str | None = None
    model: str | None = None
    source_id: int | None = None
    id: int | None = None
    created_at: str | None = None

    @property
    def embedding_dim(self) -> int | None:
        return len(self.embedding) if self.embedding is not None else None


@dataclass
class StoredChunk:
    """A persisted chunk joined with its owning source's display fields.

    ``similarity`` is filled in by ranking (native or in-process).
    """

    id: int
    source_id: int
    chunk_index: int
    content: str
    title: str | None
    url: str | None
    source_type: str
    embedding: list[float] | None = None
    similarity: float | None = None


@dataclass
class StoreStats:
    total_sources: int
    total_chunks: int
    by_type: dict[str, int]
    backend: str

    def to_dict(self) -> dict:
        return {
            "totalSources": self.total_sources,
            "totalChunks": self.total_chunks,
            "byType": dict(self.by_type),
            "backend": self.backend,
        }
