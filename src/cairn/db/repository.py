"""SQLite implementation of the knowledge store contract.

Embeddings are stored as little-endian float32 BLOBs next to the chunk text.
Native ranking uses sqlite-vec's ``vec_distance_cosine`` scalar function,
limited to chunks whose dimension matches the query vector, so chunks
embedded by a different provider never meet the query.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

from cairn.db.base import KnowledgeStore
from cairn.db.models import Chunk, Source, StoredChunk, StoreStats
from cairn.db.vectors import decode_embedding, encode_embedding
from cairn.errors import PersistenceError, RankingUnavailableError

logger = structlog.get_logger(logger_name=__name__)

_SOURCE_COLUMNS = (
    "id, url, url_normalized, title, source_type, summary, raw_content, "
    "content_hash, tags, metadata, created_at, updated_at"
)


class SqliteRepository(KnowledgeStore):
    """Data access layer over an open sqlite3.Connection.

    The connection must have sqlite-vec loaded and the schema initialised
    (see cairn.db.schema.initialize). The repository owns the connection
    and closes it in close().

    Args:
        conn: Open connection (see cairn.db.connection.Database).
        native_ranking: Rank inside SQLite via sqlite-vec. When False the
            similarity engine computes cosine similarity in-process.
    """

    backend = "sqlite"

    def __init__(self, conn: sqlite3.Connection, native_ranking: bool = True) -> None:
        self._conn = conn
        self._native_ranking = native_ranking

    @property
    def native_ranking(self) -> bool:
        return self._native_ranking

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Commit on success, roll back and raise PersistenceError on failure."""
        try:
            with self._conn:
                yield self._conn
        except sqlite3.Error as exc:
            raise PersistenceError(f"SQLite write failed: {exc}", provider_name=self.backend) from exc

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def source_exists(self, normalized_url: str | None, content_hash: str) -> int | None:
        if normalized_url:
            row = self._conn.execute(
                "SELECT id FROM sources WHERE url_normalized = ?", (normalized_url,)
            ).fetchone()
            if row:
                return row["id"]
        row = self._conn.execute(
            "SELECT id FROM sources WHERE content_hash = ?", (content_hash,)
        ).fetchone()
        return row["id"] if row else None

    def insert_source(self, source: Source) -> int:
        with self._transaction():
            return self._insert_source_row(source)

    def get_source(self, source_id: int) -> Source | None:
        row = self._conn.execute(
            f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE id = ?", (source_id,)
        ).fetchone()
        return _row_to_source(row) if row else None

    def list_sources(
        self, limit: int = 50, offset: int = 0, source_type: str | None = None
    ) -> list[Source]:
        sql = f"SELECT {_SOURCE_COLUMNS} FROM sources"
        params: list = []
        if source_type:
            sql += " WHERE source_type = ?"
            params.append(source_type)
        sql += " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        return [_row_to_source(r) for r in self._conn.execute(sql, params).fetchall()]

    def delete_source(self, source_id: int) -> int:
        """Delete a source; ON DELETE CASCADE removes its chunks in the same statement."""
        with self._transaction() as conn:
            cur = conn.execute("DELETE FROM sources WHERE id = ?", (source_id,))
        return cur.rowcount

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def insert_chunks(self, source_id: int, chunks: list[Chunk]) -> None:
        with self._transaction():
            self._insert_chunk_rows(source_id, chunks)

    def insert_source_with_chunks(self, source: Source, chunks: list[Chunk]) -> int:
        """Insert the source row and all chunk rows in a single transaction."""
        with self._transaction():
            source_id = self._insert_source_row(source)
            self._insert_chunk_rows(source_id, chunks)
        return source_id

    def get_all_chunks_with_embeddings(self) -> list[StoredChunk]:
        rows = self._conn.execute(
            """
            SELECT c.id, c.source_id, c.chunk_index, c.content, c.embedding,
                   s.title, s.url, s.source_type
            FROM chunks c
            JOIN sources s ON c.source_id = s.id
            WHERE c.embedding IS NOT NULL
            ORDER BY c.id
            """
        ).fetchall()
        return [
            StoredChunk(
                id=r["id"],
                source_id=r["source_id"],
                chunk_index=r["chunk_index"],
                content=r["content"],
                title=r["title"],
                url=r["url"],
                source_type=r["source_type"],
                embedding=decode_embedding(r["embedding"]),
            )
            for r in rows
        ]

    def vector_search(self, query_vector: list[float], k: int) -> list[StoredChunk]:
        """Cosine ranking via sqlite-vec. Ties keep insertion order (c.id)."""
        if not self._native_ranking:
            raise RankingUnavailableError("native ranking disabled", provider_name=self.backend)
        try:
            rows = self._conn.execute(
                """
                SELECT c.id, c.source_id, c.chunk_index, c.content,
                       s.title, s.url, s.source_type,
                       COALESCE(1.0 - vec_distance_cosine(c.embedding, ?), 0.0) AS similarity
                FROM chunks c
                JOIN sources s ON c.source_id = s.id
                WHERE c.embedding IS NOT NULL AND c.embedding_dim = ?
                ORDER BY similarity DESC, c.id ASC
                LIMIT ?
                """,
                (encode_embedding(query_vector), len(query_vector), k),
            ).fetchall()
        except sqlite3.OperationalError as exc:
            raise RankingUnavailableError(
                f"sqlite-vec ranking failed: {exc}", provider_name=self.backend
            ) from exc
        return [
            StoredChunk(
                id=r["id"],
                source_id=r["source_id"],
                chunk_index=r["chunk_index"],
                content=r["content"],
                title=r["title"],
                url=r["url"],
                source_type=r["source_type"],
                similarity=float(r["similarity"]),
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Stats / lifecycle
    # ------------------------------------------------------------------

    def get_stats(self) -> StoreStats:
        total_sources = self._conn.execute("SELECT COUNT(*) FROM sources").fetchone()[0]
        total_chunks = self._conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
        by_type = {
            r["source_type"]: r["count"]
            for r in self._conn.execute(
                "SELECT source_type, COUNT(*) AS count FROM sources GROUP BY source_type"
            ).fetchall()
        }
        return StoreStats(
            total_sources=total_sources,
            total_chunks=total_chunks,
            by_type=by_type,
            backend=self.backend,
        )

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Row writers (caller owns the transaction)
    # ------------------------------------------------------------------

    def _insert_source_row(self, source: Source) -> int:
        cur = self._conn.execute(
            """
            INSERT INTO sources (url, url_normalized, title, source_type, summary,
                                 raw_content, content_hash, tags, metadata)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                source.url,
                source.url_normalized,
                source.title,
                getattr(source.source_type, "value", source.source_type),
                source.summary,
                source.raw_content,
                source.content_hash,
                json.dumps(list(source.tags)),
                json.dumps(source.metadata),
            ),
        )
        source.id = cur.lastrowid
        return cur.lastrowid

    def _insert_chunk_rows(self, source_id: int, chunks: list[Chunk]) -> None:
        self._conn.executemany(
            """
            INSERT INTO chunks (source_id, chunk_index, content, embedding, embedding_dim,
                                embedding_provider, embedding_model)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    source_id,
                    i,
                    chunk.content,
                    encode_embedding(chunk.embedding) if chunk.embedding is not None else None,
                    chunk.embedding_dim,
                    chunk.provider,
                    chunk.model,
                )
                for i, chunk in enumerate(chunks)
            ],
        )
        for i, chunk in enumerate(chunks):
            chunk.source_id = source_id
            chunk.chunk_index = i
        logger.debug("chunks_inserted", source_id=source_id, count=len(chunks))


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------

def _row_to_source(row: sqlite3.Row) -> Source:
    return Source(
        id=row["id"],
        url=row["url"],
        url_normalized=row["url_normalized"],
        title=row["title"],
        source_type=row["source_type"],
        summary=row["summary"] or "",
        raw_content=row["raw_content"] or "",
        content_hash=row["content_hash"],
        tags=json.loads(row["tags"] or "[]"),
        metadata=json.loads(row["metadata"] or "{}"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
