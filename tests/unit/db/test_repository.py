"""Tests for the SQLite knowledge store."""

from __future__ import annotations

import sqlite3

import pytest

from cairn.db.models import Chunk, Source, SourceType
from cairn.db.repository import SqliteRepository
from cairn.errors import PersistenceError, RankingUnavailableError


def _source(hash="h1", url="https://example.com/a", normalized="https://example.com/a", kind=SourceType.ARTICLE, title="A"):
    return Source(
        url=url,
        url_normalized=normalized,
        title=title,
        source_type=kind,
        raw_content="body",
        content_hash=hash,
        summary="excerpt",
        tags=["x", "y"],
        metadata={"k": 1},
    )


def _chunks(*vectors, provider="gemini", model="text-embedding-004"):
    return [
        Chunk(chunk_index=i, content=f"chunk {i}", embedding=list(v), provider=provider, model=model)
        for i, v in enumerate(vectors)
    ]


# ------------------------------------------------------------------
# Sources
# ------------------------------------------------------------------

def test_insert_and_get_source_round_trips_json_fields(repo):
    source_id = repo.insert_source(_source())
    got = repo.get_source(source_id)
    assert got is not None
    assert got.id == source_id
    assert got.source_type == "article"
    assert got.tags == ["x", "y"]
    assert got.metadata == {"k": 1}
    assert got.created_at is not None


def test_get_source_not_found(repo):
    assert repo.get_source(999) is None


def test_source_exists_by_normalized_url(repo):
    source_id = repo.insert_source(_source())
    assert repo.source_exists("https://example.com/a", "other-hash") == source_id


def test_source_exists_by_hash(repo):
    source_id = repo.insert_source(_source(url=None, normalized=None))
    assert repo.source_exists(None, "h1") == source_id
    assert repo.source_exists("https://elsewhere.com", "h1") == source_id


def test_source_exists_miss(repo):
    repo.insert_source(_source())
    assert repo.source_exists("https://example.com/b", "h2") is None


def test_duplicate_hash_raises_persistence_error(repo):
    repo.insert_source(_source())
    with pytest.raises(PersistenceError):
        repo.insert_source(_source(normalized="https://example.com/other"))


def test_list_sources_newest_first_with_filter_and_paging(repo):
    ids = [
        repo.insert_source(_source(hash=f"h{i}", normalized=f"u{i}", kind=kind))
        for i, kind in enumerate([SourceType.ARTICLE, SourceType.TEXT, SourceType.ARTICLE])
    ]
    listed = repo.list_sources()
    assert [s.id for s in listed] == list(reversed(ids))
    assert [s.id for s in repo.list_sources(source_type="article")] == [ids[2], ids[0]]
    assert [s.id for s in repo.list_sources(limit=1, offset=1)] == [ids[1]]


def test_delete_source_cascades_chunks(repo, tmp_db):
    source_id = repo.insert_source_with_chunks(_source(), _chunks([1.0, 0.0], [0.0, 1.0]))
    assert repo.delete_source(source_id) == 1
    assert repo.get_source(source_id) is None
    assert tmp_db.execute("SELECT COUNT(*) FROM chunks").fetchone()[0] == 0


def test_delete_missing_source_reports_zero_changes(repo):
    assert repo.delete_source(42) == 0


# ------------------------------------------------------------------
# Chunks
# ------------------------------------------------------------------

def test_insert_chunks_assigns_contiguous_indexes(repo, tmp_db):
    source_id = repo.insert_source(_source())
    chunks = [
        Chunk(chunk_index=7, content="a", embedding=[1.0, 0.0], provider="openai", model="m"),
        Chunk(chunk_index=3, content="b", embedding=[0.0, 1.0], provider="openai", model="m"),
    ]
    repo.insert_chunks(source_id, chunks)
    rows = tmp_db.execute(
        "SELECT chunk_index, content, embedding_dim, embedding_provider FROM chunks ORDER BY id"
    ).fetchall()
    assert [(r[0], r[1], r[2], r[3]) for r in rows] == [(0, "a", 2, "openai"), (1, "b", 2, "openai")]
    assert all(c.source_id == source_id for c in chunks)


def test_insert_source_with_chunks_rolls_back_on_chunk_failure(repo, tmp_db):
    chunks = _chunks([1.0, 0.0])
    chunks[0].content = None  # violates NOT NULL
    with pytest.raises(PersistenceError):
        repo.insert_source_with_chunks(_source(), chunks)
    assert tmp_db.execute("SELECT COUNT(*) FROM sources").fetchone()[0] == 0
    assert tmp_db.execute("SELECT COUNT(*) FROM chunks").fetchone()[0] == 0


def test_get_all_chunks_with_embeddings_joins_source_fields(repo):
    source_id = repo.insert_source_with_chunks(_source(title="Doc"), _chunks([0.5, 0.5], [1.0, 0.0]))
    stored = repo.get_all_chunks_with_embeddings()
    assert [c.chunk_index for c in stored] == [0, 1]
    assert stored[0].source_id == source_id
    assert stored[0].title == "Doc"
    assert stored[0].url == "https://example.com/a"
    assert stored[0].source_type == "article"
    assert stored[0].embedding == [0.5, 0.5]


# ------------------------------------------------------------------
# Native ranking
# ------------------------------------------------------------------

def test_vector_search_orders_by_cosine(repo):
    repo.insert_source_with_chunks(_source(), _chunks([0.0, 1.0], [1.0, 0.0], [1.0, 1.0]))
    hits = repo.vector_search([1.0, 0.0], k=3)
    assert [h.chunk_index for h in hits] == [1, 2, 0]
    assert hits[0].similarity == pytest.approx(1.0, abs=1e-5)
    assert hits[2].similarity == pytest.approx(0.0, abs=1e-5)


def test_vector_search_limits_and_skips_other_dimensions(repo):
    repo.insert_source_with_chunks(_source(), _chunks([1.0, 0.0], [0.0, 1.0]))
    repo.insert_source_with_chunks(
        _source(hash="h2", normalized="u2"), _chunks([1.0, 0.0, 0.0], provider="openai")
    )
    hits = repo.vector_search([1.0, 0.0], k=1)
    assert len(hits) == 1
    assert hits[0].chunk_index == 0


def test_vector_search_disabled_raises_ranking_unavailable(tmp_db):
    repo = SqliteRepository(tmp_db, native_ranking=False)
    assert repo.native_ranking is False
    with pytest.raises(RankingUnavailableError):
        repo.vector_search([1.0], k=1)


# ------------------------------------------------------------------
# Stats / contract flags
# ------------------------------------------------------------------

def test_get_stats(repo):
    repo.insert_source_with_chunks(_source(), _chunks([1.0, 0.0], [0.0, 1.0]))
    repo.insert_source_with_chunks(
        _source(hash="h2", normalized=None, kind=SourceType.TEXT), _chunks([1.0, 1.0])
    )
    stats = repo.get_stats()
    assert stats.total_sources == 2
    assert stats.total_chunks == 3
    assert stats.by_type == {"article": 1, "text": 1}
    assert stats.to_dict() == {
        "totalSources": 2,
        "totalChunks": 3,
        "byType": {"article": 1, "text": 1},
        "backend": "sqlite",
    }


def test_sqlite_store_needs_file_lock(repo):
    assert repo.backend == "sqlite"
    assert repo.arbitrates_writers is False


def test_close_closes_connection(tmp_db):
    SqliteRepository(tmp_db).close()
    with pytest.raises(sqlite3.ProgrammingError):
        tmp_db.execute("SELECT 1")
