"""cairn persistence layer."""

from __future__ import annotations

from cairn.config import StorageCfg, resolve_backend, supabase_key
from cairn.db.base import KnowledgeStore
from cairn.db.connection import Database
from cairn.db.migrations import MIGRATIONS, run_migrations
from cairn.db.models import Chunk, Source, SourceType, StoredChunk, StoreStats
from cairn.db.repository import SqliteRepository
from cairn.db.schema import initialize

__all__ = [
    "Chunk",
    "Database",
    "KnowledgeStore",
    "MIGRATIONS",
    "Source",
    "SourceType",
    "SqliteRepository",
    "StoreStats",
    "StoredChunk",
    "initialize",
    "open_store",
    "run_migrations",
]


def open_store(cfg: StorageCfg) -> KnowledgeStore:
    """Construct the knowledge store selected by *cfg*.

    ``backend: auto`` picks Supabase when SUPABASE_URL and a Supabase key
    are present in the environment, SQLite otherwise.
    """
    backend = resolve_backend(cfg)
    if backend == "supabase":
        from cairn.db.supabase_repository import SupabaseRepository

        return SupabaseRepository.from_credentials(cfg.supabase_url or "", supabase_key() or "")

    conn = Database(cfg.db_path, load_vec=cfg.native_ranking).connect()
    initialize(conn)
    return SqliteRepository(conn, native_ranking=cfg.native_ranking)
