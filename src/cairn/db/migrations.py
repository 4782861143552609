"""Versioned schema for the SQLite knowledge store.

Migrations are forward-only and append-only. Each one runs in its own
transaction together with the schema_version row that records it, so a
failed step leaves the database at the previous version.
"""

from __future__ import annotations

import sqlite3

import structlog

logger = structlog.get_logger(logger_name=__name__)

# Created on demand by current_version().
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS sources (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    url             TEXT,
    url_normalized  TEXT UNIQUE,
    title           TEXT,
    source_type     TEXT NOT NULL,
    summary         TEXT,
    raw_content     TEXT,
    content_hash    TEXT UNIQUE,
    tags            TEXT NOT NULL DEFAULT '[]',
    metadata        TEXT NOT NULL DEFAULT '{}',
    created_at      DATETIME NOT NULL DEFAULT (datetime('now')),
    updated_at      DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS chunks (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    source_id           INTEGER NOT NULL REFERENCES sources(id) ON DELETE CASCADE,
    chunk_index         INTEGER NOT NULL,
    content             TEXT NOT NULL,
    embedding           BLOB,
    embedding_dim       INTEGER,
    embedding_provider  TEXT,
    embedding_model     TEXT,
    created_at          DATETIME NOT NULL DEFAULT (datetime('now')),
    UNIQUE (source_id, chunk_index)
);

CREATE INDEX IF NOT EXISTS idx_chunks_source ON chunks(source_id);
CREATE INDEX IF NOT EXISTS idx_sources_type ON sources(source_type);
CREATE INDEX IF NOT EXISTS idx_sources_hash ON sources(content_hash);
CREATE INDEX IF NOT EXISTS idx_sources_url ON sources(url_normalized);
"""

MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
]


def current_version(conn: sqlite3.Connection) -> int:
    """Highest applied migration version (0 for a fresh database)."""
    conn.execute(_CREATE_SCHEMA_VERSION)
    return conn.execute("SELECT COALESCE(MAX(version), 0) FROM schema_version").fetchone()[0]


def run_migrations(conn: sqlite3.Connection) -> list[int]:
    """Apply pending migrations in version order and return the versions applied.

    Safe to call on a database at any version.
    """
    start = current_version(conn)
    conn.commit()

    applied: list[int] = []
    for version, sql in sorted(MIGRATIONS):
        if version <= start:
            continue
        # executescript() commits any pending transaction before it runs.
        conn.executescript(
            f"BEGIN;\n{sql}\nINSERT INTO schema_version (version) VALUES ({int(version)});\nCOMMIT;"
        )
        applied.append(version)
        logger.info("schema_migrated", version=version)
    return applied
