"""Schema entry point used by every SQLite store."""

from __future__ import annotations

import sqlite3

from cairn.db.migrations import MIGRATIONS, current_version, run_migrations

CURRENT_VERSION = MIGRATIONS[-1][0]


def initialize(conn: sqlite3.Connection) -> int:
    """Migrate *conn* to CURRENT_VERSION (idempotent) and return the version."""
    run_migrations(conn)
    return current_version(conn)
