"""Opening the SQLite knowledge base file.

Every connection gets the same setup: the sqlite-vec extension (provides
``vec_distance_cosine`` for native ranking), enforced foreign keys so chunk
rows cascade with their source, WAL journaling so searches can read while an
ingest commits, and a busy timeout for the brief writer overlap WAL allows.

When the interpreter's sqlite3 module cannot load extensions, the connection
is still returned; native ranking then fails per query and the similarity
engine falls back to in-process cosine.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

import sqlite_vec
import structlog

logger = structlog.get_logger(logger_name=__name__)

_BUSY_TIMEOUT_SECONDS = 5.0
_PRAGMAS: tuple[str, ...] = (
    "PRAGMA foreign_keys = ON",
    "PRAGMA journal_mode = WAL",
)


class Database:
    """A knowledge base file location plus its per-connection setup.

    Args:
        db_path: SQLite file; it and its parent directory are created on
            first connect. ``~`` is expanded.
        load_vec: Load sqlite-vec into each connection. Disable when native
            ranking is turned off in config.
    """

    def __init__(self, db_path: Path | str, *, load_vec: bool = True) -> None:
        self.db_path = Path(db_path).expanduser()
        self.load_vec = load_vec
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path, timeout=_BUSY_TIMEOUT_SECONDS)
        conn.row_factory = sqlite3.Row
        if self.load_vec:
            _load_sqlite_vec(conn)
        for pragma in _PRAGMAS:
            conn.execute(pragma)
        return conn

    def __enter__(self) -> sqlite3.Connection:
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None


def _load_sqlite_vec(conn: sqlite3.Connection) -> bool:
    """Load sqlite-vec into *conn*; return False if this sqlite3 build cannot."""
    try:
        conn.enable_load_extension(True)
    except AttributeError:
        logger.warning("sqlite_vec_unavailable", reason="sqlite3 built without extension loading")
        return False
    try:
        sqlite_vec.load(conn)
    except sqlite3.OperationalError as exc:
        logger.warning("sqlite_vec_unavailable", reason=str(exc))
        return False
    finally:
        conn.enable_load_extension(False)
    return True
