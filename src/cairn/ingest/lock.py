"""Advisory ingestion lock: a marker file next to the database.

Only one ingest may run per database at a time. The marker holds the PID
of the owner. A marker older than the stale timeout is assumed to belong
to a crashed run and is replaced.
"""

from __future__ import annotations

import os
import time
from pathlib import Path
from types import TracebackType

import structlog

from cairn.errors import LockContentionError

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_TIMEOUT: float = 15 * 60


class IngestLock:
    """Exclusive marker-file lock used as a context manager.

    Args:
        path: Marker file path (see for_database()).
        timeout: Age in seconds after which an existing marker is stale.
    """

    def __init__(self, path: Path | str, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.path = Path(path)
        self.timeout = timeout
        self._held = False

    @classmethod
    def for_database(cls, db_path: Path | str, timeout: float = DEFAULT_TIMEOUT) -> IngestLock:
        db_path = Path(db_path).expanduser()
        return cls(db_path.with_name(db_path.name + ".lock"), timeout=timeout)

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> None:
        """Create the marker or raise LockContentionError if a fresh one exists."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._create()
        except FileExistsError:
            self._break_if_stale()
            try:
                self._create()
            except FileExistsError:
                raise LockContentionError() from None
        self._held = True

    def release(self) -> None:
        if not self._held:
            return
        self._held = False
        try:
            self.path.unlink()
        except FileNotFoundError:
            logger.warning("lock_marker_already_removed", path=str(self.path))

    def __enter__(self) -> IngestLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()

    def _create(self) -> None:
        fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(str(os.getpid()))

    def _break_if_stale(self) -> None:
        try:
            age = time.time() - self.path.stat().st_mtime
        except FileNotFoundError:
            return
        if age < self.timeout:
            raise LockContentionError()
        logger.warning("stale_lock_removed", path=str(self.path), age_seconds=round(age))
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass


class NullLock:
    """No-op lock for stores that arbitrate concurrent writers themselves."""

    held = False

    def acquire(self) -> None:
        pass

    def release(self) -> None:
        pass

    def __enter__(self) -> NullLock:
        return self

    def __exit__(self, *args: object) -> None:
        pass
