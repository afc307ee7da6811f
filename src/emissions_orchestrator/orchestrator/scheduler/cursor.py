"""Persisted cursor: the last height the workflow completed at.

Stored in a single-table sqlite key-value store so a write is either fully
committed or not there at all. The cursor is only written after a
successful run; a crash before that leaves the previous value in place and
the run is retried at the next eligible height.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import closing
from pathlib import Path

logger = logging.getLogger(__name__)

LAST_RUN_HEIGHT_KEY = "lastRunHeight"

_SCHEMA = "CREATE TABLE IF NOT EXISTS kv (key TEXT PRIMARY KEY, value TEXT NOT NULL)"


class CursorStore:
    """Durable `lastRunHeight` bookkeeping."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self._path)
        conn.execute(_SCHEMA)
        return conn

    def load(self) -> int:
        """Return the stored height, or 0 on a fresh start."""

        if not self._path.exists():
            return 0
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT value FROM kv WHERE key = ?", (LAST_RUN_HEIGHT_KEY,)
            ).fetchone()
        if row is None:
            return 0
        return int(row[0])

    def store(self, height: int) -> None:
        if height < 0:
            raise ValueError("height must be >= 0")
        with closing(self._connect()) as conn:
            with conn:
                conn.execute(
                    "INSERT INTO kv (key, value) VALUES (?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                    (LAST_RUN_HEIGHT_KEY, str(height)),
                )
        logger.info("Cursor stored", extra={"last_run_height": height, "path": str(self._path)})

    def reset(self, height: int = 0) -> None:
        logger.warning("Resetting cursor", extra={"last_run_height": height})
        self.store(height)
