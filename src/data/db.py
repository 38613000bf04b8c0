"""
MedMinder — State Database.

SQLite-backed PersistenceStore: the whole serialized engine state is kept
as one row, so medications and the acknowledgment ledger survive restarts.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)

_STATE_KEY = "medications"


class StateDB:
    """Key-value table holding serialized state blobs."""

    def __init__(self, db_path: str | None = None, key: str = _STATE_KEY) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        self._key = key
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        """Create the state table if it doesn't exist."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS app_state (
                    key        TEXT PRIMARY KEY,
                    value      TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
        logger.debug("State table initialized at %s", self._db_path)

    def save(self, serialized_state: str) -> None:
        """Insert or replace the stored state."""
        now = datetime.now().isoformat()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO app_state (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (self._key, serialized_state, now),
            )
        logger.debug("State saved (%d bytes)", len(serialized_state))

    def load(self) -> str | None:
        """Return the stored state, or None if nothing was saved yet."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value FROM app_state WHERE key = ?", (self._key,),
            ).fetchone()
        if row is None:
            return None
        return row["value"]

    def updated_at(self) -> str | None:
        """ISO timestamp of the last save, or None."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT updated_at FROM app_state WHERE key = ?", (self._key,),
            ).fetchone()
        return row["updated_at"] if row is not None else None

    def clear(self) -> bool:
        """Delete the stored state."""
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM app_state WHERE key = ?", (self._key,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Stored state cleared")
        return deleted
