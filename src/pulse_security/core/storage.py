# Core - Key-Value Persistence
#
# The encrypted credential store and the audit log only talk to this
# interface: get / set / remove / list_all on string keys and values.
# Two backends ship with the package:
#   - MemoryKeyValueStore: process-local dict (tests, ephemeral mode)
#   - SQLiteKeyValueStore: one table in a WAL-mode SQLite file (0600)

import asyncio
import logging
import os
import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Union

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Asynchronous string key-value store."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the value for key, or None if absent."""

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Insert or replace the value for key."""

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Delete key. Removing an absent key is a no-op."""

    @abstractmethod
    async def list_all(self) -> Dict[str, str]:
        """Return a snapshot of every stored key and value."""


class MemoryKeyValueStore(KeyValueStore):
    """In-memory store. Contents vanish with the process."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._items: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._items.get(key)

    async def set(self, key: str, value: str) -> None:
        self._items[key] = value

    async def remove(self, key: str) -> None:
        self._items.pop(key, None)

    async def list_all(self) -> Dict[str, str]:
        return dict(self._items)


def connect(db_path: Union[str, Path]) -> sqlite3.Connection:
    """Open a SQLite connection in WAL mode with a busy timeout."""
    conn = sqlite3.connect(str(db_path))
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=5000")
    return conn


class SQLiteKeyValueStore(KeyValueStore):
    """SQLite-backed store.

    Each call opens a fresh connection and runs in a worker thread so
    the event loop never blocks on disk I/O.

    Args:
        db_path: Path to the SQLite database file. Parent directories are
                 created and the file is restricted to owner read/write.
    """

    def __init__(self, db_path: Union[str, Path]):
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._init_database()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _init_database(self):
        conn = connect(self._db_path)
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv_items (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)
            conn.commit()
        finally:
            conn.close()
        # Owner read/write only
        os.chmod(self._db_path, 0o600)
        logger.debug("Key-value store ready at %s", self._db_path)

    # ------------------------------------------------------------------
    # Sync implementations (run in a worker thread)

    def _get_sync(self, key: str) -> Optional[str]:
        with self._lock:
            conn = connect(self._db_path)
            try:
                row = conn.execute(
                    "SELECT value FROM kv_items WHERE key = ?", (key,)
                ).fetchone()
                return row[0] if row else None
            finally:
                conn.close()

    def _set_sync(self, key: str, value: str) -> None:
        with self._lock:
            conn = connect(self._db_path)
            try:
                conn.execute(
                    "INSERT OR REPLACE INTO kv_items (key, value) VALUES (?, ?)",
                    (key, value),
                )
                conn.commit()
            finally:
                conn.close()

    def _remove_sync(self, key: str) -> None:
        with self._lock:
            conn = connect(self._db_path)
            try:
                conn.execute("DELETE FROM kv_items WHERE key = ?", (key,))
                conn.commit()
            finally:
                conn.close()

    def _list_all_sync(self) -> Dict[str, str]:
        with self._lock:
            conn = connect(self._db_path)
            try:
                rows = conn.execute("SELECT key, value FROM kv_items").fetchall()
                return {key: value for key, value in rows}
            finally:
                conn.close()

    # ------------------------------------------------------------------
    # Async interface

    async def get(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._get_sync, key)

    async def set(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._set_sync, key, value)

    async def remove(self, key: str) -> None:
        await asyncio.to_thread(self._remove_sync, key)

    async def list_all(self) -> Dict[str, str]:
        return await asyncio.to_thread(self._list_all_sync)
