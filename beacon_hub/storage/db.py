from __future__ import annotations

import os
import sqlite3
import threading
from typing import Optional

from ..common.time_util import utc_now_iso
from .kv import _to_int


def _default_db_path() -> str:
    return os.getenv("BEACON_HUB_DB_PATH", "data/beacon_hub.db")


SCHEMA = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS kv (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL,
  updated_at_utc TEXT NOT NULL
);
"""


class SqliteKeyValueStore:
    """Durable identity storage: SQLite (single connection + explicit close).

    Why:
    - FastAPI TestClient runs the app in another thread; we guard with a lock
    - ``:memory:`` is accepted for tests
    """

    def __init__(self, db_path: str | None = None) -> None:
        self.db_path = db_path or _default_db_path()
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        with self._lock:
            self._conn.executescript(SCHEMA)
            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            row = self._conn.execute("SELECT value FROM kv WHERE key=?", (key,)).fetchone()
        return row["value"] if row else None

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO kv(key, value, updated_at_utc) VALUES (?,?,?)
                ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at_utc=excluded.updated_at_utc
                """,
                (key, value, utc_now_iso()),
            )
            self._conn.commit()

    def set_if_absent(self, key: str, value: str) -> str:
        with self._lock:
            self._conn.execute(
                "INSERT OR IGNORE INTO kv(key, value, updated_at_utc) VALUES (?,?,?)",
                (key, value, utc_now_iso()),
            )
            self._conn.commit()
            row = self._conn.execute("SELECT value FROM kv WHERE key=?", (key,)).fetchone()
        return row["value"]

    def increment(self, key: str, *, by: int = 1) -> int:
        # read-modify-write under the lock and in one transaction
        with self._lock:
            row = self._conn.execute("SELECT value FROM kv WHERE key=?", (key,)).fetchone()
            n = _to_int(row["value"] if row else None) + by
            self._conn.execute(
                """
                INSERT INTO kv(key, value, updated_at_utc) VALUES (?,?,?)
                ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at_utc=excluded.updated_at_utc
                """,
                (key, str(n), utc_now_iso()),
            )
            self._conn.commit()
        return n

    def clear(self) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM kv")
            self._conn.commit()
