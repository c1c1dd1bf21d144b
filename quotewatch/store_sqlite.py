"""SQLite-backed key/value store for watchlist state.

Uses WAL mode + NORMAL synchronous for write throughput while retaining
crash safety.  String lists are stored as JSON arrays.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from typing import Optional

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
  k TEXT PRIMARY KEY,
  v TEXT NOT NULL
);
"""


class SqliteStore:
    """Key-value store backed by SQLite.

    The connection is shared between the caller's thread and the
    engine's polling thread, so every statement runs under a lock.
    """

    def __init__(self, path: str) -> None:
        if path != ":memory:":
            os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        self._lock = threading.Lock()
        self.conn = sqlite3.connect(path, isolation_level=None, check_same_thread=False)
        self.conn.execute("PRAGMA journal_mode=WAL;")
        self.conn.execute("PRAGMA synchronous=NORMAL;")
        self.conn.execute("PRAGMA busy_timeout=5000;")
        self.conn.executescript(SCHEMA)

    # ── Strings ─────────────────────────────────────────────────

    def get_string(self, key: str) -> Optional[str]:
        with self._lock:
            row = self.conn.execute("SELECT v FROM kv WHERE k=?", (key,)).fetchone()
        return row[0] if row else None

    def set_string(self, key: str, value: str) -> None:
        with self._lock:
            self.conn.execute(
                "INSERT INTO kv(k,v) VALUES(?,?) ON CONFLICT(k) DO UPDATE SET v=excluded.v",
                (key, value),
            )

    # ── String lists ────────────────────────────────────────────

    def get_string_list(self, key: str) -> Optional[list[str]]:
        """Return the stored list, or ``None`` when absent or corrupt."""
        raw = self.get_string(key)
        if raw is None:
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Stored value for %r is not JSON, ignoring", key)
            return None
        if not isinstance(data, list):
            logger.warning("Stored value for %r is not a list, ignoring", key)
            return None
        return [item for item in data if isinstance(item, str)]

    def set_string_list(self, key: str, values: list[str]) -> None:
        self.set_string(key, json.dumps(list(values)))

    def close(self) -> None:
        with self._lock:
            self.conn.close()
