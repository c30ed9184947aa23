"""SQLite-backed key/value preferences that survive device restarts."""

from __future__ import annotations

import sqlite3
import threading
import time
from pathlib import Path

KEY_SSID = "ssid"
KEY_PASSWORD = "pass"
KEY_OWNER_ID = "owner_id"
KEY_IDENTITY_ID = "identity_id"

KNOWN_KEYS = (KEY_SSID, KEY_PASSWORD, KEY_OWNER_ID, KEY_IDENTITY_ID)


class PreferenceStore:
    """Namespaced string key/value store.

    Writes come from the provisioning listener thread and the registration
    step, so every statement runs under a lock on a shared connection.
    """

    def __init__(self, path: str | Path, *, namespace: str = "pawfeeds") -> None:
        text = str(path)
        self.namespace = str(namespace or "pawfeeds").strip()
        if text == ":memory:":
            self.path = text
        else:
            resolved = Path(text).expanduser()
            resolved.parent.mkdir(parents=True, exist_ok=True)
            self.path = str(resolved)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.path, check_same_thread=False)
        self._conn.execute("PRAGMA busy_timeout = 5000")
        if self.path != ":memory:":
            self._conn.execute("PRAGMA journal_mode = WAL")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS preferences (
                    namespace TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value TEXT NOT NULL,
                    updated_at_ms INTEGER NOT NULL,
                    PRIMARY KEY (namespace, key)
                )
                """
            )
            self._conn.commit()

    def get(self, key: str, default: str = "") -> str:
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM preferences WHERE namespace = ? AND key = ?",
                (self.namespace, str(key)),
            ).fetchone()
        if row is None:
            return default
        return str(row[0])

    def put(self, key: str, value: str) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO preferences (namespace, key, value, updated_at_ms)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(namespace, key) DO UPDATE SET
                    value = excluded.value,
                    updated_at_ms = excluded.updated_at_ms
                """,
                (self.namespace, str(key), str(value), int(time.time() * 1000)),
            )
            self._conn.commit()

    def put_many(self, values: dict[str, str]) -> None:
        """Write several keys in one transaction."""
        now = int(time.time() * 1000)
        rows = [(self.namespace, str(k), str(v), now) for k, v in values.items()]
        with self._lock:
            self._conn.executemany(
                """
                INSERT INTO preferences (namespace, key, value, updated_at_ms)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(namespace, key) DO UPDATE SET
                    value = excluded.value,
                    updated_at_ms = excluded.updated_at_ms
                """,
                rows,
            )
            self._conn.commit()

    def remove(self, key: str) -> bool:
        with self._lock:
            cur = self._conn.execute(
                "DELETE FROM preferences WHERE namespace = ? AND key = ?",
                (self.namespace, str(key)),
            )
            self._conn.commit()
            return cur.rowcount > 0

    def clear(self) -> int:
        """Factory reset: drop every key in this namespace."""
        with self._lock:
            cur = self._conn.execute(
                "DELETE FROM preferences WHERE namespace = ?",
                (self.namespace,),
            )
            self._conn.commit()
            return int(cur.rowcount)

    def snapshot(self) -> dict[str, str]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT key, value FROM preferences WHERE namespace = ? ORDER BY key",
                (self.namespace,),
            ).fetchall()
        return {str(k): str(v) for k, v in rows}

    def has_credentials(self) -> bool:
        return bool(self.get(KEY_SSID).strip())

    def close(self) -> None:
        with self._lock:
            self._conn.close()
