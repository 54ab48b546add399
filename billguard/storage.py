"""Storage backends for whole-aggregate persistence."""

from __future__ import annotations

import copy
import json
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol


class StorageError(Exception):
    """Raised when a stored value cannot be decoded."""
    pass


class StorageBackend(Protocol):
    """Key-value storage interface.

    Values are JSON-compatible dicts. Every write replaces the whole value.
    """

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        ...

    def set(self, key: str, value: Dict[str, Any]) -> None:
        ...

    def delete(self, key: str) -> bool:
        ...

    def keys(self, prefix: str = "") -> List[str]:
        ...


class InMemoryStorage:
    """In-memory storage backend (default)."""

    def __init__(self):
        self._values: Dict[str, Dict[str, Any]] = {}

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        value = self._values.get(key)
        return copy.deepcopy(value) if value is not None else None

    def set(self, key: str, value: Dict[str, Any]) -> None:
        self._values[key] = copy.deepcopy(value)

    def delete(self, key: str) -> bool:
        if key in self._values:
            del self._values[key]
            return True
        return False

    def keys(self, prefix: str = "") -> List[str]:
        return sorted(k for k in self._values if k.startswith(prefix))


class SQLiteStorage:
    """SQLite-backed storage backend."""

    def __init__(self, db_path: str = "billguard.db"):
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        row = self._conn.execute(
            "SELECT value FROM kv WHERE key = ?",
            (key,),
        ).fetchone()
        if not row:
            return None
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError as exc:
            raise StorageError(f"value for {key!r} is not valid JSON") from exc

    def set(self, key: str, value: Dict[str, Any]) -> None:
        self._conn.execute(
            """
            INSERT INTO kv (key, value, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value=excluded.value,
                updated_at=excluded.updated_at
            """,
            (key, json.dumps(value), datetime.now(timezone.utc).isoformat()),
        )
        self._conn.commit()

    def delete(self, key: str) -> bool:
        cur = self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        self._conn.commit()
        return cur.rowcount > 0

    def keys(self, prefix: str = "") -> List[str]:
        rows = self._conn.execute(
            "SELECT key FROM kv WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
            (prefix.replace("%", r"\%").replace("_", r"\_") + "%",),
        ).fetchall()
        return [row["key"] for row in rows]

    def close(self) -> None:
        self._conn.close()
