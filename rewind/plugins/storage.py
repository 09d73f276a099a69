"""Key-value backends for the persistence plugin.

KeyValueStore -- protocol: get/set/remove of string values.
MemoryStore   -- dict-backed, per instance.
SQLiteStore   -- single-table SQLite file (or ``:memory:``).

Backends raise StorageError; the persistence plugin catches it so that a
failing backend never reaches a history stack's caller.
"""

from __future__ import annotations

import sqlite3
from typing import Protocol

import structlog

_log = structlog.get_logger(component="plugins.storage")


class StorageError(Exception):
    """Raised when a key-value backend cannot read or write."""


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStore:
    """In-process store; contents vanish with the instance."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)


class SQLiteStore:
    """Key-value table in a SQLite database.

    Args:
        path: Database file path, or ``":memory:"``.
    """

    _SCHEMA = "CREATE TABLE IF NOT EXISTS kv (key TEXT PRIMARY KEY, value TEXT NOT NULL)"

    def __init__(self, path: str = ":memory:") -> None:
        self._path = path
        try:
            self._conn = sqlite3.connect(path)
            with self._conn:
                self._conn.execute(self._SCHEMA)
        except sqlite3.Error as exc:
            _log.error("sqlite_store_open_failed", path=path, error=str(exc))
            raise StorageError(f"Unable to open key-value store at {path!s}") from exc

    def get(self, key: str) -> str | None:
        try:
            row = self._conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Unable to read {key!r}") from exc
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        try:
            with self._conn:
                self._conn.execute(
                    "INSERT INTO kv (key, value) VALUES (?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                    (key, value),
                )
        except sqlite3.Error as exc:
            raise StorageError(f"Unable to write {key!r}") from exc

    def remove(self, key: str) -> None:
        try:
            with self._conn:
                self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        except sqlite3.Error as exc:
            raise StorageError(f"Unable to remove {key!r}") from exc

    def close(self) -> None:
        self._conn.close()
