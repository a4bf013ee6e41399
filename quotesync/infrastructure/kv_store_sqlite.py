from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from threading import Lock

from quotesync.core.errors import PersistenceError

logger = logging.getLogger(__name__)


class SQLiteKeyValueStore:
    """Almacén clave-valor duradero sobre una tabla SQLite."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._connection = connection
        self._lock = Lock()
        self._ensure_schema()

    def load(self, key: str) -> bytes | None:
        with self._lock:
            try:
                row = self._connection.execute("SELECT value FROM key_value WHERE key = ?", (key,)).fetchone()
            except sqlite3.Error as exc:
                raise PersistenceError(f"No se pudo leer la clave '{key}': {exc}") from exc
        if row is None:
            return None
        return bytes(row[0])

    def save(self, key: str, value: bytes) -> None:
        with self._lock:
            try:
                self._connection.execute(
                    """
                    INSERT INTO key_value (key, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                    """,
                    (key, sqlite3.Binary(value), datetime.now(timezone.utc).isoformat()),
                )
                self._connection.commit()
            except sqlite3.Error as exc:
                self._connection.rollback()
                raise PersistenceError(f"No se pudo guardar la clave '{key}': {exc}") from exc

    def keys(self) -> list[str]:
        with self._lock:
            rows = self._connection.execute("SELECT key FROM key_value ORDER BY key").fetchall()
        return [row[0] for row in rows]

    def _ensure_schema(self) -> None:
        try:
            self._connection.execute(
                """
                CREATE TABLE IF NOT EXISTS key_value (
                    key TEXT PRIMARY KEY,
                    value BLOB NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            self._connection.commit()
        except sqlite3.Error as exc:
            raise PersistenceError(f"No se pudo preparar la tabla key_value: {exc}") from exc
        logger.debug("Tabla key_value lista")
