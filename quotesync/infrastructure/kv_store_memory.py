from __future__ import annotations

from threading import Lock


class InMemoryKeyValueStore:
    """Almacén clave-valor volátil para ejecuciones efímeras (``--memory``)."""

    def __init__(self, initial: dict[str, bytes] | None = None) -> None:
        self._data: dict[str, bytes] = dict(initial or {})
        self._lock = Lock()

    def load(self, key: str) -> bytes | None:
        with self._lock:
            return self._data.get(key)

    def save(self, key: str, value: bytes) -> None:
        with self._lock:
            self._data[key] = bytes(value)

    def snapshot(self) -> dict[str, bytes]:
        with self._lock:
            return dict(self._data)
