from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Protocol, Sequence

from quotesync.domain.models import Record, SyncStatus


class KeyValueStorePort(Protocol):
    def load(self, key: str) -> bytes | None:
        ...

    def save(self, key: str, value: bytes) -> None:
        ...


class RemoteFetchPort(Protocol):
    def fetch_batch(self) -> Sequence[Record | Mapping[str, Any]]:
        ...


class NotificationSinkPort(Protocol):
    def notify(self, status: SyncStatus, message: str, *, error_kind: str | None = None) -> None:
        ...


class ClockPort(Protocol):
    def now(self) -> datetime:
        ...


class IdFactoryPort(Protocol):
    def __call__(self) -> str:
        ...
