from __future__ import annotations

import json
from dataclasses import replace
from datetime import datetime

from quotesync.core.operational_logging import log_operational_error
from quotesync.domain.models import SyncCounters
from quotesync.domain.ports import KeyValueStorePort

SYNC_COUNT_KEY = "sync_count"
CONFLICTS_RESOLVED_KEY = "conflicts_resolved"
LAST_SYNC_KEY = "last_sync_at"


def _load_int(storage: KeyValueStorePort, key: str) -> int:
    raw = storage.load(key)
    if raw is None:
        return 0
    try:
        return int(json.loads(raw.decode("utf-8")))
    except (ValueError, TypeError) as exc:
        log_operational_error("Contador de sincronización ilegible; se reinicia a 0", exc=exc, extra={"key": key})
        return 0


class SyncCountersRepository:
    def __init__(self, storage: KeyValueStorePort) -> None:
        self._storage = storage

    def load(self) -> SyncCounters:
        raw_last_sync = self._storage.load(LAST_SYNC_KEY)
        last_sync_at: str | None = None
        if raw_last_sync is not None:
            try:
                value = json.loads(raw_last_sync.decode("utf-8"))
                last_sync_at = str(value) if value else None
            except ValueError as exc:
                log_operational_error("Fecha de última sincronización ilegible", exc=exc, extra={"key": LAST_SYNC_KEY})
        return SyncCounters(
            sync_count=_load_int(self._storage, SYNC_COUNT_KEY),
            conflicts_resolved=_load_int(self._storage, CONFLICTS_RESOLVED_KEY),
            last_sync_at=last_sync_at,
        )

    def save(self, counters: SyncCounters) -> None:
        self._storage.save(SYNC_COUNT_KEY, json.dumps(counters.sync_count).encode("utf-8"))
        self._storage.save(CONFLICTS_RESOLVED_KEY, json.dumps(counters.conflicts_resolved).encode("utf-8"))
        self._storage.save(LAST_SYNC_KEY, json.dumps(counters.last_sync_at).encode("utf-8"))


def advance_counters(counters: SyncCounters, *, resolved: int, finished_at: datetime) -> SyncCounters:
    return replace(
        counters,
        sync_count=counters.sync_count + 1,
        conflicts_resolved=counters.conflicts_resolved + resolved,
        last_sync_at=finished_at.isoformat(),
    )
