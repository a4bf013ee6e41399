from __future__ import annotations

import logging
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from threading import Event
from typing import Any

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from quotesync.application.record_store import RecordStore
from quotesync.application.sync_counters import SyncCountersRepository
from quotesync.application.sync_engine import SyncEngine
from quotesync.core.errors import PersistenceError
from quotesync.domain.models import Record, RecordSource, SyncStatus
from quotesync.infrastructure.kv_store_memory import InMemoryKeyValueStore


class FixedClock:
    def __init__(self, start: datetime | None = None, step: timedelta = timedelta(seconds=1)) -> None:
        self.current = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        self.step = step

    def now(self) -> datetime:
        value = self.current
        self.current = value + self.step
        return value


class CounterIdFactory:
    def __init__(self, prefix: str = "quote_") -> None:
        self.prefix = prefix
        self.issued = 0

    def __call__(self) -> str:
        self.issued += 1
        return f"{self.prefix}{self.issued}"


class FlakyKeyValueStore(InMemoryKeyValueStore):
    """Almacén en memoria cuyo ``save`` falla mientras ``failing`` sea True."""

    def __init__(self, initial: dict[str, bytes] | None = None) -> None:
        super().__init__(initial)
        self.failing = False
        self.save_calls = 0

    def save(self, key: str, value: bytes) -> None:
        self.save_calls += 1
        if self.failing:
            raise PersistenceError(f"disco lleno guardando {key}")
        super().save(key, value)


class FakeFetcher:
    def __init__(self, batch: list[Any] | None = None) -> None:
        self.batch: list[Any] = list(batch or [])
        self.error: BaseException | None = None
        self.calls = 0
        self.gate: Event | None = None
        self.entered = Event()

    def fetch_batch(self) -> list[Any]:
        self.calls += 1
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(5)
        if self.error is not None:
            raise self.error
        return list(self.batch)


class RecordingSink:
    def __init__(self) -> None:
        self.events: list[tuple[SyncStatus, str, str | None]] = []

    def notify(self, status: SyncStatus, message: str, *, error_kind: str | None = None) -> None:
        self.events.append((status, message, error_kind))

    @property
    def statuses(self) -> list[SyncStatus]:
        return [status for status, _, _ in self.events]


class ExplodingSink:
    def __init__(self) -> None:
        self.calls = 0

    def notify(self, status: SyncStatus, message: str, *, error_kind: str | None = None) -> None:
        self.calls += 1
        raise RuntimeError("sink caído")


def remote_record(external_id: str, text: str, category: str = "server", **changes: Any) -> Record:
    record = Record(
        id=f"server_{external_id}",
        text=text,
        category=category,
        source=RecordSource.REMOTE,
        external_id=external_id,
    )
    return record.with_changes(**changes) if changes else record


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def id_factory() -> CounterIdFactory:
    return CounterIdFactory()


@pytest.fixture
def kv() -> FlakyKeyValueStore:
    return FlakyKeyValueStore()


@pytest.fixture
def store(kv: FlakyKeyValueStore, clock: FixedClock, id_factory: CounterIdFactory) -> RecordStore:
    return RecordStore(kv, clock=clock, id_factory=id_factory)


@pytest.fixture
def empty_store(kv: FlakyKeyValueStore, clock: FixedClock, id_factory: CounterIdFactory) -> RecordStore:
    return RecordStore(kv, clock=clock, id_factory=id_factory, seed_defaults=False)


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def counters_repository(kv: FlakyKeyValueStore) -> SyncCountersRepository:
    return SyncCountersRepository(kv)


@pytest.fixture
def engine(
    store: RecordStore,
    fetcher: FakeFetcher,
    counters_repository: SyncCountersRepository,
    sink: RecordingSink,
    clock: FixedClock,
) -> SyncEngine:
    return SyncEngine(store, fetcher, counters_repository, notifier=sink, clock=clock)


@pytest.fixture
def restore_root_logging():
    root_logger = logging.getLogger()
    handlers = list(root_logger.handlers)
    level = root_logger.level
    yield root_logger
    for handler in list(root_logger.handlers):
        if handler not in handlers:
            root_logger.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root_logger.handlers:
            root_logger.addHandler(handler)
    root_logger.setLevel(level)
