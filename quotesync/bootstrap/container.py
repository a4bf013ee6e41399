from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from quotesync.application.record_store import RecordStore
from quotesync.application.scheduler import SyncScheduler
from quotesync.application.sync_counters import SyncCountersRepository
from quotesync.application.sync_engine import SyncEngine
from quotesync.domain.models import SyncSettings
from quotesync.domain.ports import KeyValueStorePort, NotificationSinkPort, RemoteFetchPort
from quotesync.infrastructure.db import DB_FILENAME, get_connection
from quotesync.infrastructure.kv_store_memory import InMemoryKeyValueStore
from quotesync.infrastructure.kv_store_sqlite import SQLiteKeyValueStore
from quotesync.infrastructure.local_config import SyncConfigStore
from quotesync.infrastructure.sheets_client import SheetsQuoteSource
from quotesync.infrastructure.system_adapters import LoggingNotificationSink, SystemClock, UnconfiguredQuoteSource

logger = logging.getLogger(__name__)


@dataclass
class QuoteSyncContainer:
    settings: SyncSettings
    storage: KeyValueStorePort
    store: RecordStore
    counters_repository: SyncCountersRepository
    fetcher: RemoteFetchPort
    engine: SyncEngine
    scheduler: SyncScheduler
    clock: SystemClock


ConnectionFactory = Callable[..., object]


def build_fetcher(settings: SyncSettings, config_store: SyncConfigStore | None = None) -> RemoteFetchPort:
    if not settings.remote_configured:
        logger.warning("Fuente remota sin configurar; las sincronizaciones fallarán con error de fetch")
        return UnconfiguredQuoteSource()
    credentials_path = Path(settings.credentials_path)
    if not credentials_path.is_absolute() and config_store is not None:
        credentials_path = config_store.credentials_path().parent / credentials_path
    return SheetsQuoteSource(
        credentials_path,
        settings.spreadsheet_id,
        worksheet_name=settings.worksheet_name,
        limit=settings.fetch_limit,
    )


def _resolve_db_path(settings: SyncSettings, config_store: SyncConfigStore | None) -> Path | None:
    if settings.db_path:
        return Path(settings.db_path)
    if config_store is not None:
        return config_store.config_path.parent / DB_FILENAME
    return None


def build_container(
    settings: SyncSettings,
    *,
    memory: bool = False,
    config_store: SyncConfigStore | None = None,
    connection_factory: ConnectionFactory = get_connection,
    fetcher: RemoteFetchPort | None = None,
    notifier: NotificationSinkPort | None = None,
) -> QuoteSyncContainer:
    if memory:
        storage: KeyValueStorePort = InMemoryKeyValueStore()
    else:
        db_path = _resolve_db_path(settings, config_store)
        storage = SQLiteKeyValueStore(connection_factory(db_path))

    clock = SystemClock()
    store = RecordStore(storage, clock=clock)
    counters_repository = SyncCountersRepository(storage)
    resolved_fetcher = fetcher or build_fetcher(settings, config_store)
    engine = SyncEngine(
        store,
        resolved_fetcher,
        counters_repository,
        notifier=notifier or LoggingNotificationSink(),
        clock=clock,
        auto_resolve=settings.auto_resolve,
        whole_batch_replace=settings.whole_batch_replace,
        fetch_timeout_seconds=settings.fetch_timeout_seconds,
    )
    scheduler = SyncScheduler(engine, interval_seconds=settings.sync_interval_seconds)

    return QuoteSyncContainer(
        settings=settings,
        storage=storage,
        store=store,
        counters_repository=counters_repository,
        fetcher=resolved_fetcher,
        engine=engine,
        scheduler=scheduler,
        clock=clock,
    )
