from __future__ import annotations

from pathlib import Path

from conftest import FakeFetcher
from quotesync.bootstrap.container import build_container, build_fetcher
from quotesync.domain.models import SyncOutcome, SyncSettings
from quotesync.infrastructure.kv_store_memory import InMemoryKeyValueStore
from quotesync.infrastructure.kv_store_sqlite import SQLiteKeyValueStore
from quotesync.infrastructure.local_config import SyncConfigStore
from quotesync.infrastructure.sheets_client import SheetsQuoteSource
from quotesync.infrastructure.system_adapters import UnconfiguredQuoteSource


def test_build_container_con_sqlite(tmp_path: Path) -> None:
    container = build_container(SyncSettings(db_path=str(tmp_path / "quotes.db"), sync_interval_seconds=7))

    assert isinstance(container.storage, SQLiteKeyValueStore)
    assert isinstance(container.fetcher, UnconfiguredQuoteSource)
    assert len(container.store) == 5
    assert container.scheduler.running is False
    assert (tmp_path / "quotes.db").exists()


def test_sin_fuente_remota_la_sync_falla_con_fetch_error() -> None:
    container = build_container(SyncSettings(), memory=True)

    result = container.engine.trigger()

    assert isinstance(container.storage, InMemoryKeyValueStore)
    assert result.outcome is SyncOutcome.FAILED
    assert result.error_kind == "fetch_error"


def test_settings_se_propagan_al_motor() -> None:
    fetcher = FakeFetcher([{"id": "1", "text": "Remota", "category": "motivation"}])
    container = build_container(SyncSettings(auto_resolve=True), memory=True, fetcher=fetcher)

    result = container.engine.trigger()

    assert result.outcome is SyncOutcome.COMPLETED
    assert container.store.find_by_id("1").text == "Remota"


def test_build_fetcher_resuelve_credenciales_relativas(tmp_path: Path) -> None:
    config_store = SyncConfigStore(base_dir=tmp_path)
    settings = SyncSettings(spreadsheet_id="sheet-1", credentials_path="credentials.json")

    fetcher = build_fetcher(settings, config_store)

    assert isinstance(fetcher, SheetsQuoteSource)
    assert fetcher._credentials_path == tmp_path / "secrets" / "credentials.json"


def test_sin_db_path_la_base_de_datos_va_junto_a_config(tmp_path: Path) -> None:
    config_store = SyncConfigStore(tmp_path / "cfg")

    container = build_container(SyncSettings(), config_store=config_store)

    assert isinstance(container.storage, SQLiteKeyValueStore)
    assert (tmp_path / "cfg" / "quotesync.db").exists()
