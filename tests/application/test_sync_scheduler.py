from __future__ import annotations

import time

import pytest

from conftest import FakeFetcher, RecordingSink
from quotesync.application.scheduler import OFFLINE_ERROR_KIND, SyncScheduler
from quotesync.application.sync_engine import SyncEngine
from quotesync.domain.models import SyncOutcome, SyncStatus


def _wait_until(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


def test_intervalo_debe_ser_positivo(engine: SyncEngine) -> None:
    with pytest.raises(ValueError):
        SyncScheduler(engine, interval_seconds=0)


def test_tick_dispara_sync_si_el_motor_esta_libre(engine: SyncEngine, fetcher: FakeFetcher) -> None:
    scheduler = SyncScheduler(engine, interval_seconds=60)

    result = scheduler.tick()

    assert result is not None
    assert result.outcome is SyncOutcome.COMPLETED
    assert fetcher.calls == 1


def test_tick_con_sesion_abierta_se_descarta(engine: SyncEngine, fetcher: FakeFetcher) -> None:
    fetcher.batch = [{"id": "1", "text": "Distinta", "category": "motivation"}]
    engine.trigger()
    scheduler = SyncScheduler(engine, interval_seconds=60)

    assert scheduler.tick() is None
    assert scheduler.dropped_ticks == 1
    assert fetcher.calls == 1


def test_stop_solo_tiene_efecto_una_vez(engine: SyncEngine, fetcher: FakeFetcher) -> None:
    scheduler = SyncScheduler(engine, interval_seconds=60, run_initial_sync=False)
    scheduler.start()

    assert scheduler.running
    assert scheduler.stop() is True
    assert scheduler.stop() is False
    assert scheduler.stopped
    assert scheduler.tick() is None
    assert fetcher.calls == 0
    with pytest.raises(RuntimeError):
        scheduler.start()


def test_start_dos_veces_falla(engine: SyncEngine) -> None:
    scheduler = SyncScheduler(engine, interval_seconds=60, run_initial_sync=False)
    scheduler.start()
    try:
        with pytest.raises(RuntimeError):
            scheduler.start()
    finally:
        scheduler.stop()


def test_hilo_dispara_periodicamente_y_no_despues_de_stop(engine: SyncEngine, fetcher: FakeFetcher) -> None:
    scheduler = SyncScheduler(engine, interval_seconds=0.01)
    scheduler.start()
    try:
        assert _wait_until(lambda: fetcher.calls >= 3)
    finally:
        scheduler.stop()

    calls_after_stop = fetcher.calls
    time.sleep(0.05)
    assert fetcher.calls == calls_after_stop
    assert engine.counters.sync_count == calls_after_stop


def test_tick_fallido_no_detiene_el_planificador(engine: SyncEngine, fetcher: FakeFetcher, monkeypatch) -> None:
    scheduler = SyncScheduler(engine, interval_seconds=0.01)
    calls = {"count": 0}

    def _boom(*_args, **_kwargs):
        calls["count"] += 1
        raise RuntimeError("explosión")

    monkeypatch.setattr(engine, "trigger", _boom)
    scheduler.start()
    try:
        assert _wait_until(lambda: calls["count"] >= 2)
        assert scheduler.running
    finally:
        scheduler.stop()


def test_sin_conexion_pausa_y_reconexion_sincroniza(
    engine: SyncEngine, fetcher: FakeFetcher, sink: RecordingSink
) -> None:
    scheduler = SyncScheduler(engine, interval_seconds=60)

    scheduler.mark_offline()

    assert not scheduler.online
    assert sink.events[-1] == (SyncStatus.ERROR, "Trabajando sin conexión - sincronización en pausa", OFFLINE_ERROR_KIND)
    assert scheduler.tick() is None
    manual = scheduler.sync_now()
    assert manual.failed
    assert manual.error_kind == OFFLINE_ERROR_KIND
    assert fetcher.calls == 0

    reconnect = scheduler.mark_online()

    assert reconnect is not None
    assert reconnect.outcome is SyncOutcome.COMPLETED
    assert fetcher.calls == 1
    assert scheduler.mark_online() is None


def test_sync_now_dispara_manual(engine: SyncEngine, fetcher: FakeFetcher) -> None:
    scheduler = SyncScheduler(engine, interval_seconds=60)

    assert scheduler.sync_now().outcome is SyncOutcome.COMPLETED
    assert fetcher.calls == 1
