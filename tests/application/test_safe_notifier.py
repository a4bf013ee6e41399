from __future__ import annotations

import logging

from conftest import ExplodingSink, RecordingSink
from quotesync.application.notifications import SafeNotifier
from quotesync.domain.models import SyncStatus


def test_reenvia_al_sink_y_recuerda_el_ultimo_estado() -> None:
    sink = RecordingSink()
    notifier = SafeNotifier(sink)

    notifier.notify(SyncStatus.ERROR, "fallo", error_kind="fetch_error")

    assert sink.events == [(SyncStatus.ERROR, "fallo", "fetch_error")]
    assert notifier.last_status is SyncStatus.ERROR
    assert notifier.last_message == "fallo"


def test_sin_sink_no_falla() -> None:
    notifier = SafeNotifier(None)

    notifier.notify(SyncStatus.SUCCESS, "ok")

    assert notifier.last_status is SyncStatus.SUCCESS


def test_fallo_del_sink_se_registra_y_no_se_propaga(caplog) -> None:
    notifier = SafeNotifier(ExplodingSink())

    with caplog.at_level(logging.ERROR):
        notifier.notify(SyncStatus.SYNCING, "sincronizando")

    assert any("sink de notificaciones" in record.getMessage() for record in caplog.records)
