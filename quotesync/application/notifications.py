from __future__ import annotations

import logging

from quotesync.core.operational_logging import log_operational_error
from quotesync.domain.models import SyncStatus
from quotesync.domain.ports import NotificationSinkPort

logger = logging.getLogger(__name__)


class SafeNotifier:
    """Envoltorio fire-and-forget: un fallo del sink nunca rompe la sesión de sync."""

    def __init__(self, sink: NotificationSinkPort | None) -> None:
        self._sink = sink
        self.last_status: SyncStatus = SyncStatus.IDLE
        self.last_message = ""

    def notify(self, status: SyncStatus, message: str, *, error_kind: str | None = None) -> None:
        self.last_status = status
        self.last_message = message
        logger.debug("Estado de sync: %s - %s", status.value, message)
        if self._sink is None:
            return
        try:
            self._sink.notify(status, message, error_kind=error_kind)
        except Exception as exc:  # noqa: BLE001
            log_operational_error(
                "El sink de notificaciones falló",
                exc=exc,
                extra={"status": status.value, "notification": message},
            )
