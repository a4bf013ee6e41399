from __future__ import annotations

import logging
from datetime import datetime, timezone

from quotesync.core.errors import FetchError
from quotesync.domain.models import SyncStatus


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class LoggingNotificationSink:
    """Sink por defecto: vuelca cada cambio de estado de sync al log."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("quotesync.notifications")

    def notify(self, status: SyncStatus, message: str, *, error_kind: str | None = None) -> None:
        level = logging.ERROR if status is SyncStatus.ERROR else logging.INFO
        self._logger.log(
            level,
            "[%s] %s",
            status.value,
            message,
            extra={"extra": {"status": status.value, "error_kind": error_kind}},
        )


class UnconfiguredQuoteSource:
    """Fuente remota nula: cada sincronización falla con un error de tipo fetch."""

    def fetch_batch(self) -> list[dict]:
        raise FetchError("Fuente remota no configurada: define spreadsheet_id y credentials_path")
