from __future__ import annotations

import logging
from threading import Event, Lock, Thread, current_thread

from quotesync.application.sync_engine import SyncEngine
from quotesync.core.operational_logging import log_operational_error
from quotesync.domain.models import SyncAttemptResult, SyncOrigin, SyncOutcome, SyncStatus

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 30.0
OFFLINE_ERROR_KIND = "offline"


class SyncScheduler:
    """Temporizador de sincronización de ámbito de proceso.

    ``start`` arranca un hilo daemon que dispara ``tick`` cada
    ``interval_seconds``. Los ticks que llegan con una sesión abierta, sin
    conexión o tras ``stop`` se descartan (no se encolan). ``stop`` sólo tiene
    efecto la primera vez y el temporizador no vuelve a disparar después.
    """

    def __init__(
        self,
        engine: SyncEngine,
        *,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        run_initial_sync: bool = True,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds debe ser positivo")
        self._engine = engine
        self._interval_seconds = interval_seconds
        self._run_initial_sync = run_initial_sync
        self._stop_event = Event()
        self._lock = Lock()
        self._thread: Thread | None = None
        self._started = False
        self._stopped = False
        self._online = True
        self.dropped_ticks = 0

    @property
    def running(self) -> bool:
        return self._started and not self._stopped

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def online(self) -> bool:
        return self._online

    def start(self) -> None:
        with self._lock:
            if self._stopped:
                raise RuntimeError("El planificador ya se detuvo; crea uno nuevo")
            if self._started:
                raise RuntimeError("El planificador ya está en marcha")
            self._started = True
            self._thread = Thread(target=self._run, name="quotesync-scheduler", daemon=True)
            self._thread.start()
        logger.info("Planificador de sincronización iniciado (intervalo=%ss)", self._interval_seconds)

    def stop(self, timeout: float | None = 5.0) -> bool:
        with self._lock:
            if self._stopped:
                return False
            self._stopped = True
            self._stop_event.set()
            thread = self._thread
        if thread is not None and thread is not current_thread():
            thread.join(timeout)
        logger.info("Planificador de sincronización detenido")
        return True

    def tick(self) -> SyncAttemptResult | None:
        if self._stop_event.is_set():
            self._drop("planificador detenido")
            return None
        if not self._online:
            self._engine.report_status(
                SyncStatus.ERROR,
                "Sin conexión - no se puede sincronizar",
                error_kind=OFFLINE_ERROR_KIND,
            )
            self._drop("sin conexión")
            return None
        if not self._engine.is_idle:
            self._drop(f"sesión activa en estado {self._engine.state.value}")
            return None
        return self._engine.trigger(SyncOrigin.TIMER)

    def sync_now(self) -> SyncAttemptResult:
        if not self._online:
            message = "Sin conexión - no se puede sincronizar"
            self._engine.report_status(SyncStatus.ERROR, message, error_kind=OFFLINE_ERROR_KIND)
            return SyncAttemptResult(outcome=SyncOutcome.FAILED, message=message, error_kind=OFFLINE_ERROR_KIND)
        logger.info("Sincronización manual solicitada")
        return self._engine.trigger(SyncOrigin.MANUAL)

    def mark_offline(self) -> None:
        self._online = False
        logger.warning("Conexión perdida; sincronización en pausa")
        self._engine.report_status(
            SyncStatus.ERROR,
            "Trabajando sin conexión - sincronización en pausa",
            error_kind=OFFLINE_ERROR_KIND,
        )

    def mark_online(self) -> SyncAttemptResult | None:
        was_online = self._online
        self._online = True
        if was_online or self._stopped:
            return None
        logger.info("Conexión restaurada; sincronizando")
        self._engine.report_status(SyncStatus.SUCCESS, "Conexión restaurada - sincronizando...")
        return self._engine.trigger(SyncOrigin.RECONNECT)

    def _run(self) -> None:
        if self._run_initial_sync:
            self._safe_tick()
        while not self._stop_event.wait(self._interval_seconds):
            self._safe_tick()

    def _safe_tick(self) -> None:
        try:
            self.tick()
        except Exception as exc:  # noqa: BLE001
            log_operational_error("Tick de sincronización fallido; el planificador sigue activo", exc=exc)

    def _drop(self, reason: str) -> None:
        self.dropped_ticks += 1
        logger.debug("Tick de sincronización descartado: %s", reason)
