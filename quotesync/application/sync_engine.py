from __future__ import annotations

import logging
import uuid
from collections import deque
from collections.abc import Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Callable

from quotesync.application.notifications import SafeNotifier
from quotesync.application.record_store import RecordStore, generate_record_id
from quotesync.application.resolution import (
    ResolutionOutcome,
    ResolutionStrategy,
    apply_strategy,
    replace_with_remote,
    resolve_server_wins,
)
from quotesync.application.sync_counters import SyncCountersRepository, advance_counters
from quotesync.core.errors import (
    AppError,
    FetchError,
    NoPendingConflictError,
    SyncError,
    TransientFetchError,
    ValidationError,
)
from quotesync.core.metrics import (
    CONFLICTS_DETECTED,
    CONFLICTS_RESOLVED,
    FETCH_LATENCY,
    SYNC_SESSION_LATENCY,
    SYNCS_COMPLETED,
    SYNCS_FAILED,
    SYNCS_SKIPPED,
    measure_time,
    metrics_registry,
)
from quotesync.core.observability import OperationContext, log_event
from quotesync.core.operational_logging import log_operational_error
from quotesync.domain.conflict_detection import detect_conflicts
from quotesync.domain.models import (
    Conflict,
    Record,
    RecordSource,
    SyncAttemptResult,
    SyncCounters,
    SyncOrigin,
    SyncOutcome,
    SyncState,
    SyncStatus,
)
from quotesync.domain.ports import ClockPort, NotificationSinkPort, RemoteFetchPort
from quotesync.domain.validation import record_from_payload, require_non_empty

logger = logging.getLogger(__name__)


@dataclass
class SyncSession:
    session_id: str
    origin: SyncOrigin
    started_at: datetime
    state: SyncState = SyncState.FETCHING
    in_progress: bool = True
    pending_conflicts: deque[Conflict] = field(default_factory=deque)
    remote_batch: tuple[Record, ...] = ()
    detected_conflicts: int = 0
    resolved_count: int = 0
    added_count: int = 0
    updated_count: int = 0
    abandoned: bool = False


class SyncEngine:
    """Máquina de estados de sincronización contra la fuente remota.

    Idle -> Fetching -> Detecting -> (ConflictPending -> Resolving)* -> Persisting -> Idle,
    con Error accesible desde cualquier paso y siempre de vuelta a Idle.

    Sólo puede haber una sesión abierta: cualquier disparo mientras tanto
    devuelve ``SyncOutcome.SKIPPED`` al instante. La descarga remota se ejecuta
    fuera del lock, así que lecturas y escrituras del ``RecordStore`` siguen
    disponibles mientras la sesión está suspendida en la red o esperando
    ``resolve_next``.
    """

    def __init__(
        self,
        store: RecordStore,
        fetcher: RemoteFetchPort,
        counters_repository: SyncCountersRepository,
        *,
        notifier: NotificationSinkPort | None = None,
        clock: ClockPort | None = None,
        auto_resolve: bool = False,
        whole_batch_replace: bool = False,
        fetch_timeout_seconds: float | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._counters_repository = counters_repository
        self._notifier = SafeNotifier(notifier)
        self._clock = clock
        self.auto_resolve = auto_resolve
        self.whole_batch_replace = whole_batch_replace
        self._fetch_timeout_seconds = fetch_timeout_seconds
        self._id_factory = id_factory or generate_record_id
        self._lock = Lock()
        self._session: SyncSession | None = None
        self._state = SyncState.IDLE
        self._counters = counters_repository.load()
        self.last_error: SyncError | None = None

    # ── Estado observable ───────────────────────────────────

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_idle(self) -> bool:
        return self._session is None

    @property
    def in_progress(self) -> bool:
        return self._session is not None

    @property
    def counters(self) -> SyncCounters:
        return self._counters

    @property
    def last_status(self) -> SyncStatus:
        return self._notifier.last_status

    @property
    def pending_conflicts(self) -> tuple[Conflict, ...]:
        with self._lock:
            if self._session is None:
                return ()
            return tuple(self._session.pending_conflicts)

    def report_status(self, status: SyncStatus, message: str, *, error_kind: str | None = None) -> None:
        self._notifier.notify(status, message, error_kind=error_kind)

    # ── Operaciones ─────────────────────────────────────────

    @measure_time(SYNC_SESSION_LATENCY)
    def trigger(self, origin: SyncOrigin = SyncOrigin.MANUAL) -> SyncAttemptResult:
        session = self._begin_session(origin)
        if session is None:
            metrics_registry.increment(SYNCS_SKIPPED)
            logger.info("Sincronización ya en curso; se descarta el disparo %s", origin.value)
            return SyncAttemptResult(outcome=SyncOutcome.SKIPPED, message="Sincronización ya en curso")

        with OperationContext("sync", session_id=session.session_id):
            log_event(logger, "sync_started", {"session_id": session.session_id, "origin": origin.value})
            self._notifier.notify(SyncStatus.SYNCING, "Sincronizando con el servidor...")
            try:
                batch = self._fetch()
                if session.abandoned:
                    return self._abandoned_result()
                self._transition(session, SyncState.DETECTING)
                return self._detect_and_apply(session, batch)
            except Exception as exc:  # noqa: BLE001
                return self._fail(session, exc)

    def resolve_next(self, strategy: ResolutionStrategy | str) -> SyncAttemptResult:
        """Resuelve el primer conflicto pendiente (FIFO) con la estrategia indicada."""
        chosen = ResolutionStrategy.parse(strategy)
        with self._lock:
            session = self._session
            if session is None or session.state is not SyncState.CONFLICT_PENDING or not session.pending_conflicts:
                raise NoPendingConflictError("No hay conflictos pendientes de resolver")
            conflict = session.pending_conflicts[0]
            session.state = SyncState.RESOLVING
            self._state = SyncState.RESOLVING

        with OperationContext("resolve_conflict", session_id=session.session_id):
            now = self._now()
            remote_batch = session.remote_batch if chosen is ResolutionStrategy.MERGE else ()
            try:
                outcome = self._store.apply_resolution(
                    lambda records: apply_strategy(chosen, records, conflict, now, remote_batch=remote_batch)
                )
            except Exception as exc:  # noqa: BLE001
                return self._fail(session, exc)

            with self._lock:
                if session.pending_conflicts and session.pending_conflicts[0] is conflict:
                    session.pending_conflicts.popleft()
                session.resolved_count += 1
                self._account(session, outcome)
                remaining = len(session.pending_conflicts)
            metrics_registry.increment(CONFLICTS_RESOLVED)
            log_event(
                logger,
                "conflict_resolved",
                {"session_id": session.session_id, "conflict_id": conflict.id, "strategy": chosen.value},
            )
            self._notifier.notify(SyncStatus.SUCCESS, outcome.message)

            if session.abandoned:
                return self._abandoned_result()
            if remaining:
                self._transition(session, SyncState.CONFLICT_PENDING)
                self._notifier.notify(
                    SyncStatus.CONFLICT,
                    f"Conflicto detectado: quedan {remaining} por resolver",
                )
                return SyncAttemptResult(
                    outcome=SyncOutcome.CONFLICT_PENDING,
                    message=outcome.message,
                    added=session.added_count,
                    updated=session.updated_count,
                    conflicts=session.detected_conflicts,
                    pending_conflicts=self.pending_conflicts,
                )
            try:
                return self._finish(session, "Todos los conflictos resueltos")
            except Exception as exc:  # noqa: BLE001
                return self._fail(session, exc)

    def resolve_all(self, strategy: ResolutionStrategy | str) -> SyncAttemptResult:
        result = SyncAttemptResult(outcome=SyncOutcome.COMPLETED, message="Sin conflictos pendientes")
        while self.pending_conflicts:
            result = self.resolve_next(strategy)
            if result.outcome is not SyncOutcome.CONFLICT_PENDING:
                break
        return result

    def abandon(self) -> bool:
        """Abandona la sesión abierta (p. ej. al cerrar la aplicación)."""
        with self._lock:
            session = self._session
            if session is None:
                return False
            session.abandoned = True
            session.in_progress = False
            self._session = None
            self._state = SyncState.IDLE
        logger.warning(
            "Sesión de sincronización abandonada en estado %s con %s conflictos pendientes",
            session.state.value,
            len(session.pending_conflicts),
        )
        self._notifier.notify(SyncStatus.IDLE, "Sincronización abandonada")
        return True

    # ── Pasos de la sesión ──────────────────────────────────

    def _begin_session(self, origin: SyncOrigin) -> SyncSession | None:
        with self._lock:
            if self._session is not None:
                return None
            session = SyncSession(session_id=str(uuid.uuid4()), origin=origin, started_at=self._now())
            self._session = session
            self._state = SyncState.FETCHING
            return session

    @measure_time(FETCH_LATENCY)
    def _fetch(self) -> list[Record]:
        try:
            raw_batch = self._call_fetcher()
        except AppError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise FetchError(f"No se pudo obtener el lote remoto: {exc}") from exc
        return self._ingest(raw_batch)

    def _call_fetcher(self) -> Any:
        if self._fetch_timeout_seconds is None:
            return self._fetcher.fetch_batch()
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="quotesync-fetch")
        try:
            future = executor.submit(self._fetcher.fetch_batch)
            try:
                return future.result(timeout=self._fetch_timeout_seconds)
            except FutureTimeoutError as exc:
                raise TransientFetchError(
                    f"El servidor no respondió en {self._fetch_timeout_seconds} segundos"
                ) from exc
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _ingest(self, raw_batch: Any) -> list[Record]:
        if raw_batch is None:
            return []
        if isinstance(raw_batch, (str, bytes, Mapping)) or not isinstance(raw_batch, Sequence):
            raise FetchError("Respuesta remota no válida: se esperaba una lista de citas")
        batch: list[Record] = []
        for position, item in enumerate(raw_batch):
            try:
                batch.append(self._to_record(item))
            except ValidationError as exc:
                raise FetchError(f"Cita remota no válida en la posición {position}: {exc}") from exc
        return batch

    def _to_record(self, item: Any) -> Record:
        if isinstance(item, Record):
            require_non_empty(item.text, "text")
            require_non_empty(item.category, "category")
            return item
        if not isinstance(item, Mapping):
            raise ValidationError(f"Tipo de elemento no soportado: {type(item).__name__}")
        payload = dict(item)
        if payload.get("id") in (None, ""):
            external_id = payload.get("external_id", payload.get("server_id"))
            if external_id in (None, ""):
                raise ValidationError("La cita remota no tiene identificador")
            payload["id"] = f"server_{external_id}"
        return record_from_payload(
            payload,
            default_source=RecordSource.REMOTE,
            id_factory=self._id_factory,
            now=self._now().isoformat(),
        )

    def _detect_and_apply(self, session: SyncSession, batch: list[Record]) -> SyncAttemptResult:
        session.remote_batch = tuple(batch)
        if not batch:
            return self._finish(session, "Sin datos nuevos en el servidor")

        conflicts = detect_conflicts(self._store.get_all(), batch)
        session.detected_conflicts = len(conflicts)
        log_event(
            logger,
            "sync_detected",
            {"session_id": session.session_id, "remote": len(batch), "conflicts": len(conflicts)},
        )

        if not conflicts:
            session.added_count += self._store.merge_in(batch)
            return self._finish(session, f"Sincronizado: {session.added_count} citas nuevas")

        metrics_registry.increment(CONFLICTS_DETECTED, len(conflicts))
        if self.auto_resolve:
            return self._auto_resolve(session, conflicts, batch)

        with self._lock:
            session.pending_conflicts.extend(conflicts)
        self._transition(session, SyncState.CONFLICT_PENDING)
        message = f"Conflicto detectado: {len(conflicts)} requieren resolución"
        self._notifier.notify(SyncStatus.CONFLICT, message)
        log_event(logger, "sync_conflict_pending", {"session_id": session.session_id, "conflicts": len(conflicts)})
        return SyncAttemptResult(
            outcome=SyncOutcome.CONFLICT_PENDING,
            message=message,
            conflicts=len(conflicts),
            pending_conflicts=tuple(conflicts),
        )

    def _auto_resolve(self, session: SyncSession, conflicts: list[Conflict], batch: list[Record]) -> SyncAttemptResult:
        self._transition(session, SyncState.RESOLVING)
        now = self._now()
        if self.whole_batch_replace:
            outcome = self._store.apply_resolution(lambda records: replace_with_remote(records, batch))
            self._account(session, outcome)
            resolved = len(conflicts)
            message = outcome.message
        else:
            resolved = 0
            for conflict in conflicts:
                outcome = self._store.apply_resolution(
                    lambda records, current=conflict: resolve_server_wins(records, current, now)
                )
                self._account(session, outcome)
                if outcome.changed:
                    resolved += 1
            session.added_count += self._store.merge_in(batch)
            message = (
                f"Sincronizado: {resolved} conflictos resueltos con la versión del servidor, "
                f"{session.added_count} citas nuevas"
            )
        session.resolved_count += resolved
        metrics_registry.increment(CONFLICTS_RESOLVED, resolved)
        return self._finish(session, message)

    def _finish(self, session: SyncSession, message: str) -> SyncAttemptResult:
        self._transition(session, SyncState.PERSISTING)
        self._store.flush()
        counters = advance_counters(self._counters, resolved=session.resolved_count, finished_at=self._now())
        self._counters = counters
        self._counters_repository.save(counters)

        self._end_session(session)
        metrics_registry.increment(SYNCS_COMPLETED)
        self._notifier.notify(SyncStatus.SUCCESS, message)
        log_event(
            logger,
            "sync_completed",
            {
                "session_id": session.session_id,
                "added": session.added_count,
                "updated": session.updated_count,
                "resolved": session.resolved_count,
                "sync_count": counters.sync_count,
            },
        )
        return SyncAttemptResult(
            outcome=SyncOutcome.COMPLETED,
            message=message,
            added=session.added_count,
            updated=session.updated_count,
            conflicts=session.detected_conflicts,
        )

    def _fail(self, session: SyncSession, exc: BaseException) -> SyncAttemptResult:
        error = exc if isinstance(exc, SyncError) else SyncError(f"Sincronización fallida: {exc}", cause=exc)
        self._transition(session, SyncState.ERROR)
        log_operational_error(
            "Sesión de sincronización fallida",
            exc=exc,
            extra={"session_id": session.session_id, "origin": session.origin.value},
            logger=logger,
        )
        metrics_registry.increment(SYNCS_FAILED)
        self.last_error = error
        self._end_session(session)
        self._notifier.notify(SyncStatus.ERROR, str(error), error_kind=error.cause_kind)
        return SyncAttemptResult(
            outcome=SyncOutcome.FAILED,
            message=str(error),
            added=session.added_count,
            updated=session.updated_count,
            conflicts=session.detected_conflicts,
            error_kind=error.cause_kind,
            error=error,
        )

    def _abandoned_result(self) -> SyncAttemptResult:
        return SyncAttemptResult(outcome=SyncOutcome.SKIPPED, message="Sesión abandonada")

    # ── Internos ────────────────────────────────────────────

    def _transition(self, session: SyncSession, state: SyncState) -> None:
        with self._lock:
            session.state = state
            if self._session is session:
                self._state = state
        logger.debug("Sesión %s -> %s", session.session_id, state.value)

    def _end_session(self, session: SyncSession) -> None:
        with self._lock:
            session.in_progress = False
            if self._session is session:
                self._session = None
                self._state = SyncState.IDLE

    @staticmethod
    def _account(session: SyncSession, outcome: ResolutionOutcome) -> None:
        session.added_count += outcome.added
        session.updated_count += outcome.updated

    def _now(self) -> datetime:
        if self._clock is not None:
            return self._clock.now()
        return datetime.now(timezone.utc)
