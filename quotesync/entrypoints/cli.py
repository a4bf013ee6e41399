from __future__ import annotations

import argparse
import faulthandler
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any, Sequence

from quotesync.application.import_export import export_records, import_records
from quotesync.application.resolution import ResolutionStrategy
from quotesync.application.scheduler import SyncScheduler
from quotesync.bootstrap.container import QuoteSyncContainer, build_container
from quotesync.bootstrap.logging import configure_logging, install_exception_hook
from quotesync.bootstrap.settings import resolve_log_dir, resolve_log_level
from quotesync.core.errors import AppError, error_kind
from quotesync.core.metrics import metrics_registry
from quotesync.domain.models import Record, SyncAttemptResult, SyncOutcome
from quotesync.infrastructure.local_config import SyncConfigStore

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFLICT = 2
EXIT_ERROR = 3

_STRATEGY_CHOICES = [strategy.value for strategy in ResolutionStrategy]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="quotesync", description="Almacén de citas con sincronización remota")
    parser.add_argument("--selfcheck", action="store_true", help="Valida configuración y almacenamiento y termina")
    parser.add_argument("--memory", action="store_true", help="Usa un almacén volátil en memoria")
    parser.add_argument("--json", action="store_true", dest="as_json", help="Salida en JSON")
    parser.add_argument("--config-dir", type=Path, default=None, help="Directorio de config.json")

    subparsers = parser.add_subparsers(dest="command")

    list_parser = subparsers.add_parser("list", help="Lista las citas locales")
    list_parser.add_argument("--category", default=None)
    list_parser.add_argument("--search", default=None)

    add_parser = subparsers.add_parser("add", help="Añade una cita local")
    add_parser.add_argument("text")
    add_parser.add_argument("category")
    add_parser.add_argument("--author", default=None)

    remove_parser = subparsers.add_parser("remove", help="Elimina una cita por id")
    remove_parser.add_argument("id")

    sync_parser = subparsers.add_parser("sync", help="Sincroniza con la fuente remota")
    sync_parser.add_argument("--auto-resolve", action="store_true", help="Resuelve conflictos con la versión del servidor")
    sync_parser.add_argument("--strategy", choices=_STRATEGY_CHOICES, default=None)

    resolve_parser = subparsers.add_parser("resolve", help="Sincroniza y resuelve los conflictos con una estrategia")
    resolve_parser.add_argument("strategy", choices=_STRATEGY_CHOICES)

    export_parser = subparsers.add_parser("export", help="Exporta las citas a un fichero JSON")
    export_parser.add_argument("path", type=Path)

    import_parser = subparsers.add_parser("import", help="Importa citas desde un fichero JSON")
    import_parser.add_argument("path", type=Path)

    subparsers.add_parser("stats", help="Muestra estadísticas del almacén y de sincronización")

    run_parser = subparsers.add_parser("run", help="Arranca el planificador hasta Ctrl+C")
    run_parser.add_argument("--interval", type=float, default=None, help="Segundos entre sincronizaciones")
    return parser


def _emit(payload: Any, *, as_json: bool) -> None:
    if as_json:
        sys.stdout.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")
        return
    if isinstance(payload, list):
        for item in payload:
            sys.stdout.write(f"{_render_line(item)}\n")
        return
    if isinstance(payload, dict):
        for key, value in payload.items():
            sys.stdout.write(f"{key}: {value}\n")
        return
    sys.stdout.write(f"{payload}\n")


def _render_line(item: Any) -> str:
    if isinstance(item, dict) and "text" in item:
        return f"[{item['id']}] ({item['category']}, {item['source']}) {item['text']}"
    return str(item)


def _result_payload(result: SyncAttemptResult) -> dict[str, Any]:
    return {
        "outcome": result.outcome.value,
        "message": result.message,
        "added": result.added,
        "updated": result.updated,
        "conflicts": result.conflicts,
        "pending_conflicts": [conflict.id for conflict in result.pending_conflicts],
        "error_kind": result.error_kind,
    }


def _result_exit_code(result: SyncAttemptResult) -> int:
    if result.outcome is SyncOutcome.FAILED:
        return EXIT_FAILED
    if result.outcome is SyncOutcome.CONFLICT_PENDING:
        return EXIT_CONFLICT
    return EXIT_OK


def _run_sync(container: QuoteSyncContainer, *, auto_resolve: bool, strategy: str | None) -> SyncAttemptResult:
    if auto_resolve:
        container.engine.auto_resolve = True
    result = container.engine.trigger()
    if result.outcome is SyncOutcome.CONFLICT_PENDING and strategy is not None:
        result = container.engine.resolve_all(strategy)
    elif result.outcome is SyncOutcome.CONFLICT_PENDING:
        # Un proceso CLI no puede dejar la sesión aparcada para otro comando.
        container.engine.abandon()
    return result


def _record_rows(records: Sequence[Record]) -> list[dict[str, Any]]:
    return [record.to_dict() for record in records]


def _stats_payload(container: QuoteSyncContainer) -> dict[str, Any]:
    stats = container.store.stats()
    for key in ("oldest_quote", "newest_quote"):
        record = stats.get(key)
        stats[key] = record.to_dict() if isinstance(record, Record) else None
    counters = container.engine.counters
    stats.update(
        {
            "sync_count": counters.sync_count,
            "conflicts_resolved": counters.conflicts_resolved,
            "last_sync_at": counters.last_sync_at,
            "session_metrics": metrics_registry.sync_summary(),
        }
    )
    return stats


def _run_scheduler(container: QuoteSyncContainer, interval: float | None) -> int:
    scheduler = container.scheduler
    if interval is not None:
        scheduler = SyncScheduler(container.engine, interval_seconds=interval)
    scheduler.start()
    try:
        while scheduler.running:
            time.sleep(0.5)
    except KeyboardInterrupt:
        logger.info("Interrupción recibida; deteniendo planificador")
    finally:
        scheduler.stop()
        container.engine.abandon()
        logger.info("Métricas de la ejecución", extra={"extra": metrics_registry.sync_summary()})
    return EXIT_OK


def _run_selfcheck(config_store: SyncConfigStore, log_dir: Path) -> int:
    errors = 0
    try:
        settings = config_store.load()
    except AppError as exc:
        logger.error("config.json no válido: %s", exc)
        return EXIT_FAILED
    logger.info("Config: %s", config_store.config_path)

    try:
        container = build_container(settings, config_store=config_store)
        logger.info("Almacén local OK: %s citas", len(container.store))
    except AppError as exc:
        logger.exception("Almacenamiento local no disponible: %s", exc)
        errors += 1

    if not settings.remote_configured:
        logger.warning("Fuente remota sin configurar (spreadsheet_id/credentials_path)")
    elif not Path(settings.credentials_path).exists() and not config_store.credentials_path().exists():
        logger.error("No se encontró el fichero de credenciales: %s", settings.credentials_path)
        errors += 1

    if errors:
        logger.error("Selfcheck falló con %s error(es). crash.log=%s", errors, log_dir / "crash.log")
        return EXIT_FAILED
    logger.info("Selfcheck OK.")
    return EXIT_OK


def dispatch(args: argparse.Namespace, container: QuoteSyncContainer) -> int:
    store = container.store
    as_json = args.as_json

    if args.command == "list":
        records = store.search(args.search)
        if args.category:
            records = [record for record in records if record.category == args.category]
        _emit(_record_rows(records), as_json=as_json)
        return EXIT_OK
    if args.command == "add":
        record = store.add(args.text, args.category, author=args.author)
        _emit(record.to_dict(), as_json=as_json)
        return EXIT_OK
    if args.command == "remove":
        removed = store.remove(args.id)
        _emit({"removed": removed, "id": args.id}, as_json=as_json)
        return EXIT_OK if removed else EXIT_FAILED
    if args.command in {"sync", "resolve"}:
        auto_resolve = getattr(args, "auto_resolve", False)
        result = _run_sync(container, auto_resolve=auto_resolve, strategy=args.strategy)
        _emit(_result_payload(result), as_json=as_json)
        return _result_exit_code(result)
    if args.command == "export":
        args.path.write_text(export_records(store, container.clock.now()), encoding="utf-8")
        _emit({"exported": len(store), "path": str(args.path)}, as_json=as_json)
        return EXIT_OK
    if args.command == "import":
        imported = import_records(store, args.path.read_bytes(), imported_at=container.clock.now())
        _emit({"imported": imported, "total_quotes": len(store)}, as_json=as_json)
        return EXIT_OK
    if args.command == "stats":
        _emit(_stats_payload(container), as_json=as_json)
        return EXIT_OK
    if args.command == "run":
        return _run_scheduler(container, args.interval)
    raise ValueError(f"Comando no soportado: {args.command}")


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    log_dir = resolve_log_dir()
    configure_logging(log_dir, level=resolve_log_level(), console=True)
    install_exception_hook(log_dir)
    faulthandler.enable()

    logger.info("Log dir: %s", log_dir)
    logger.info("Python: %s", sys.version)

    config_store = SyncConfigStore(args.config_dir)
    if args.selfcheck:
        return _run_selfcheck(config_store, log_dir)
    if args.command is None:
        parser.print_help()
        return EXIT_ERROR

    try:
        settings = config_store.load()
        container = build_container(settings, memory=args.memory, config_store=config_store)
        return dispatch(args, container)
    except AppError as exc:
        logger.error("Comando %s fallido: %s", args.command, exc, extra={"extra": {"error_kind": error_kind(exc)}})
        _emit({"error": str(exc), "error_kind": error_kind(exc)}, as_json=args.as_json)
        return EXIT_ERROR
    except OSError as exc:
        logger.error("Error de fichero en %s: %s", args.command, exc)
        _emit({"error": str(exc), "error_kind": "io_error"}, as_json=args.as_json)
        return EXIT_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
