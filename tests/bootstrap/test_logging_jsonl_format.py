from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler

import pytest

from quotesync.bootstrap.logging import (
    CRASH_LOG_NAME,
    ERROR_OPERATIVO_LOG_NAME,
    MAIN_LOG_NAME,
    LevelOnlyFilter,
    configure_logging,
    write_crash_log,
)
from quotesync.core.observability import OperationContext
from quotesync.core.operational_logging import log_operational_error

MIN_FIELDS = {"timestamp", "level", "modulo", "funcion", "mensaje", "correlation_id"}

pytestmark = pytest.mark.usefixtures("restore_root_logging")


def _events(path) -> list[dict]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def test_escribe_jsonl_con_campos_minimos(tmp_path) -> None:
    configure_logging(tmp_path, max_bytes=4096, backup_count=2)
    logger = logging.getLogger("tests.jsonl")

    logger.info("primer evento")
    logger.info("segundo evento", extra={"correlation_id": "cid-001", "extra": {"k": "v"}})

    events = _events(tmp_path / MAIN_LOG_NAME)
    assert all(MIN_FIELDS.issubset(event) for event in events)
    assert events[-1]["correlation_id"] == "cid-001"
    assert events[-1]["extra"] == {"k": "v"}


def test_incluye_session_id_del_contexto(tmp_path) -> None:
    configure_logging(tmp_path, max_bytes=4096, backup_count=2)

    with OperationContext("sync", session_id="sess-42") as operation:
        logging.getLogger("tests.jsonl").info("dentro de la sesión")

    event = _events(tmp_path / MAIN_LOG_NAME)[-1]
    assert event["session_id"] == "sess-42"
    assert event["correlation_id"] == operation.correlation_id


def test_rotacion_crea_backups(tmp_path) -> None:
    configure_logging(tmp_path, max_bytes=200, backup_count=3)
    logger = logging.getLogger("tests.rotation")

    for index in range(40):
        logger.info("evento-%s %s", index, "x" * 120)

    assert sorted(tmp_path.glob(f"{MAIN_LOG_NAME}.*"))


def test_max_bytes_desde_entorno(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("QUOTESYNC_LOG_MAX_BYTES", "2048")

    configure_logging(tmp_path)

    handlers = [h for h in logging.getLogger().handlers if isinstance(h, RotatingFileHandler)]
    assert handlers
    assert all(handler.maxBytes == 2048 for handler in handlers)


def test_error_operativo_solo_recibe_errores(tmp_path) -> None:
    configure_logging(tmp_path, max_bytes=4096, backup_count=2)
    handlers = [h for h in logging.getLogger().handlers if isinstance(h, RotatingFileHandler)]
    operational = next(h for h in handlers if h.baseFilename.endswith(ERROR_OPERATIVO_LOG_NAME))
    assert any(isinstance(filter_, LevelOnlyFilter) for filter_ in operational.filters)

    logging.getLogger("tests.error_operativo").warning("aviso")
    log_operational_error("fallo de persistencia", exc=RuntimeError("boom"), extra={"key": "quotes"})

    events = _events(tmp_path / ERROR_OPERATIVO_LOG_NAME)
    assert [event["mensaje"] for event in events] == ["fallo de persistencia"]
    assert events[0]["extra"]["key"] == "quotes"
    assert "exc_info" in events[0]


def test_write_crash_log_va_a_crash_log(tmp_path) -> None:
    configure_logging(tmp_path, max_bytes=4096, backup_count=2)

    try:
        raise ValueError("crash")
    except ValueError as exc:
        crash_path = write_crash_log(ValueError, exc, exc.__traceback__, tmp_path)

    assert crash_path == tmp_path / CRASH_LOG_NAME
    event = _events(crash_path)[-1]
    assert event["level"] == "CRITICAL"
    assert "ValueError: crash" in event["exc_info"]
