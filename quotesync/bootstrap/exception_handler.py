from __future__ import annotations

import json
import logging
import traceback
import uuid
from types import TracebackType

from quotesync.bootstrap.logging import CRASH_LOG_NAME
from quotesync.bootstrap.settings import resolve_log_dir
from quotesync.core.observability import (
    generate_correlation_id,
    get_correlation_id,
    get_session_id,
    set_correlation_id,
)


def generate_incident_id() -> str:
    return f"INC-{uuid.uuid4().hex[:12].upper()}"


def _ensure_correlation_id() -> str:
    correlation_id = get_correlation_id()
    if correlation_id:
        return correlation_id
    correlation_id = generate_correlation_id()
    set_correlation_id(correlation_id)
    return correlation_id


def _write_fallback_crash_log(
    *,
    incident_id: str,
    correlation_id: str,
    session_id: str | None,
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_traceback: TracebackType,
) -> None:
    log_dir = resolve_log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    crash_file = log_dir / CRASH_LOG_NAME
    payload = {
        "incident_id": incident_id,
        "correlation_id": correlation_id,
        "session_id": session_id,
        "error_type": exc_type.__name__,
        "error_message": str(exc_value),
        "stacktrace": "".join(traceback.format_exception(exc_type, exc_value, exc_traceback)),
    }
    with crash_file.open("a", encoding="utf-8") as handler:
        handler.write(json.dumps(payload, ensure_ascii=False) + "\n")


def handle_global_exception(
    exc_type: type[BaseException], exc_value: BaseException, exc_traceback: TracebackType
) -> str:
    incident_id = generate_incident_id()
    correlation_id = _ensure_correlation_id()
    # Un fallo con una sesión abierta se enlaza a ella en crash.log.
    session_id = get_session_id()
    logger = logging.getLogger("quotesync.global_exception")

    try:
        logger.critical(
            "Excepción no controlada. incident_id=%s session_id=%s",
            incident_id,
            session_id or "-",
            exc_info=(exc_type, exc_value, exc_traceback),
            extra={"incident_id": incident_id, "correlation_id": correlation_id, "session_id": session_id},
        )
    except Exception:  # noqa: BLE001
        _write_fallback_crash_log(
            incident_id=incident_id,
            correlation_id=correlation_id,
            session_id=session_id,
            exc_type=exc_type,
            exc_value=exc_value,
            exc_traceback=exc_traceback,
        )

    return incident_id
