from __future__ import annotations

from contextlib import AbstractContextManager
from contextvars import ContextVar, Token
from datetime import datetime, timezone
import uuid
from typing import Any

_CORRELATION_ID: ContextVar[str | None] = ContextVar("correlation_id", default=None)
_SESSION_ID: ContextVar[str | None] = ContextVar("session_id", default=None)


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def get_correlation_id() -> str | None:
    return _CORRELATION_ID.get()


def get_session_id() -> str | None:
    return _SESSION_ID.get()


def set_correlation_id(correlation_id: str | None) -> Token[str | None]:
    return _CORRELATION_ID.set(correlation_id)


def set_session_id(session_id: str | None) -> Token[str | None]:
    return _SESSION_ID.set(session_id)


def reset_correlation_id(token: Token[str | None]) -> None:
    _CORRELATION_ID.reset(token)


def reset_session_id(token: Token[str | None]) -> None:
    _SESSION_ID.reset(token)


class OperationContext(AbstractContextManager["OperationContext"]):
    def __init__(self, operation_name: str, *, session_id: str | None = None) -> None:
        self.operation_name = operation_name
        self.session_id = session_id
        self.correlation_id = generate_correlation_id()
        self._correlation_token: Token[str | None] | None = None
        self._session_token: Token[str | None] | None = None

    def __enter__(self) -> "OperationContext":
        self._correlation_token = set_correlation_id(self.correlation_id)
        self._session_token = set_session_id(self.session_id)
        return self

    def __exit__(self, exc_type: object, exc: object, exc_tb: object) -> None:
        if self._session_token is not None:
            reset_session_id(self._session_token)
        if self._correlation_token is not None:
            reset_correlation_id(self._correlation_token)
        return None


def log_event(logger: Any, event_name: str, payload: dict[str, Any], correlation_id: str | None = None) -> dict[str, Any]:
    resolved_correlation_id = correlation_id or get_correlation_id()
    session_id = payload.get("session_id") or get_session_id()

    event = {
        "event": event_name,
        "correlation_id": resolved_correlation_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "payload": payload,
    }
    logger.info(
        event_name,
        extra={
            "correlation_id": resolved_correlation_id,
            "session_id": session_id,
            "extra": event,
        },
    )
    return event
