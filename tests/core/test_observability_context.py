from __future__ import annotations

import logging

from quotesync.core.observability import OperationContext, get_correlation_id, get_session_id, log_event


def test_operation_context_fija_y_restaura_ids() -> None:
    previous_correlation_id = get_correlation_id()
    previous_session_id = get_session_id()

    with OperationContext("sync", session_id="sess-1") as operation:
        assert get_correlation_id() == operation.correlation_id
        assert get_session_id() == "sess-1"
        assert len(operation.correlation_id) == 36

    assert get_correlation_id() == previous_correlation_id
    assert get_session_id() == previous_session_id


def test_log_event_devuelve_evento_estructurado(caplog) -> None:
    logger = logging.getLogger("tests.observability")

    with caplog.at_level(logging.INFO, logger="tests.observability"):
        event = log_event(logger, "sync_started", {"session_id": "sess-9"}, "cid-123")

    assert event["event"] == "sync_started"
    assert event["correlation_id"] == "cid-123"
    assert event["payload"] == {"session_id": "sess-9"}
    assert caplog.records[-1].session_id == "sess-9"
