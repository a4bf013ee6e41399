from __future__ import annotations

import logging
from typing import Any

from quotesync.core.observability import get_correlation_id

operational_logger = logging.getLogger("quotesync.operational_error")


def log_operational_error(
    message: str,
    *,
    exc: BaseException,
    extra: dict[str, Any] | None = None,
    logger: logging.Logger | None = None,
) -> None:
    metadata = dict(extra or {})
    correlation_id = metadata.get("correlation_id") or get_correlation_id()
    if correlation_id:
        metadata["correlation_id"] = correlation_id
    error_kind = getattr(exc, "kind", None)
    if error_kind:
        metadata.setdefault("error_kind", error_kind)
    (logger or operational_logger).error(
        message,
        exc_info=(type(exc), exc, exc.__traceback__),
        extra={"correlation_id": correlation_id, "extra": metadata},
    )
