from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, TypeVar

import gspread
from google.auth.exceptions import DefaultCredentialsError

from quotesync.core.observability import get_correlation_id
from quotesync.core.operational_logging import log_operational_error
from quotesync.domain.validation import format_remote_text
from quotesync.infrastructure.sheets_errors import (
    SheetsPermissionError,
    SheetsRateLimitError,
    map_gspread_exception,
)

logger = logging.getLogger(__name__)

_MAX_RETRIES = 5
_BASE_BACKOFF_SECONDS = 1
DEFAULT_WORKSHEET = "quotes"
DEFAULT_REMOTE_CATEGORY = "server"
REMOTE_ID_PREFIX = "server_"

T = TypeVar("T")


def read_backoff_seconds(attempt: int, base_seconds: int = _BASE_BACKOFF_SECONDS) -> int:
    return base_seconds * (2 ** (attempt - 1))


def _normalize_header(values: list[str]) -> list[str]:
    return [str(value).strip().lower() for value in values]


def row_to_payload(row: dict[str, str]) -> dict[str, Any] | None:
    """Convierte una fila de la hoja al formato de cita remota.

    Devuelve ``None`` si la fila no tiene identificador o texto.
    """
    external_id = (row.get("id") or row.get("server_id") or "").strip()
    text = format_remote_text(row.get("text") or row.get("quote") or row.get("title") or "")
    if not external_id or not text:
        return None
    return {
        "id": f"{REMOTE_ID_PREFIX}{external_id}",
        "external_id": external_id,
        "text": text,
        "category": (row.get("category") or "").strip() or DEFAULT_REMOTE_CATEGORY,
        "author": (row.get("author") or "").strip() or None,
        "updated_at": (row.get("updated_at") or "").strip() or None,
        "source": "remote",
    }


def rows_to_payloads(values: list[list[str]], *, limit: int | None = None) -> list[dict[str, Any]]:
    if not values:
        return []
    header = _normalize_header(values[0])
    payloads: list[dict[str, Any]] = []
    skipped = 0
    for raw_row in values[1:]:
        if not any(str(cell).strip() for cell in raw_row):
            continue
        row = {name: str(raw_row[index]) if index < len(raw_row) else "" for index, name in enumerate(header)}
        payload = row_to_payload(row)
        if payload is None:
            skipped += 1
            continue
        payloads.append(payload)
        if limit is not None and len(payloads) >= limit:
            break
    if skipped:
        logger.warning("Filas remotas sin id o texto descartadas: %s", skipped)
    return payloads


class SheetsQuoteSource:
    """Fuente remota de citas sobre una hoja de Google Sheets (gspread)."""

    def __init__(
        self,
        credentials_path: Path,
        spreadsheet_id: str,
        *,
        worksheet_name: str = DEFAULT_WORKSHEET,
        limit: int | None = 3,
        client_factory: Callable[..., Any] = gspread.service_account,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._credentials_path = credentials_path
        self._spreadsheet_id = spreadsheet_id
        self._worksheet_name = worksheet_name
        self._limit = limit
        self._client_factory = client_factory
        self._sleep = sleep
        self._worksheet: Any | None = None
        self._read_calls_count = 0

    @property
    def read_calls_count(self) -> int:
        return self._read_calls_count

    def fetch_batch(self) -> list[dict[str, Any]]:
        worksheet = self._open_worksheet()
        values = self._with_rate_limit_retry(
            f"worksheet.get_all_values({self._worksheet_name})",
            worksheet.get_all_values,
        )
        self._read_calls_count += 1
        payloads = rows_to_payloads(values, limit=self._limit)
        logger.info("Lote remoto leído de Google Sheets: %s citas", len(payloads))
        return payloads

    def _open_worksheet(self) -> Any:
        if self._worksheet is not None:
            return self._worksheet
        logger.info("Conectando a Google Sheets con credenciales: %s", self._credentials_path)
        try:
            client = self._client_factory(filename=str(self._credentials_path))
            spreadsheet = self._with_rate_limit_retry(
                "open_spreadsheet",
                lambda: client.open_by_key(self._spreadsheet_id),
            )
            worksheet = self._with_rate_limit_retry(
                f"spreadsheet.worksheet({self._worksheet_name})",
                lambda: spreadsheet.worksheet(self._worksheet_name),
            )
        except (
            gspread.exceptions.GSpreadException,
            FileNotFoundError,
            json.JSONDecodeError,
            DefaultCredentialsError,
            OSError,
        ) as exc:
            mapped_error = map_gspread_exception(exc)
            if isinstance(mapped_error, SheetsPermissionError):
                self._log_permission_error(mapped_error)
            raise mapped_error from exc
        self._worksheet = worksheet
        return worksheet

    def _with_rate_limit_retry(self, operation_name: str, operation: Callable[[], T]) -> T:
        for attempt in range(1, _MAX_RETRIES + 1):
            try:
                return operation()
            except gspread.exceptions.APIError as exc:
                mapped_error = map_gspread_exception(exc)
                if not isinstance(mapped_error, SheetsRateLimitError):
                    if isinstance(mapped_error, SheetsPermissionError):
                        self._log_permission_error(mapped_error)
                    raise mapped_error from exc
                if attempt >= _MAX_RETRIES:
                    logger.error(
                        "Google Sheets rate limit persistente en %s tras %s intentos.",
                        operation_name,
                        attempt,
                    )
                    raise SheetsRateLimitError(
                        "Límite de Google Sheets alcanzado. Espera 1 minuto y reintenta."
                    ) from exc
                backoff_seconds = read_backoff_seconds(attempt)
                logger.warning(
                    "Rate limit en Google Sheets (%s). intento=%s/%s backoff=%.3fs",
                    operation_name,
                    attempt,
                    _MAX_RETRIES,
                    backoff_seconds,
                )
                self._sleep(backoff_seconds)
        raise RuntimeError("No se pudo completar la operación de Google Sheets.")

    def _log_permission_error(self, error: SheetsPermissionError) -> None:
        log_operational_error(
            "Sync failed: permisos insuficientes en Google Sheets",
            exc=error,
            extra={
                "correlation_id": get_correlation_id(),
                "operation": "sheets_permission_check",
                "spreadsheet_id": self._spreadsheet_id,
                "worksheet": self._worksheet_name,
            },
            logger=logger,
        )
