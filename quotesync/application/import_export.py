from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any

from quotesync.application.record_store import RecordStore, generate_record_id
from quotesync.core.errors import ValidationError
from quotesync.domain.models import Record, RecordSource
from quotesync.domain.validation import is_valid_payload, record_from_payload

logger = logging.getLogger(__name__)


def build_export_document(store: RecordStore, exported_at: datetime) -> dict[str, Any]:
    records = store.get_all()
    return {
        "quotes": [record.to_dict() for record in records],
        "export_date": exported_at.isoformat(),
        "total_quotes": len(records),
        "categories": store.categories(),
    }


def export_records(store: RecordStore, exported_at: datetime) -> str:
    return json.dumps(build_export_document(store, exported_at), ensure_ascii=False, indent=2)


def parse_import_document(payload: str | bytes | dict[str, Any] | list[Any]) -> list[Any]:
    """Acepta un JSON de exportación, un dict con ``quotes`` o una lista de citas."""
    data: Any = payload
    if isinstance(payload, (str, bytes)):
        try:
            data = json.loads(payload)
        except ValueError as exc:
            raise ValidationError("No se pudieron importar las citas: formato no válido") from exc
    if isinstance(data, dict):
        data = data.get("quotes", data)
    if not isinstance(data, list):
        raise ValidationError("Formato no válido: se esperaba una lista de citas")
    return data


def import_records(
    store: RecordStore,
    payload: str | bytes | dict[str, Any] | list[Any],
    *,
    imported_at: datetime,
) -> int:
    """Importa citas de forma aditiva. Las entradas inválidas se descartan."""
    entries = parse_import_document(payload)
    candidates: list[Record] = []
    discarded = 0
    for entry in entries:
        if not is_valid_payload(entry):
            discarded += 1
            continue
        try:
            candidates.append(
                record_from_payload(
                    entry,
                    default_source=RecordSource.IMPORTED,
                    id_factory=generate_record_id,
                    now=imported_at.isoformat(),
                )
            )
        except ValidationError as exc:
            logger.warning("Cita descartada en la importación: %s", exc)
            discarded += 1
    if discarded:
        logger.warning("Importación: %s entradas no válidas descartadas", discarded)
    imported = store.merge_in(candidates)
    logger.info("Importación completada: %s citas nuevas de %s", imported, len(entries))
    return imported
