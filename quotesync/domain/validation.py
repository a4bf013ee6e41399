from __future__ import annotations

from typing import Any, Callable, Mapping

from quotesync.core.errors import ValidationError
from quotesync.domain.models import Record, RecordSource

MAX_REMOTE_TEXT_LENGTH = 150
UPDATABLE_FIELDS = frozenset({"text", "category", "source", "external_id", "author"})


def require_non_empty(value: Any, field_name: str) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"El campo '{field_name}' debe ser texto.")
    cleaned = value.strip()
    if not cleaned:
        raise ValidationError(f"El campo '{field_name}' es obligatorio.")
    return cleaned


def parse_source(value: Any, default: RecordSource) -> RecordSource:
    if value in (None, ""):
        return default
    if isinstance(value, RecordSource):
        return value
    try:
        return RecordSource(str(value).strip().lower())
    except ValueError as exc:
        raise ValidationError(f"Origen de registro no válido: {value!r}") from exc


def is_valid_payload(payload: Any) -> bool:
    if not isinstance(payload, Mapping):
        return False
    for field_name in ("text", "category"):
        value = payload.get(field_name)
        if not isinstance(value, str) or not value.strip():
            return False
    return True


def record_from_payload(
    payload: Mapping[str, Any],
    *,
    default_source: RecordSource,
    id_factory: Callable[[], str],
    now: str | None = None,
) -> Record:
    """Valida y normaliza un registro que entra desde fuera (importación o servidor)."""
    if not isinstance(payload, Mapping):
        raise ValidationError("Se esperaba un objeto con los campos del registro.")
    text = require_non_empty(payload.get("text"), "text")
    category = require_non_empty(payload.get("category"), "category")
    raw_id = payload.get("id")
    record_id = str(raw_id).strip() if raw_id not in (None, "") else id_factory()
    raw_revision = payload.get("revision")
    try:
        revision = int(raw_revision) if raw_revision not in (None, "") else 1
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Revisión no válida: {raw_revision!r}") from exc
    if revision < 1:
        raise ValidationError(f"Revisión no válida: {raw_revision!r}")
    external_id = payload.get("external_id", payload.get("server_id"))
    author = payload.get("author")
    return Record(
        id=record_id,
        text=text,
        category=category,
        source=parse_source(payload.get("source"), default_source),
        revision=revision,
        external_id=str(external_id).strip() if external_id not in (None, "") else None,
        author=str(author).strip() if author not in (None, "") else None,
        updated_at=payload.get("updated_at") or payload.get("timestamp") or now,
    )


def validate_update_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Campos no actualizables: {', '.join(sorted(unknown))}")
    cleaned: dict[str, Any] = {}
    for name, value in fields.items():
        if name in ("text", "category"):
            cleaned[name] = require_non_empty(value, name)
        elif name == "source":
            cleaned[name] = parse_source(value, RecordSource.LOCAL)
        else:
            cleaned[name] = str(value).strip() if value not in (None, "") else None
    return cleaned


def format_remote_text(title: str) -> str:
    text = title.strip()
    if not text:
        return text
    text = text[0].upper() + text[1:]
    if not text.endswith((".", "!", "?")):
        text += "."
    if len(text) > MAX_REMOTE_TEXT_LENGTH:
        text = text[: MAX_REMOTE_TEXT_LENGTH - 3] + "..."
    return text
