from __future__ import annotations

import pytest

from quotesync.core.errors import ValidationError
from quotesync.domain.models import Record, RecordSource
from quotesync.domain.validation import (
    format_remote_text,
    is_valid_payload,
    parse_source,
    record_from_payload,
    require_non_empty,
    validate_update_fields,
)


def _ids():
    return "generated_1"


def test_require_non_empty_recorta_y_rechaza_vacios() -> None:
    assert require_non_empty("  hola ", "text") == "hola"
    with pytest.raises(ValidationError):
        require_non_empty("   ", "text")
    with pytest.raises(ValidationError):
        require_non_empty(None, "category")


def test_parse_source_usa_default_y_rechaza_desconocidos() -> None:
    assert parse_source(None, RecordSource.IMPORTED) is RecordSource.IMPORTED
    assert parse_source("Remote", RecordSource.LOCAL) is RecordSource.REMOTE
    with pytest.raises(ValidationError):
        parse_source("satellite", RecordSource.LOCAL)


def test_is_valid_payload() -> None:
    assert is_valid_payload({"text": "a", "category": "b"})
    assert not is_valid_payload({"text": "a"})
    assert not is_valid_payload({"text": " ", "category": "b"})
    assert not is_valid_payload(["text", "category"])


def test_record_from_payload_completa_id_origen_y_fecha() -> None:
    record = record_from_payload(
        {"text": " Cita ", "category": " vida ", "timestamp": "2024-02-01T00:00:00+00:00", "server_id": 12},
        default_source=RecordSource.IMPORTED,
        id_factory=_ids,
        now="2024-01-01T00:00:00+00:00",
    )

    assert record == Record(
        id="generated_1",
        text="Cita",
        category="vida",
        source=RecordSource.IMPORTED,
        revision=1,
        external_id="12",
        author=None,
        updated_at="2024-02-01T00:00:00+00:00",
    )


def test_record_from_payload_rechaza_revision_invalida() -> None:
    with pytest.raises(ValidationError):
        record_from_payload(
            {"id": "1", "text": "a", "category": "b", "revision": 0},
            default_source=RecordSource.LOCAL,
            id_factory=_ids,
        )
    with pytest.raises(ValidationError):
        record_from_payload(
            {"id": "1", "text": "a", "category": "b", "revision": "x"},
            default_source=RecordSource.LOCAL,
            id_factory=_ids,
        )


def test_validate_update_fields_rechaza_campos_no_permitidos() -> None:
    assert validate_update_fields({"text": " nuevo ", "author": ""}) == {"text": "nuevo", "author": None}
    with pytest.raises(ValidationError):
        validate_update_fields({"revision": 9})
    with pytest.raises(ValidationError):
        validate_update_fields({"id": "otro"})


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("hola mundo", "Hola mundo."),
        ("¿qué tal?", "¿qué tal?"),
        ("ya termina!", "Ya termina!"),
        ("   ", ""),
    ],
)
def test_format_remote_text(raw: str, expected: str) -> None:
    assert format_remote_text(raw) == expected


def test_format_remote_text_trunca_a_150() -> None:
    text = format_remote_text("a" * 400)

    assert len(text) == 150
    assert text.endswith("...")
