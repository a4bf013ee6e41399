from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from quotesync.application.import_export import build_export_document, export_records, import_records, parse_import_document
from quotesync.application.record_store import DEFAULT_QUOTES, RecordStore
from quotesync.core.errors import ValidationError
from quotesync.domain.models import RecordSource
from quotesync.infrastructure.kv_store_memory import InMemoryKeyValueStore

EXPORTED_AT = datetime(2024, 3, 1, tzinfo=timezone.utc)


def test_export_incluye_metadatos(store: RecordStore) -> None:
    document = json.loads(export_records(store, EXPORTED_AT))

    assert document["total_quotes"] == len(DEFAULT_QUOTES)
    assert document["export_date"] == EXPORTED_AT.isoformat()
    assert document["categories"] == store.categories()
    assert document["quotes"][0]["id"] == "1"


def test_import_es_aditivo_y_marca_origen(store: RecordStore) -> None:
    payload = {
        "quotes": [
            {"text": "Importada", "category": "libros"},
            {"id": "1", "text": "Pisaría la 1", "category": "motivation"},
        ]
    }

    imported = import_records(store, json.dumps(payload), imported_at=EXPORTED_AT)

    assert imported == 1
    added = [record for record in store.get_all() if record.text == "Importada"]
    assert added[0].source is RecordSource.IMPORTED
    assert store.find_by_id("1").text == DEFAULT_QUOTES[0][1]


def test_import_descarta_entradas_invalidas(empty_store: RecordStore) -> None:
    payload = [{"text": "válida", "category": "x"}, {"text": ""}, "basura", {"text": "sin categoría"}]

    assert import_records(empty_store, payload, imported_at=EXPORTED_AT) == 1
    assert len(empty_store) == 1


def test_export_import_en_otro_almacen_reproduce_las_citas(store: RecordStore) -> None:
    store.add("Extra", "misc")
    empty_store = RecordStore(InMemoryKeyValueStore(), seed_defaults=False)

    import_records(empty_store, export_records(store, EXPORTED_AT), imported_at=EXPORTED_AT)

    assert [record.id for record in empty_store.get_all()] == [record.id for record in store.get_all()]
    assert build_export_document(empty_store, EXPORTED_AT)["total_quotes"] == len(store)


@pytest.mark.parametrize("payload", ["{malformado", '"texto"', b"42"])
def test_parse_import_document_rechaza_formatos_invalidos(payload) -> None:
    with pytest.raises(ValidationError):
        parse_import_document(payload)
