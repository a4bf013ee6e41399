from __future__ import annotations

import json
import logging
import random
import uuid
from datetime import datetime, timezone
from threading import RLock
from typing import Any, Callable, Iterable, Mapping

from quotesync.application.resolution import ResolutionOutcome
from quotesync.core.errors import PersistenceError, ValidationError
from quotesync.core.operational_logging import log_operational_error
from quotesync.domain.identity import IdentityIndex
from quotesync.domain.models import Record, RecordSource
from quotesync.domain.ports import ClockPort, IdFactoryPort, KeyValueStorePort
from quotesync.domain.validation import require_non_empty, validate_update_fields

logger = logging.getLogger(__name__)

QUOTES_KEY = "quotes"

DEFAULT_QUOTES: tuple[tuple[str, str, str], ...] = (
    ("1", "The only way to do great work is to love what you do.", "motivation"),
    ("2", "Innovation distinguishes between a leader and a follower.", "innovation"),
    ("3", "Life is what happens to you while you're busy making other plans.", "life"),
    ("4", "The future belongs to those who believe in the beauty of their dreams.", "dreams"),
    ("5", "Success is not final, failure is not fatal: it is the courage to continue that counts.", "success"),
)


def generate_record_id() -> str:
    return f"quote_{uuid.uuid4().hex}"


def serialize_records(records: Iterable[Record]) -> bytes:
    payload = [record.to_dict() for record in records]
    return json.dumps(payload, ensure_ascii=False, sort_keys=True).encode("utf-8")


def deserialize_records(raw: bytes) -> list[Record]:
    payload = json.loads(raw.decode("utf-8"))
    if not isinstance(payload, list):
        raise ValueError("El conjunto de citas persistido no es una lista.")
    records: list[Record] = []
    for item in payload:
        if not isinstance(item, dict):
            raise ValueError("Cada cita persistida debe ser un objeto.")
        record = Record.from_dict(item)
        records.append(
            record.with_changes(
                text=require_non_empty(record.text, "text"),
                category=require_non_empty(record.category, "category"),
            )
        )
    return records


class RecordStore:
    """Colección local de citas, dueña exclusiva de los ``Record``.

    Toda mutación sustituye el valor del mapa (los ``Record`` son inmutables) y
    persiste el conjunto completo. Si la persistencia falla, la mutación en
    memoria se mantiene, el almacén queda marcado como pendiente (``is_dirty``)
    y se propaga ``PersistenceError``; ``flush`` reintenta la escritura.
    """

    def __init__(
        self,
        storage: KeyValueStorePort,
        *,
        clock: ClockPort | None = None,
        id_factory: IdFactoryPort | None = None,
        seed_defaults: bool = True,
        rng: random.Random | None = None,
    ) -> None:
        self._storage = storage
        self._clock = clock
        self._id_factory = id_factory or generate_record_id
        self._seed_defaults = seed_defaults
        self._rng = rng or random.Random()
        self._lock = RLock()
        self._records: dict[str, Record] = {}
        self._dirty = False
        self._load()

    # ── Lectura ─────────────────────────────────────────────

    def get_all(self) -> list[Record]:
        with self._lock:
            return list(self._records.values())

    def find_by_id(self, record_id: str) -> Record | None:
        with self._lock:
            return self._records.get(record_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    def serialized(self) -> bytes:
        with self._lock:
            return serialize_records(self._records.values())

    def categories(self) -> list[str]:
        with self._lock:
            return sorted({record.category for record in self._records.values()})

    def by_source(self, source: RecordSource | str) -> list[Record]:
        wanted = RecordSource(source)
        with self._lock:
            return [record for record in self._records.values() if record.source is wanted]

    def search(self, term: str | None) -> list[Record]:
        if not term:
            return self.get_all()
        needle = term.lower()
        with self._lock:
            return [
                record
                for record in self._records.values()
                if needle in record.text.lower() or needle in record.category.lower()
            ]

    def random_quote(self, category: str | None = None) -> Record | None:
        candidates = self.get_all()
        if category and category != "all":
            candidates = [record for record in candidates if record.category == category]
        if not candidates:
            return None
        return self._rng.choice(candidates)

    def stats(self) -> dict[str, Any]:
        records = self.get_all()
        categories = sorted({record.category for record in records})
        sources = sorted({record.source.value for record in records})
        dated = [record for record in records if record.updated_at]
        return {
            "total_quotes": len(records),
            "total_categories": len(categories),
            "total_sources": len(sources),
            "categories": categories,
            "sources": sources,
            "oldest_quote": min(dated, key=lambda record: record.updated_at or "") if dated else None,
            "newest_quote": max(dated, key=lambda record: record.updated_at or "") if dated else None,
        }

    # ── Mutación ────────────────────────────────────────────

    def add(
        self,
        text: str,
        category: str,
        source: RecordSource = RecordSource.LOCAL,
        *,
        author: str | None = None,
        external_id: str | None = None,
    ) -> Record:
        clean_text = require_non_empty(text, "text")
        clean_category = require_non_empty(category, "category")
        with self._lock:
            record = Record(
                id=self._fresh_id(),
                text=clean_text,
                category=clean_category,
                source=RecordSource(source),
                revision=1,
                external_id=external_id,
                author=author,
                updated_at=self._now_iso(),
            )
            self._records[record.id] = record
            logger.info("Cita añadida id=%s categoria=%s", record.id, record.category)
            self._persist()
            return record

    def remove(self, record_id: str) -> bool:
        with self._lock:
            if record_id not in self._records:
                return False
            del self._records[record_id]
            logger.info("Cita eliminada id=%s", record_id)
            self._persist()
            return True

    def update(self, record_id: str, fields: Mapping[str, Any]) -> bool:
        cleaned = validate_update_fields(fields)
        with self._lock:
            current = self._records.get(record_id)
            if current is None:
                return False
            self._records[record_id] = current.with_changes(
                **cleaned,
                revision=current.revision + 1,
                updated_at=self._now_iso(),
            )
            self._persist()
            return True

    def replace_all(self, records: Iterable[Record]) -> None:
        """Sustituye todo el conjunto en una sola operación y persiste una vez."""
        incoming = list(records)
        with self._lock:
            replacement: dict[str, Record] = {}
            for record in incoming:
                if record.id in replacement:
                    raise ValidationError(f"Id duplicado en el reemplazo: {record.id}")
                current = self._records.get(record.id)
                if current is not None and current != record and record.revision <= current.revision:
                    record = record.with_changes(revision=current.revision + 1)
                replacement[record.id] = record
            self._records = replacement
            logger.info("Conjunto de citas reemplazado: %s registros", len(replacement))
            self._persist()

    def merge_in(self, records: Iterable[Record]) -> int:
        """Inserta sólo los registros sin equivalente local; nunca sobrescribe."""
        with self._lock:
            index = IdentityIndex(tuple(self._records.values()))
            inserted = 0
            for record in records:
                if record in index:
                    continue
                if record.updated_at is None:
                    record = record.with_changes(updated_at=self._now_iso())
                self._records[record.id] = record
                index.add(record)
                inserted += 1
            if inserted:
                logger.info("Merge aditivo: %s citas nuevas", inserted)
                self._persist()
            return inserted

    def apply_resolution(self, resolver: Callable[[list[Record]], ResolutionOutcome]) -> ResolutionOutcome:
        """Aplica una estrategia pura sobre una instantánea tomada bajo el lock."""
        with self._lock:
            outcome = resolver(list(self._records.values()))
            if outcome.changed:
                self.replace_all(outcome.records)
            return outcome

    def clear(self) -> None:
        self.replace_all(())

    def reset_to_defaults(self) -> None:
        self.replace_all(self._default_records())

    def flush(self) -> bool:
        """Reintenta persistir si hay cambios pendientes. Devuelve si escribió."""
        with self._lock:
            if not self._dirty:
                return False
            self._persist()
            return True

    # ── Internos ────────────────────────────────────────────

    def _load(self) -> None:
        raw = self._storage.load(QUOTES_KEY)
        if raw is None:
            if not self._seed_defaults:
                return
            self._records = {record.id: record for record in self._default_records()}
            logger.info("Almacén inicializado con %s citas por defecto", len(self._records))
            try:
                self._persist()
            except PersistenceError:
                # _persist ya dejó el almacén marcado como pendiente.
                logger.warning("Las citas por defecto quedan pendientes de persistir")
            return
        try:
            records = deserialize_records(raw)
        except (ValueError, KeyError, TypeError, ValidationError) as exc:
            log_operational_error(
                "Conjunto de citas persistido ilegible; se usan las citas por defecto",
                exc=exc,
                extra={"key": QUOTES_KEY},
            )
            self._records = {record.id: record for record in self._default_records()}
            return
        self._records = {record.id: record for record in records}
        logger.info("Cargadas %s citas desde almacenamiento", len(self._records))

    def _persist(self) -> None:
        payload = serialize_records(self._records.values())
        try:
            self._storage.save(QUOTES_KEY, payload)
        except PersistenceError as exc:
            self._dirty = True
            log_operational_error("No se pudo persistir el conjunto de citas", exc=exc, extra={"key": QUOTES_KEY})
            raise
        self._dirty = False

    def _fresh_id(self) -> str:
        record_id = self._id_factory()
        while record_id in self._records:
            record_id = self._id_factory()
        return record_id

    def _default_records(self) -> list[Record]:
        now = self._now_iso()
        return [
            Record(id=record_id, text=text, category=category, source=RecordSource.LOCAL, updated_at=now)
            for record_id, text, category in DEFAULT_QUOTES
        ]

    def _now_iso(self) -> str:
        now = self._clock.now() if self._clock is not None else datetime.now(timezone.utc)
        return now.isoformat()
