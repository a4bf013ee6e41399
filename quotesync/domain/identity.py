from __future__ import annotations

from quotesync.domain.models import Record


def normalize_text(value: str) -> str:
    return value.strip()


def normalize_category(value: str) -> str:
    return value.strip().casefold()


def same_entity(left: Record, right: Record) -> bool:
    """Dos registros son la misma entidad si comparten ``id``.

    Como alternativa se compara ``external_id`` (id del servidor) cuando ambos
    lo tienen informado.
    """
    if left.id == right.id:
        return True
    return bool(left.external_id) and left.external_id == right.external_id


def content_differs(left: Record, right: Record) -> bool:
    if normalize_text(left.text) != normalize_text(right.text):
        return True
    return normalize_category(left.category) != normalize_category(right.category)


class IdentityIndex:
    """Índice de registros por ``id`` y por ``external_id``."""

    def __init__(self, records: list[Record] | tuple[Record, ...]) -> None:
        self._by_id: dict[str, Record] = {}
        self._by_external_id: dict[str, Record] = {}
        for record in records:
            self.add(record)

    def add(self, record: Record) -> None:
        self._by_id.setdefault(record.id, record)
        if record.external_id:
            self._by_external_id.setdefault(record.external_id, record)

    def find(self, candidate: Record) -> Record | None:
        match = self._by_id.get(candidate.id)
        if match is not None:
            return match
        if candidate.external_id:
            return self._by_external_id.get(candidate.external_id)
        return None

    def __contains__(self, candidate: Record) -> bool:
        return self.find(candidate) is not None
