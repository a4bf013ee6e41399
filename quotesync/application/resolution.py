from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Sequence

from quotesync.core.errors import ValidationError
from quotesync.domain.conflict_detection import find_additions
from quotesync.domain.models import Conflict, Record, RecordSource


class ResolutionStrategy(str, Enum):
    SERVER = "server"
    LOCAL = "local"
    MERGE = "merge"

    @classmethod
    def parse(cls, value: "ResolutionStrategy | str") -> "ResolutionStrategy":
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower()
        aliases = {"server-wins": "server", "server_wins": "server", "local-wins": "local", "local_wins": "local"}
        try:
            return cls(aliases.get(normalized, normalized))
        except ValueError as exc:
            raise ValidationError(f"Estrategia de resolución no válida: {value!r}") from exc


@dataclass(frozen=True)
class ResolutionOutcome:
    records: tuple[Record, ...]
    message: str
    changed: bool
    added: int = 0
    updated: int = 0


def resolve_server_wins(records: Sequence[Record], conflict: Conflict, now: datetime) -> ResolutionOutcome:
    """El registro local en conflicto adopta el contenido remoto (revisión +1)."""
    updated_records: list[Record] = []
    replaced = False
    for record in records:
        if record.id == conflict.id and not replaced:
            updated_records.append(
                record.with_changes(
                    text=conflict.remote.text,
                    category=conflict.remote.category,
                    author=conflict.remote.author or record.author,
                    external_id=conflict.remote.external_id or record.external_id,
                    source=RecordSource.REMOTE,
                    revision=record.revision + 1,
                    updated_at=now.isoformat(),
                )
            )
            replaced = True
        else:
            updated_records.append(record)
    if not replaced:
        return ResolutionOutcome(
            records=tuple(records),
            message=f"Conflicto {conflict.id}: el registro local ya no existe; sin cambios",
            changed=False,
        )
    return ResolutionOutcome(
        records=tuple(updated_records),
        message=f"Conflicto {conflict.id} resuelto: se usa la versión del servidor",
        changed=True,
        updated=1,
    )


def replace_with_remote(records: Sequence[Record], remote_batch: Sequence[Record]) -> ResolutionOutcome:
    """Reemplazo completo por el lote remoto.

    Descarta los registros sólo locales. Es una operación explícita y opcional
    (``whole_batch_replace``), nunca el comportamiento por defecto.
    """
    unique = find_additions((), remote_batch)
    dropped = sum(1 for record in records if not any(record.id == remote.id for remote in unique))
    return ResolutionOutcome(
        records=tuple(unique),
        message=f"Conjunto local reemplazado por el lote del servidor ({len(unique)} citas, {dropped} descartadas)",
        changed=tuple(records) != tuple(unique),
        updated=len(unique),
    )


def resolve_local_wins(records: Sequence[Record], conflict: Conflict) -> ResolutionOutcome:
    return ResolutionOutcome(
        records=tuple(records),
        message=f"Conflicto {conflict.id} resuelto: se mantiene la versión local",
        changed=False,
    )


def resolve_merge(records: Sequence[Record], incoming: Conflict | Sequence[Record]) -> ResolutionOutcome:
    """Merge aditivo: añade remotos sin equivalente local, nunca toca los conflictivos."""
    if isinstance(incoming, Conflict):
        remote_batch: Sequence[Record] = (incoming.remote,)
        label = f"Conflicto {incoming.id} resuelto (merge)"
    else:
        remote_batch = incoming
        label = "Merge del lote remoto"
    additions = find_additions(records, remote_batch)
    merged = tuple(records) + tuple(additions)
    return ResolutionOutcome(
        records=merged,
        message=f"{label}: {len(additions)} citas nuevas, registro local conservado",
        changed=bool(additions),
        added=len(additions),
    )


def apply_strategy(
    strategy: ResolutionStrategy,
    records: Sequence[Record],
    conflict: Conflict,
    now: datetime,
    *,
    remote_batch: Sequence[Record] = (),
) -> ResolutionOutcome:
    if strategy is ResolutionStrategy.SERVER:
        return resolve_server_wins(records, conflict, now)
    if strategy is ResolutionStrategy.LOCAL:
        return resolve_local_wins(records, conflict)
    return resolve_merge(records, tuple(remote_batch) or conflict)
