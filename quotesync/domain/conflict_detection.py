from __future__ import annotations

from typing import Sequence

from quotesync.domain.identity import IdentityIndex, content_differs
from quotesync.domain.models import Conflict, ConflictKind, Record


def detect_conflicts(local_records: Sequence[Record], remote_records: Sequence[Record]) -> list[Conflict]:
    """Compara un lote remoto con los registros locales.

    Sólo hay conflicto cuando el registro remoto corresponde a una entidad
    local y su contenido difiere. Un registro remoto sin equivalente local es
    una alta, no un conflicto. El orden de salida sigue al lote remoto.
    """
    index = IdentityIndex(tuple(local_records))
    conflicts: list[Conflict] = []
    seen: set[str] = set()
    for remote in remote_records:
        local = index.find(remote)
        if local is None or local.id in seen:
            continue
        if content_differs(local, remote):
            seen.add(local.id)
            conflicts.append(
                Conflict(
                    id=local.id,
                    local=local,
                    remote=remote,
                    kind=ConflictKind.CONTENT_MISMATCH,
                )
            )
    return conflicts


def find_additions(local_records: Sequence[Record], remote_records: Sequence[Record]) -> list[Record]:
    index = IdentityIndex(tuple(local_records))
    additions: list[Record] = []
    for remote in remote_records:
        if remote in index:
            continue
        index.add(remote)
        additions.append(remote)
    return additions
