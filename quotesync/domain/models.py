from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any

from quotesync.core.errors import AppError


class RecordSource(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"
    MERGED = "merged"
    IMPORTED = "imported"


class ConflictKind(str, Enum):
    CONTENT_MISMATCH = "content_mismatch"


class SyncStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    SUCCESS = "success"
    CONFLICT = "conflict"
    ERROR = "error"


class SyncState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    DETECTING = "detecting"
    CONFLICT_PENDING = "conflict_pending"
    RESOLVING = "resolving"
    PERSISTING = "persisting"
    ERROR = "error"


class SyncOutcome(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    CONFLICT_PENDING = "conflict_pending"
    FAILED = "failed"


class SyncOrigin(str, Enum):
    TIMER = "timer"
    MANUAL = "manual"
    RECONNECT = "reconnect"


@dataclass(frozen=True)
class Record:
    id: str
    text: str
    category: str
    source: RecordSource = RecordSource.LOCAL
    revision: int = 1
    external_id: str | None = None
    author: str | None = None
    updated_at: str | None = None

    def with_changes(self, **changes: Any) -> "Record":
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["source"] = self.source.value
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Record":
        """Reconstruye un ``Record`` ya validado (p. ej. desde el almacenamiento local).

        Para datos externos (importación, servidor) usar
        ``quotesync.domain.validation.record_from_payload``.
        """
        external_id = payload.get("external_id")
        return cls(
            id=str(payload["id"]),
            text=str(payload["text"]),
            category=str(payload["category"]),
            source=RecordSource(payload.get("source") or RecordSource.LOCAL.value),
            revision=int(payload.get("revision") or 1),
            external_id=str(external_id) if external_id not in (None, "") else None,
            author=payload.get("author"),
            updated_at=payload.get("updated_at"),
        )


@dataclass(frozen=True)
class Conflict:
    id: str
    local: Record
    remote: Record
    kind: ConflictKind = ConflictKind.CONTENT_MISMATCH


@dataclass(frozen=True)
class SyncCounters:
    sync_count: int = 0
    conflicts_resolved: int = 0
    last_sync_at: str | None = None


@dataclass(frozen=True)
class SyncSettings:
    sync_interval_seconds: float = 30.0
    auto_resolve: bool = False
    whole_batch_replace: bool = False
    fetch_timeout_seconds: float | None = None
    fetch_limit: int | None = 3
    spreadsheet_id: str = ""
    credentials_path: str = ""
    worksheet_name: str = "quotes"
    db_path: str = ""

    @property
    def remote_configured(self) -> bool:
        return bool(self.spreadsheet_id and self.credentials_path)


@dataclass(frozen=True)
class SyncAttemptResult:
    outcome: SyncOutcome
    message: str
    added: int = 0
    updated: int = 0
    conflicts: int = 0
    pending_conflicts: tuple[Conflict, ...] = field(default_factory=tuple)
    error_kind: str | None = None
    error: AppError | None = None

    @property
    def skipped(self) -> bool:
        return self.outcome is SyncOutcome.SKIPPED

    @property
    def failed(self) -> bool:
        return self.outcome is SyncOutcome.FAILED
