from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any

from quotesync.core.errors import ValidationError
from quotesync.domain.models import SyncSettings

logger = logging.getLogger(__name__)

CONFIG_DIR_ENV = "QUOTESYNC_CONFIG_DIR"
APP_DIR_NAME = "QuoteSync"


def resolve_appdata_dir() -> Path:
    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        return Path(override)
    env_dir = os.environ.get("LOCALAPPDATA")
    if env_dir:
        base_dir = Path(env_dir)
    else:
        base_dir = Path.home() / ".local" / "share"
    return base_dir / APP_DIR_NAME


def _as_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"1", "true", "yes", "si", "sí"}:
        return True
    if isinstance(value, str) and value.strip().lower() in {"0", "false", "no", ""}:
        return False
    raise ValidationError(f"Valor booleano no válido para '{name}': {value!r}")


def _as_optional_positive(name: str, value: Any, cast: type) -> Any:
    if value in (None, ""):
        return None
    try:
        number = cast(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Valor numérico no válido para '{name}': {value!r}") from exc
    if number <= 0:
        raise ValidationError(f"'{name}' debe ser positivo")
    return number


def settings_from_payload(payload: dict[str, Any]) -> SyncSettings:
    defaults = SyncSettings()
    interval = _as_optional_positive(
        "sync_interval_seconds",
        payload.get("sync_interval_seconds", defaults.sync_interval_seconds),
        float,
    )
    return SyncSettings(
        sync_interval_seconds=interval if interval is not None else defaults.sync_interval_seconds,
        auto_resolve=_as_bool("auto_resolve", payload.get("auto_resolve", defaults.auto_resolve)),
        whole_batch_replace=_as_bool(
            "whole_batch_replace",
            payload.get("whole_batch_replace", defaults.whole_batch_replace),
        ),
        fetch_timeout_seconds=_as_optional_positive("fetch_timeout_seconds", payload.get("fetch_timeout_seconds"), float),
        fetch_limit=_as_optional_positive("fetch_limit", payload.get("fetch_limit", defaults.fetch_limit), int),
        spreadsheet_id=str(payload.get("spreadsheet_id", "")).strip(),
        credentials_path=str(payload.get("credentials_path", "")).strip(),
        worksheet_name=str(payload.get("worksheet_name", defaults.worksheet_name)).strip() or defaults.worksheet_name,
        db_path=str(payload.get("db_path", "")).strip(),
    )


class SyncConfigStore:
    def __init__(self, base_dir: Path | None = None) -> None:
        self._base_dir = base_dir or resolve_appdata_dir()
        self._config_path = self._base_dir / "config.json"

    @property
    def config_path(self) -> Path:
        return self._config_path

    def load(self) -> SyncSettings:
        if not self._config_path.exists():
            return SyncSettings()
        try:
            payload = json.loads(self._config_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.exception("No se pudo leer config.json: %s", exc)
            return SyncSettings()
        if not isinstance(payload, dict):
            logger.error("config.json no contiene un objeto; se usan valores por defecto")
            return SyncSettings()
        known = {field.name for field in fields(SyncSettings)}
        unknown = sorted(set(payload) - known)
        if unknown:
            logger.warning("Claves desconocidas en config.json ignoradas: %s", unknown)
        return settings_from_payload(payload)

    def save(self, settings: SyncSettings) -> SyncSettings:
        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        self._config_path.write_text(json.dumps(asdict(settings), indent=2, ensure_ascii=False), encoding="utf-8")
        return settings

    def credentials_path(self) -> Path:
        return self._base_dir / "secrets" / "credentials.json"
