from __future__ import annotations

import json
from pathlib import Path

import pytest

from quotesync.core.errors import ValidationError
from quotesync.domain.models import SyncSettings
from quotesync.infrastructure import local_config
from quotesync.infrastructure.local_config import SyncConfigStore, settings_from_payload


def test_resolve_appdata_dir_prioriza_override(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("QUOTESYNC_CONFIG_DIR", str(tmp_path / "custom"))

    assert local_config.resolve_appdata_dir() == tmp_path / "custom"


def test_resolve_appdata_dir_usa_home_si_no_hay_env(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.delenv("QUOTESYNC_CONFIG_DIR", raising=False)
    monkeypatch.delenv("LOCALAPPDATA", raising=False)
    monkeypatch.setattr(local_config.Path, "home", lambda: tmp_path)

    assert local_config.resolve_appdata_dir() == tmp_path / ".local" / "share" / "QuoteSync"


def test_load_sin_config_devuelve_defaults(tmp_path: Path) -> None:
    assert SyncConfigStore(base_dir=tmp_path).load() == SyncSettings()


def test_load_con_json_invalido_devuelve_defaults(tmp_path: Path) -> None:
    (tmp_path / "config.json").write_text("{ invalido", encoding="utf-8")

    assert SyncConfigStore(base_dir=tmp_path).load() == SyncSettings()


def test_save_y_load_ida_y_vuelta(tmp_path: Path) -> None:
    store = SyncConfigStore(base_dir=tmp_path / "nested")
    settings = SyncSettings(
        sync_interval_seconds=5.0,
        auto_resolve=True,
        fetch_timeout_seconds=2.5,
        spreadsheet_id="sheet-1",
        credentials_path="cred.json",
    )

    store.save(settings)

    assert store.load() == settings
    assert store.load().remote_configured


def test_claves_desconocidas_se_ignoran(tmp_path: Path) -> None:
    (tmp_path / "config.json").write_text(json.dumps({"auto_resolve": "yes", "theme": "dark"}), encoding="utf-8")

    settings = SyncConfigStore(base_dir=tmp_path).load()

    assert settings.auto_resolve is True


@pytest.mark.parametrize(
    "payload",
    [
        {"sync_interval_seconds": -1},
        {"fetch_timeout_seconds": "rápido"},
        {"auto_resolve": "quizá"},
    ],
)
def test_valores_invalidos_lanzan_validation_error(payload: dict) -> None:
    with pytest.raises(ValidationError):
        settings_from_payload(payload)


def test_credentials_path_dentro_de_secrets(tmp_path: Path) -> None:
    assert SyncConfigStore(base_dir=tmp_path).credentials_path() == tmp_path / "secrets" / "credentials.json"
