from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

LOG_DIR_ENV = "QUOTESYNC_LOG_DIR"
LOG_LEVEL_ENV = "QUOTESYNC_LOG_LEVEL"


def project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def resolve_log_dir() -> Path:
    candidates: list[Path] = []
    env_dir = os.environ.get(LOG_DIR_ENV)
    if env_dir:
        candidates.append(Path(env_dir))
    candidates.append(project_root() / "logs")
    candidates.append(Path(tempfile.gettempdir()) / "QuoteSync" / "logs")

    for candidate in candidates:
        try:
            candidate.mkdir(parents=True, exist_ok=True)
            test_file = candidate / "_write_test.tmp"
            test_file.write_text("ok", encoding="utf-8")
            test_file.unlink(missing_ok=True)
            return candidate
        except OSError:
            continue

    fallback = project_root()
    fallback.mkdir(parents=True, exist_ok=True)
    return fallback


def resolve_log_level(default: int = logging.INFO) -> int:
    """Nivel de ``seguimiento.log``; ``QUOTESYNC_LOG_LEVEL`` admite nombre (``DEBUG``) o número."""
    raw = os.environ.get(LOG_LEVEL_ENV, "").strip()
    if not raw:
        return default
    if raw.isdigit():
        return int(raw)
    level = logging.getLevelName(raw.upper())
    return level if isinstance(level, int) else default
