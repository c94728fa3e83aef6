"""User-scoped path management for durable credential storage."""

from __future__ import annotations

from pathlib import Path

import structlog

log = structlog.get_logger(__name__)

_STORAGE_DIR_NAME = ".sme-financial-os"
_DB_FILE_NAME = "credentials.db"


def get_storage_dir(base_dir: Path | None = None) -> Path:
    """Return the storage directory, creating it if missing.

    Defaults to ``~/.sme-financial-os``; an explicit *base_dir* is used as is.
    """
    storage_dir = base_dir if base_dir is not None else Path.home() / _STORAGE_DIR_NAME
    storage_dir.mkdir(parents=True, exist_ok=True)
    log.debug("storage_dir_resolved", path=str(storage_dir))
    return storage_dir


def get_db_path(base_dir: Path | None = None) -> Path:
    """Return the path to the SQLite credentials database."""
    return get_storage_dir(base_dir) / _DB_FILE_NAME
