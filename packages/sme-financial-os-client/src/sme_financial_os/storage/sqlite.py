"""SQLite-backed credential store for durable per-origin persistence."""

from __future__ import annotations

import structlog

from sme_financial_os.storage.db import DatabaseManager

log = structlog.get_logger(__name__)

_SELECT_SQL = "SELECT value FROM credentials WHERE origin = ? AND key = ?"

_UPSERT_SQL = """
    INSERT INTO credentials (origin, key, value, updated_at)
    VALUES (?, ?, ?, datetime('now'))
    ON CONFLICT(origin, key) DO UPDATE SET
        value      = excluded.value,
        updated_at = excluded.updated_at
"""

_DELETE_SQL = "DELETE FROM credentials WHERE origin = ? AND key = ?"


class SQLiteCredentialStore:
    """Durable credential store; every origin sees only its own keys."""

    def __init__(self, db: DatabaseManager, origin: str) -> None:
        self._db = db
        self._origin = origin.rstrip("/")

    @property
    def origin(self) -> str:
        return self._origin

    async def get(self, key: str) -> str | None:
        rows = await self._db.execute(_SELECT_SQL, (self._origin, key))
        return rows[0]["value"] if rows else None

    async def set(self, key: str, value: str) -> None:
        await self._db.execute_write(_UPSERT_SQL, (self._origin, key, value))
        log.debug("credential_stored", origin=self._origin, key=key)

    async def clear(self, key: str) -> None:
        count = await self._db.execute_write(_DELETE_SQL, (self._origin, key))
        if count:
            log.debug("credential_cleared", origin=self._origin, key=key)
