"""Async SQLite connection manager for credential persistence."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import aiosqlite
import structlog

log = structlog.get_logger(__name__)

# WAL lets a second client process read while this one writes
_PRAGMAS = (
    "PRAGMA journal_mode = WAL",
    "PRAGMA busy_timeout = 5000",
)


class DatabaseManager:
    """Owns one aiosqlite connection to the credentials database.

    Usage::

        async with DatabaseManager(tmp_path / "credentials.db") as db:
            rows = await db.execute("SELECT key FROM credentials")
    """

    def __init__(self, db_path: Path | str | None = None) -> None:
        if db_path is None:
            from sme_financial_os.storage.paths import get_db_path
            db_path = get_db_path()

        self._db_path = Path(db_path)
        self._conn: aiosqlite.Connection | None = None

    @property
    def path(self) -> Path:
        return self._db_path

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Open the connection and bring the schema up to date. Idempotent."""
        if self._conn is not None:
            return
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = await aiosqlite.connect(self._db_path)
        conn.row_factory = aiosqlite.Row
        for pragma in _PRAGMAS:
            await conn.execute(pragma)
        await conn.commit()
        self._conn = conn

        from sme_financial_os.storage.migrations import run_migrations
        await run_migrations(self)
        log.info("credentials_db_opened", path=str(self._db_path))

    async def close(self) -> None:
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        await conn.close()
        log.debug("credentials_db_closed", path=str(self._db_path))

    async def __aenter__(self) -> DatabaseManager:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def _connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError(
                f"Credentials database {self._db_path} is not initialized; await initialize() first"
            )
        return self._conn

    async def execute(self, sql: str, params: tuple[Any, ...] = ()) -> list[dict[str, Any]]:
        """Run a read statement and return its rows as dicts."""
        conn = self._connection()
        async with conn.execute(sql, params) as cursor:
            return [dict(row) for row in await cursor.fetchall()]

    async def execute_write(self, sql: str, params: tuple[Any, ...] = ()) -> int:
        """Run a write or DDL statement, commit, and return the affected row count."""
        conn = self._connection()
        async with conn.execute(sql, params) as cursor:
            affected = max(cursor.rowcount, 0)
        await conn.commit()
        return affected
