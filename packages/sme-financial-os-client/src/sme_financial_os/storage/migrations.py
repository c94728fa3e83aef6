"""Versioned schema for the credentials database."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from sme_financial_os.storage.db import DatabaseManager

log = structlog.get_logger(__name__)

_VERSION_TABLE = """
    CREATE TABLE IF NOT EXISTS schema_version (
        version     INTEGER PRIMARY KEY,
        applied_at  TEXT NOT NULL DEFAULT (datetime('now'))
    )
"""

# Each entry moves the schema from version N-1 to N; append, never edit
_STEPS: list[tuple[int, list[str]]] = [
    (
        1,
        [
            # One row per (storage origin, key), like origin-scoped browser storage
            """
            CREATE TABLE IF NOT EXISTS credentials (
                origin      TEXT NOT NULL,
                key         TEXT NOT NULL,
                value       TEXT NOT NULL,
                updated_at  TEXT NOT NULL DEFAULT (datetime('now')),
                PRIMARY KEY (origin, key)
            )
            """,
        ],
    ),
]

SCHEMA_VERSION = _STEPS[-1][0]


async def current_version(db: DatabaseManager) -> int:
    rows = await db.execute("SELECT MAX(version) AS v FROM schema_version")
    if not rows or rows[0]["v"] is None:
        return 0
    return rows[0]["v"]


async def run_migrations(db: DatabaseManager) -> int:
    """Apply every step newer than the recorded version; returns the final version."""
    await db.execute_write(_VERSION_TABLE.strip())
    version = await current_version(db)

    for step_version, statements in _STEPS:
        if step_version <= version:
            continue
        for statement in statements:
            await db.execute_write(statement.strip())
        await db.execute_write("INSERT INTO schema_version (version) VALUES (?)", (step_version,))
        log.info("credentials_schema_migrated", version=step_version)
        version = step_version

    return version
