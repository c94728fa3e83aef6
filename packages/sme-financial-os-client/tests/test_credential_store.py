"""Tests for in-memory and SQLite credential stores."""

from __future__ import annotations

from pathlib import Path

import pytest

from sme_financial_os.storage.base import ORGANIZATION_ID_KEY, SESSION_TOKEN_KEY
from sme_financial_os.storage.db import DatabaseManager
from sme_financial_os.storage.memory import InMemoryCredentialStore
from sme_financial_os.storage.migrations import SCHEMA_VERSION, current_version, run_migrations
from sme_financial_os.storage.paths import get_db_path, get_storage_dir
from sme_financial_os.storage.sqlite import SQLiteCredentialStore

ORIGIN = "https://app.example.com"


@pytest.fixture
async def db(tmp_path: Path):
    manager = DatabaseManager(get_db_path(tmp_path))
    await manager.initialize()
    yield manager
    await manager.close()


@pytest.mark.asyncio
async def test_memory_store_get_set_clear():
    store = InMemoryCredentialStore()
    assert await store.get(SESSION_TOKEN_KEY) is None

    await store.set(SESSION_TOKEN_KEY, "abc123")
    assert await store.get(SESSION_TOKEN_KEY) == "abc123"

    await store.clear(SESSION_TOKEN_KEY)
    await store.clear(SESSION_TOKEN_KEY)
    assert await store.get(SESSION_TOKEN_KEY) is None


@pytest.mark.asyncio
async def test_memory_store_does_not_share_initial_dict():
    initial = {SESSION_TOKEN_KEY: "abc123"}
    store = InMemoryCredentialStore(initial)
    await store.clear(SESSION_TOKEN_KEY)
    assert initial == {SESSION_TOKEN_KEY: "abc123"}


@pytest.mark.asyncio
async def test_sqlite_store_get_set_clear(db: DatabaseManager):
    store = SQLiteCredentialStore(db, ORIGIN)
    assert await store.get(SESSION_TOKEN_KEY) is None

    await store.set(SESSION_TOKEN_KEY, "abc123")
    await store.set(ORGANIZATION_ID_KEY, "org-1")
    await store.set(ORGANIZATION_ID_KEY, "org-2")
    assert await store.get(SESSION_TOKEN_KEY) == "abc123"
    assert await store.get(ORGANIZATION_ID_KEY) == "org-2"

    await store.clear(ORGANIZATION_ID_KEY)
    assert await store.get(ORGANIZATION_ID_KEY) is None
    assert await store.get(SESSION_TOKEN_KEY) == "abc123"


@pytest.mark.asyncio
async def test_sqlite_store_survives_reopen(tmp_path: Path):
    path = get_db_path(tmp_path)
    first = DatabaseManager(path)
    await first.initialize()
    await SQLiteCredentialStore(first, ORIGIN).set(SESSION_TOKEN_KEY, "persisted")
    await first.close()

    second = DatabaseManager(path)
    await second.initialize()
    try:
        assert await SQLiteCredentialStore(second, ORIGIN).get(SESSION_TOKEN_KEY) == "persisted"
        rows = await second.execute("SELECT MAX(version) AS v FROM schema_version")
        assert rows[0]["v"] == SCHEMA_VERSION
    finally:
        await second.close()


@pytest.mark.asyncio
async def test_sqlite_store_is_scoped_per_origin(db: DatabaseManager):
    app = SQLiteCredentialStore(db, ORIGIN + "/")
    other = SQLiteCredentialStore(db, "https://other.example.com")

    await app.set(SESSION_TOKEN_KEY, "mine")
    assert app.origin == ORIGIN
    assert await other.get(SESSION_TOKEN_KEY) is None

    await other.set(SESSION_TOKEN_KEY, "theirs")
    await other.clear(SESSION_TOKEN_KEY)
    assert await app.get(SESSION_TOKEN_KEY) == "mine"


@pytest.mark.asyncio
async def test_uninitialized_database_raises():
    manager = DatabaseManager(":memory:")
    with pytest.raises(RuntimeError, match="not initialized"):
        await manager.execute("SELECT 1")


def test_storage_paths(tmp_path: Path):
    base = tmp_path / "nested" / "dir"
    assert get_storage_dir(base) == base
    assert base.is_dir()
    assert get_db_path(base) == base / "credentials.db"


@pytest.mark.asyncio
async def test_migrations_are_idempotent(tmp_path: Path):
    async with DatabaseManager(tmp_path / "credentials.db") as manager:
        assert manager.is_open
        await manager.initialize()
        assert await run_migrations(manager) == SCHEMA_VERSION
        assert await current_version(manager) == SCHEMA_VERSION
        rows = await manager.execute("SELECT version FROM schema_version")
        assert [row["version"] for row in rows] == [SCHEMA_VERSION]
    assert not manager.is_open
