"""Shared test fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import httpx
import pytest

# Make _helpers importable from test files
sys.path.insert(0, str(Path(__file__).parent))

from _helpers import FakeBackend, RecordingNavigator  # noqa: E402

from sme_financial_os.auth.context import AuthContext  # noqa: E402
from sme_financial_os.storage.memory import InMemoryCredentialStore  # noqa: E402
from sme_financial_os.transport.client import ApiClient  # noqa: E402

__all__ = ["FakeBackend", "RecordingNavigator"]

TEST_ORIGIN = "http://testserver"


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture
def navigator() -> RecordingNavigator:
    return RecordingNavigator("/dashboard")


@pytest.fixture
async def http_client(backend: FakeBackend):
    transport = httpx.ASGITransport(app=backend.app)
    async with httpx.AsyncClient(transport=transport, base_url=TEST_ORIGIN) as client:
        yield client


@pytest.fixture
async def api_client(http_client: httpx.AsyncClient, store: InMemoryCredentialStore):
    client = ApiClient("", store, http_client=http_client)
    yield client
    await client.aclose()


@pytest.fixture
async def context(api_client: ApiClient, store: InMemoryCredentialStore):
    ctx = AuthContext(api_client, store)
    yield ctx
    await ctx.teardown()
