"""End-to-end tests for the composed client application."""

from __future__ import annotations

from pathlib import Path

import httpx
import pytest
import structlog
from _helpers import FakeBackend, RecordingNavigator

from sme_financial_os import FinancialOSApp, __version__
from sme_financial_os.auth.models import AuthStatus
from sme_financial_os.errors import TransportError
from sme_financial_os.logging_config import configure_logging
from sme_financial_os.settings import Settings
from sme_financial_os.storage.base import ORGANIZATION_ID_KEY, SESSION_TOKEN_KEY
from sme_financial_os.storage.memory import InMemoryCredentialStore


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(_env_file=None, storage_dir=tmp_path, storage_origin="http://testserver")


@pytest.mark.asyncio
async def test_anonymous_visitor_lands_on_login(
    settings: Settings, http_client: httpx.AsyncClient, store: InMemoryCredentialStore
):
    navigator = RecordingNavigator("/invoices")
    app = await FinancialOSApp.create(
        settings, navigator=navigator, store=store, http_client=http_client, same_origin=True
    )
    async with app:
        assert app.context.snapshot.status is AuthStatus.UNAUTHENTICATED
        assert navigator.history == ["/login"]


@pytest.mark.asyncio
async def test_sign_up_onboarding_flow(
    settings: Settings, backend: FakeBackend, http_client: httpx.AsyncClient, store: InMemoryCredentialStore
):
    navigator = RecordingNavigator("/login")
    async with await FinancialOSApp.create(
        settings, navigator=navigator, store=store, http_client=http_client, same_origin=True
    ) as app:
        await app.context.register("carol@example.com", "secret123", name="Carol")
        assert navigator.pathname == "/onboarding"

        org = await app.context.create_organization("Carol Consulting")
        assert navigator.pathname == "/"
        assert app.context.snapshot.current_organization_id == org.id

        assert (await app.cache.fetch("organization.get"))["id"] == org.id
        assert backend.requests[-1].headers["x-organization-id"] == org.id


@pytest.mark.asyncio
async def test_tenant_switch_clears_cached_queries(
    settings: Settings, backend: FakeBackend, http_client: httpx.AsyncClient, store: InMemoryCredentialStore
):
    user = backend.add_user()
    alpha = backend.add_organization(user, "Alpha")
    beta = backend.add_organization(user, "Beta")
    await store.set(SESSION_TOKEN_KEY, backend.add_session(user))

    async with await FinancialOSApp.create(
        settings, store=store, http_client=http_client, same_origin=True
    ) as app:
        assert app.guard is None
        assert (await app.cache.fetch("organization.get"))["id"] == alpha["id"]

        await app.context.switch_organization(beta["id"])
        assert (await app.cache.fetch("organization.get"))["id"] == beta["id"]


@pytest.mark.asyncio
async def test_default_store_persists_across_restarts(
    settings: Settings, backend: FakeBackend, http_client: httpx.AsyncClient
):
    user = backend.add_user("dave@example.com", "secret123")
    org = backend.add_organization(user, "Dave Ltd")

    async with await FinancialOSApp.create(settings, http_client=http_client, same_origin=True) as app:
        await app.context.sign_in("dave@example.com", "secret123")
        assert app.context.snapshot.current_organization_id == org["id"]

    assert (settings.storage_dir / "credentials.db").exists()

    async with await FinancialOSApp.create(settings, http_client=http_client, same_origin=True) as app:
        assert app.context.snapshot.status is AuthStatus.AUTHENTICATED
        assert await app.store.get(ORGANIZATION_ID_KEY) == org["id"]


@pytest.mark.asyncio
async def test_failed_startup_releases_resources(settings: Settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="maintenance")

    store = InMemoryCredentialStore({SESSION_TOKEN_KEY: "abc123"})
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://testserver") as http:
        with pytest.raises(TransportError):
            await FinancialOSApp.create(settings, store=store, http_client=http, same_origin=True)

    assert store.snapshot() == {SESSION_TOKEN_KEY: "abc123"}


def test_settings_from_environment(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("APP_URL", "https://books.example.cz")
    monkeypatch.setenv("REQUEST_TIMEOUT", "12.5")
    monkeypatch.setenv("MAX_BATCH_SIZE", "20")
    monkeypatch.setenv("LOG_FORMAT", "json")

    settings = Settings(_env_file=None)

    assert settings.app_url == "https://books.example.cz"
    assert settings.request_timeout == 12.5
    assert settings.max_batch_size == 20
    assert settings.log_format == "json"
    assert settings.query_stale_time == 5.0


def test_configure_logging_json(capsys: pytest.CaptureFixture[str]):
    configure_logging("DEBUG", "json")
    try:
        structlog.get_logger("test").info("client_started", version=__version__)
        out = capsys.readouterr().out
        assert '"event": "client_started"' in out
        assert '"level": "info"' in out
    finally:
        structlog.reset_defaults()


def test_configure_logging_filters_below_level(capsys: pytest.CaptureFixture[str]):
    configure_logging("WARNING", "console")
    try:
        structlog.get_logger("test").info("hidden_event")
        assert "hidden_event" not in capsys.readouterr().out
    finally:
        structlog.reset_defaults()
