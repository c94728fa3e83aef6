"""Composition root: wires store, client, cache, context and guard together."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import httpx
import structlog

from sme_financial_os.auth.context import AuthContext
from sme_financial_os.auth.models import AuthSnapshot
from sme_financial_os.logging_config import configure_logging
from sme_financial_os.navigation.guard import NavigationGuard, Navigator, Routes
from sme_financial_os.settings import Settings
from sme_financial_os.storage.base import CredentialStore
from sme_financial_os.storage.db import DatabaseManager
from sme_financial_os.storage.paths import get_db_path
from sme_financial_os.storage.sqlite import SQLiteCredentialStore
from sme_financial_os.transport.cache import QueryCache
from sme_financial_os.transport.client import ApiClient, create_api_client

log = structlog.get_logger(__name__)


class FinancialOSApp:
    """One client session graph per process.

    Usage::

        async with await FinancialOSApp.create(settings, navigator=router) as app:
            await app.context.sign_in("alice@example.com", "secret")
            invoices = await app.cache.fetch("invoice.list")
    """

    def __init__(
        self,
        settings: Settings,
        store: CredentialStore,
        client: ApiClient,
        *,
        navigator: Navigator | None = None,
        routes: Routes | None = None,
        db: DatabaseManager | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.client = client
        self.cache = QueryCache(client, stale_time=settings.query_stale_time)
        self.context = AuthContext(client, store)
        self.guard = NavigationGuard(navigator, routes) if navigator is not None else None
        self._db = db
        self._scope: tuple[str | None, str | None] = (None, None)
        self._unsubscribers: list[Callable[[], None]] = []

    @classmethod
    async def create(
        cls,
        settings: Settings | None = None,
        *,
        navigator: Navigator | None = None,
        routes: Routes | None = None,
        store: CredentialStore | None = None,
        http_client: httpx.AsyncClient | None = None,
        same_origin: bool = False,
        configure_logs: bool = False,
    ) -> FinancialOSApp:
        """Build the graph and run the initial session check."""
        settings = settings or Settings()
        if configure_logs:
            configure_logging(settings.log_level, settings.log_format)

        db: DatabaseManager | None = None
        if store is None:
            db = DatabaseManager(get_db_path(settings.storage_dir))
            await db.initialize()
            store = SQLiteCredentialStore(db, settings.storage_origin)

        client = create_api_client(
            settings, store, http_client=http_client, same_origin=same_origin
        )
        app = cls(settings, store, client, navigator=navigator, routes=routes, db=db)
        try:
            await app.init()
        except BaseException:
            await app.teardown()
            raise
        return app

    async def init(self) -> AuthSnapshot:
        self._unsubscribers.append(self.context.subscribe(self._on_auth_change))
        if self.guard is not None:
            self.guard.attach(self.context)
        return await self.context.init()

    def _on_auth_change(self, snapshot: AuthSnapshot) -> None:
        scope = (snapshot.user.id if snapshot.user else None, snapshot.current_organization_id)
        if scope != self._scope:
            self._scope = scope
            self.cache.clear()
            log.debug("tenant_scope_changed", user_id=scope[0], organization_id=scope[1])

    async def teardown(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        if self.guard is not None:
            self.guard.detach()
        await self.context.teardown()
        await self.client.aclose()
        if self._db is not None:
            await self._db.close()
        log.info("app_teardown_complete")

    async def __aenter__(self) -> FinancialOSApp:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.teardown()
