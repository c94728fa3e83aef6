"""Auth/tenant context: the single source of truth for session and tenant state.

States::

    loading -> unauthenticated | authenticated_no_org | authenticated
    authenticated_no_org -> authenticated          (organization created)
    authenticated* -> unauthenticated              (logout, rejected session)
    any -> loading                                 (refresh)

Subscribers receive the new :class:`AuthSnapshot` after every change.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from typing import Any

import structlog
from pydantic import ValidationError

from sme_financial_os.auth.models import AuthSnapshot, AuthStatus, OrganizationMembership, User
from sme_financial_os.errors import ApiError, TransportError, UnauthorizedError, UnknownOrganizationError
from sme_financial_os.storage.base import ORGANIZATION_ID_KEY, SESSION_TOKEN_KEY, CredentialStore
from sme_financial_os.transport.client import ApiClient

log = structlog.get_logger(__name__)

Listener = Callable[[AuthSnapshot], None]


class AuthContext:
    """Holds session/tenant state for one client process and exposes mutators.

    Usage::

        context = AuthContext(client, store)
        await context.init()
        unsubscribe = context.subscribe(on_change)
        await context.switch_organization("org-2")
        await context.teardown()
    """

    def __init__(self, client: ApiClient, store: CredentialStore) -> None:
        self._client = client
        self._store = store
        self._snapshot = AuthSnapshot(status=AuthStatus.LOADING)
        self._listeners: list[Listener] = []
        self._refresh_seq = 0
        self._unsubscribe_transport: Callable[[], None] | None = None

    @property
    def snapshot(self) -> AuthSnapshot:
        return self._snapshot

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> AuthSnapshot:
        """Start observing the transport and run the initial session check."""
        if self._unsubscribe_transport is None:
            self._unsubscribe_transport = self._client.on_session_invalidated(
                self._handle_session_invalidated
            )
        return await self.refresh()

    async def refresh(self) -> AuthSnapshot:
        """Re-run the session check and refetch memberships.

        Only the most recent refresh applies its result. Errors other than a
        rejected session leave stored credentials in place and are re-raised.
        """
        self._refresh_seq += 1
        seq = self._refresh_seq
        self._set_snapshot(replace(self._snapshot, status=AuthStatus.LOADING))

        token = await self._store.get(SESSION_TOKEN_KEY)
        if seq != self._refresh_seq:
            return self._snapshot
        if not token:
            self._set_unauthenticated("no_session")
            return self._snapshot

        try:
            payload = await self._client.query("auth.me")
        except UnauthorizedError:
            if seq == self._refresh_seq:
                self._set_unauthenticated("session_rejected")
            return self._snapshot
        except ApiError:
            if seq == self._refresh_seq:
                self._set_unauthenticated("session_check_failed")
            raise

        if seq != self._refresh_seq:
            log.debug("stale_refresh_discarded", seq=seq)
            return self._snapshot

        try:
            user, organizations = self._parse_me(payload)
        except ValidationError as exc:
            self._set_unauthenticated("session_check_failed")
            raise TransportError(f"Malformed auth.me payload: {exc}") from exc

        if user is None:
            self._set_unauthenticated("no_user")
            return self._snapshot

        try:
            current = await self._resolve_active(organizations)
        except Exception:
            if seq == self._refresh_seq:
                self._set_unauthenticated("organization_resolution_failed")
            raise
        if seq != self._refresh_seq:
            return self._snapshot

        status = AuthStatus.AUTHENTICATED if current else AuthStatus.AUTHENTICATED_NO_ORG
        self._set_snapshot(
            AuthSnapshot(
                status=status,
                user=user,
                organizations=organizations,
                current_organization=current,
            )
        )
        log.info(
            "session_resolved",
            user_id=user.id,
            organizations=len(organizations),
            organization_id=current.id if current else None,
        )
        return self._snapshot

    async def teardown(self) -> None:
        """Stop observing the transport and drop every subscriber."""
        if self._unsubscribe_transport is not None:
            self._unsubscribe_transport()
            self._unsubscribe_transport = None
        self._listeners.clear()
        self._refresh_seq += 1

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call *listener* on every state change; returns an unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _set_snapshot(self, snapshot: AuthSnapshot) -> None:
        if snapshot == self._snapshot:
            return
        previous, self._snapshot = self._snapshot, snapshot
        if previous.status is not snapshot.status:
            log.debug("auth_transition", previous=previous.status.value, current=snapshot.status.value)
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                log.exception("auth_listener_failed", listener=repr(listener))

    def _set_unauthenticated(self, reason: str) -> None:
        self._set_snapshot(AuthSnapshot(status=AuthStatus.UNAUTHENTICATED))
        log.info("session_unauthenticated", reason=reason)

    def _handle_session_invalidated(self) -> None:
        self._refresh_seq += 1
        self._set_unauthenticated("session_invalidated")

    # ------------------------------------------------------------------
    # Mutators
    # ------------------------------------------------------------------

    async def login(self, token: str) -> AuthSnapshot:
        """Persist a session token and resolve the user's memberships."""
        if not token:
            raise ValueError("Session token must be a non-empty string")
        await self._store.set(SESSION_TOKEN_KEY, token)
        log.info("session_started")
        return await self.refresh()

    async def sign_in(self, email: str, password: str) -> User:
        """Exchange credentials for a session via ``auth.login``."""
        result = await self._client.mutation("auth.login", {"email": email, "password": password})
        await self.login(result["token"])
        return User.model_validate(result["user"])

    async def register(self, email: str, password: str, name: str | None = None) -> User:
        """Create an account via ``auth.register`` and start its session."""
        payload: dict[str, Any] = {"email": email, "password": password}
        if name:
            payload["name"] = name
        result = await self._client.mutation("auth.register", payload)
        await self.login(result["token"])
        return User.model_validate(result["user"])

    async def logout(self, *, revoke: bool = False) -> None:
        """Forget the session locally; with *revoke* also end it on the server first."""
        if revoke and await self._store.get(SESSION_TOKEN_KEY):
            try:
                await self._client.mutation("auth.logout")
            except ApiError as exc:
                log.warning("session_revoke_failed", error=str(exc))

        await self._store.clear(SESSION_TOKEN_KEY)
        await self._store.clear(ORGANIZATION_ID_KEY)
        self._refresh_seq += 1
        self._set_unauthenticated("logout")

    async def switch_organization(self, organization_id: str) -> OrganizationMembership:
        """Make *organization_id* the tenant for every subsequent call.

        Raises :class:`UnknownOrganizationError` without touching storage when
        the id is not one of the current memberships.
        """
        match = next((o for o in self._snapshot.organizations if o.id == organization_id), None)
        if match is None:
            log.warning("organization_switch_rejected", organization_id=organization_id)
            raise UnknownOrganizationError(organization_id)

        await self._store.set(ORGANIZATION_ID_KEY, match.id)
        self._set_snapshot(replace(self._snapshot, current_organization=match))
        log.info("organization_switched", organization_id=match.id)
        return match

    async def create_organization(
        self,
        name: str,
        *,
        country: str = "CZ",
        currency: str = "CZK",
        tax_id: str | None = None,
        vat_id: str | None = None,
    ) -> OrganizationMembership | None:
        """Create an organization, refresh memberships and select the new one."""
        payload: dict[str, Any] = {"name": name, "country": country, "currency": currency}
        if tax_id:
            payload["taxId"] = tax_id
        if vat_id:
            payload["vatId"] = vat_id

        created = await self._client.mutation("organization.create", payload)
        await self.refresh()

        created_id = created.get("id") if isinstance(created, dict) else None
        if created_id and any(o.id == created_id for o in self._snapshot.organizations):
            return await self.switch_organization(created_id)
        return self._snapshot.current_organization

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_me(payload: Any) -> tuple[User | None, tuple[OrganizationMembership, ...]]:
        if not isinstance(payload, dict) or not payload.get("user"):
            return None, ()
        user = User.model_validate(payload["user"])
        organizations = tuple(
            OrganizationMembership.model_validate(item)
            for item in payload.get("organizations") or []
        )
        return user, organizations

    async def _resolve_active(
        self, organizations: tuple[OrganizationMembership, ...]
    ) -> OrganizationMembership | None:
        stored = await self._store.get(ORGANIZATION_ID_KEY)
        if not organizations:
            if stored:
                await self._store.clear(ORGANIZATION_ID_KEY)
            return None

        match = next((o for o in organizations if o.id == stored), None)
        if match is not None:
            return match
        if stored:
            log.info("stored_organization_not_a_member", organization_id=stored)

        first = organizations[0]
        await self._store.set(ORGANIZATION_ID_KEY, first.id)
        return first
