"""Batched tRPC client with per-request session and tenant headers.

Wire format (tRPC HTTP batch link):

- queries: ``GET {base}/api/trpc/a.b,c.d?batch=1&input={"0": ..., "1": ...}``
- mutations: ``POST {base}/api/trpc/a.b,c.d?batch=1`` with the same object as body

The response is a JSON array aligned with the request positions; every item
is either ``{"result": {"data": <envelope>}}`` or ``{"error": <envelope>}``.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import httpx
import structlog

from sme_financial_os.errors import (
    CallCancelledError,
    TransportError,
    UnauthorizedError,
    rpc_error_from_shape,
)
from sme_financial_os.settings import DEFAULT_APP_URL, Settings
from sme_financial_os.storage.base import ORGANIZATION_ID_KEY, SESSION_TOKEN_KEY, CredentialStore
from sme_financial_os.transport.batching import BatchScheduler, CallKind, PendingCall
from sme_financial_os.transport.cancellation import CancellationToken
from sme_financial_os.transport.headers import bearer_token, build_headers
from sme_financial_os.transport.transformer import PayloadTransformer, default_transformer

log = structlog.get_logger(__name__)

TRPC_PATH = "/api/trpc"

# UNAUTHORIZED from these means bad credentials, not a rejected session
CREDENTIAL_PROCEDURES = frozenset({"auth.login", "auth.register", "auth.changePassword"})

SessionListener = Callable[[], None]


def _rejects_session(path: str, outcome: Any) -> bool:
    if not isinstance(outcome, UnauthorizedError):
        return False
    return path not in CREDENTIAL_PROCEDURES and outcome.path not in CREDENTIAL_PROCEDURES


def get_base_url(settings: Settings, *, same_origin: bool = False) -> str:
    """Resolve the endpoint base.

    Same-origin callers get a relative base and rely on the HTTP client's own
    ``base_url``; everything else uses ``APP_URL`` or the local default.
    """
    if same_origin:
        return ""
    return (settings.app_url or DEFAULT_APP_URL).rstrip("/")


class ProcedureProxy:
    """Attribute access to procedures: ``client.procedures.auth.me.query()``."""

    def __init__(self, client: ApiClient, path: str = "") -> None:
        self._client = client
        self._path = path

    def __getattr__(self, name: str) -> ProcedureProxy:
        if name.startswith("_"):
            raise AttributeError(name)
        path = f"{self._path}.{name}" if self._path else name
        return ProcedureProxy(self._client, path)

    async def query(self, input: Any = None, *, cancel_token: CancellationToken | None = None) -> Any:
        return await self._client.query(self._path, input, cancel_token=cancel_token)

    async def mutate(self, input: Any = None, *, cancel_token: CancellationToken | None = None) -> Any:
        return await self._client.mutation(self._path, input, cancel_token=cancel_token)


class ApiClient:
    """Shared RPC client; one instance per process.

    Calls issued in the same loop iteration travel in one HTTP request.
    Headers are rebuilt from the credential store for every request, so an
    organization switch or a login in another client is picked up by the next
    round trip.
    """

    def __init__(
        self,
        base_url: str,
        store: CredentialStore,
        *,
        http_client: httpx.AsyncClient | None = None,
        transformer: PayloadTransformer | None = None,
        timeout: float = 30.0,
        max_batch_size: int | None = None,
        batch_window: float = 0.0,
    ) -> None:
        self._endpoint = f"{base_url.rstrip('/')}{TRPC_PATH}"
        self._store = store
        self._transformer = transformer or default_transformer
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient()
        self._timeout = httpx.Timeout(timeout)
        self._scheduler = BatchScheduler(
            self._dispatch, max_items=max_batch_size, window=batch_window
        )
        self._session_listeners: list[SessionListener] = []
        self.round_trips = 0
        self.procedures = ProcedureProxy(self)

    @property
    def endpoint(self) -> str:
        return self._endpoint

    @property
    def transformer(self) -> PayloadTransformer:
        return self._transformer

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    async def query(
        self, path: str, input: Any = None, *, cancel_token: CancellationToken | None = None
    ) -> Any:
        return await self._call(CallKind.QUERY, path, input, cancel_token)

    async def mutation(
        self, path: str, input: Any = None, *, cancel_token: CancellationToken | None = None
    ) -> Any:
        return await self._call(CallKind.MUTATION, path, input, cancel_token)

    async def _call(
        self,
        kind: CallKind,
        path: str,
        input: Any,
        cancel_token: CancellationToken | None,
    ) -> Any:
        if cancel_token is not None and cancel_token.cancelled:
            raise CallCancelledError(path)

        payload = {} if input is None else self._transformer.serialize(input)
        # Nothing may be awaited before enqueue, or the call misses its batch
        call = self._scheduler.enqueue(kind, path, payload)
        if cancel_token is None:
            return await call.future

        unregister = cancel_token.add_callback(lambda: self._abandon(call))
        try:
            return await call.future
        finally:
            unregister()

    def _abandon(self, call: PendingCall) -> None:
        if self._scheduler.discard(call):
            log.debug("call_dropped_before_dispatch", path=call.path)
        call.reject(CallCancelledError(call.path))

    # ------------------------------------------------------------------
    # Session invalidation
    # ------------------------------------------------------------------

    def on_session_invalidated(self, listener: SessionListener) -> Callable[[], None]:
        """Register *listener* for rejected sessions; returns an unsubscribe function."""
        self._session_listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._session_listeners:
                self._session_listeners.remove(listener)

        return _unsubscribe

    async def _invalidate_session(self, rejected_token: str) -> None:
        current = await self._store.get(SESSION_TOKEN_KEY)
        if current is not None and current != rejected_token:
            log.info("session_invalidation_skipped", reason="newer_token_stored")
            return

        await self._store.clear(SESSION_TOKEN_KEY)
        await self._store.clear(ORGANIZATION_ID_KEY)
        log.warning("session_invalidated")
        for listener in list(self._session_listeners):
            listener()

    # ------------------------------------------------------------------
    # Wire
    # ------------------------------------------------------------------

    async def _dispatch(self, kind: CallKind, calls: list[PendingCall]) -> None:
        headers = await build_headers(self._store)
        url = f"{self._endpoint}/{','.join(call.path for call in calls)}"
        inputs = {str(index): call.input for index, call in enumerate(calls)}
        params = {"batch": "1"}

        self.round_trips += 1
        try:
            if kind is CallKind.QUERY:
                params["input"] = json.dumps(inputs, separators=(",", ":"))
                response = await self._http.get(
                    url, params=params, headers=headers, timeout=self._timeout
                )
            else:
                response = await self._http.post(
                    url, params=params, json=inputs, headers=headers, timeout=self._timeout
                )
        except httpx.HTTPError as exc:
            log.warning("batch_transport_failed", kind=kind.value, size=len(calls), error=str(exc))
            raise TransportError(f"{kind.value} batch to {url} failed: {exc}") from exc

        log.debug(
            "batch_dispatched",
            kind=kind.value,
            size=len(calls),
            status=response.status_code,
            tenant=headers.get("x-organization-id"),
        )

        items = self._decode_batch(response, len(calls))
        outcomes = [self._decode_item(item, call.path) for call, item in zip(calls, items)]

        rejected_token = bearer_token(headers)
        if rejected_token and any(
            _rejects_session(call.path, outcome) for call, outcome in zip(calls, outcomes)
        ):
            await self._invalidate_session(rejected_token)

        for call, outcome in zip(calls, outcomes):
            if isinstance(outcome, Exception):
                delivered = call.reject(outcome)
            else:
                delivered = call.resolve(outcome)
            if not delivered:
                log.debug("late_response_discarded", path=call.path)

    def _decode_batch(self, response: httpx.Response, expected: int) -> list[Any]:
        try:
            body = response.json()
        except ValueError as exc:
            raise TransportError(
                f"Undecodable response (HTTP {response.status_code})",
                status_code=response.status_code,
            ) from exc

        if not isinstance(body, list) or len(body) != expected:
            raise TransportError(
                f"Expected a batch of {expected} results (HTTP {response.status_code})",
                status_code=response.status_code,
            )
        return body

    def _decode_item(self, item: Any, path: str) -> Any:
        if not isinstance(item, dict):
            return TransportError(f"Malformed batch item for {path!r}")
        try:
            if "error" in item:
                shape = self._transformer.deserialize(item["error"])
                return rpc_error_from_shape(shape, path)
            result = item.get("result")
            if not isinstance(result, dict):
                return TransportError(f"Malformed batch item for {path!r}")
            return self._transformer.deserialize(result.get("data") or {})
        except (TypeError, ValueError, KeyError, IndexError) as exc:
            return TransportError(f"Undecodable payload for {path!r}: {exc}")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        await self._scheduler.aclose()
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> ApiClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


def create_api_client(
    settings: Settings,
    store: CredentialStore,
    *,
    http_client: httpx.AsyncClient | None = None,
    same_origin: bool = False,
    transformer: PayloadTransformer | None = None,
) -> ApiClient:
    """Build the process-wide client from settings."""
    if same_origin and http_client is None:
        raise ValueError("A same-origin client needs an http_client bound to the page origin")

    base_url = get_base_url(settings, same_origin=same_origin)
    log.info("api_client_created", base_url=base_url or "<same-origin>")
    return ApiClient(
        base_url,
        store,
        http_client=http_client,
        transformer=transformer,
        timeout=settings.request_timeout,
        max_batch_size=settings.max_batch_size,
        batch_window=settings.batch_window,
    )


__all__ = [
    "ApiClient",
    "CREDENTIAL_PROCEDURES",
    "ProcedureProxy",
    "TRPC_PATH",
    "create_api_client",
    "get_base_url",
]
