"""Stale-time query cache with in-flight de-duplication."""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog

from sme_financial_os.errors import CallCancelledError
from sme_financial_os.transport.cancellation import CancellationToken
from sme_financial_os.transport.client import ApiClient

log = structlog.get_logger(__name__)

DEFAULT_STALE_TIME = 5.0


@dataclass
class _Entry:
    value: Any
    fetched_at: float


class QueryCache:
    """Caches query results for ``stale_time`` seconds.

    Identical queries issued while one is in flight share its result. A caller
    that cancels stops waiting, but the shared load keeps running and its late
    response still refreshes the cache. ``clear()`` drops every entry and makes
    loads started before it discard their results.
    """

    def __init__(
        self,
        client: ApiClient,
        stale_time: float = DEFAULT_STALE_TIME,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._stale_time = stale_time
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._inflight: dict[str, asyncio.Task[Any]] = {}
        self._generation = 0

    def _key(self, path: str, input: Any) -> str:
        envelope = self._client.transformer.serialize(input)
        return f"{path}:{json.dumps(envelope, sort_keys=True, separators=(',', ':'))}"

    async def fetch(
        self,
        path: str,
        input: Any = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> Any:
        key = self._key(path, input)
        entry = self._entries.get(key)
        if entry is not None and self._clock() - entry.fetched_at < self._stale_time:
            log.debug("query_cache_hit", path=path)
            return entry.value

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._load(key, path, input, self._generation))
            self._inflight[key] = task
            task.add_done_callback(lambda t, key=key: self._settle(key, t))

        if cancel_token is None:
            return await asyncio.shield(task)
        return await self._wait(task, path, cancel_token)

    async def _load(self, key: str, path: str, input: Any, generation: int) -> Any:
        value = await self._client.query(path, input)
        if generation == self._generation:
            self._entries[key] = _Entry(value=value, fetched_at=self._clock())
        else:
            log.debug("query_cache_result_dropped", path=path, reason="cleared")
        return value

    def _settle(self, key: str, task: asyncio.Task[Any]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled() and task.exception() is not None:
            log.debug("query_cache_load_failed", key=key, error=str(task.exception()))

    async def _wait(self, task: asyncio.Task[Any], path: str, token: CancellationToken) -> Any:
        waiter: asyncio.Future[Any] = asyncio.get_running_loop().create_future()

        def _on_cancel() -> None:
            if not waiter.done():
                waiter.set_exception(CallCancelledError(path))

        def _on_done(t: asyncio.Task[Any]) -> None:
            if waiter.done():
                return
            if t.cancelled():
                waiter.set_exception(CallCancelledError(path))
            elif t.exception() is not None:
                waiter.set_exception(t.exception())  # type: ignore[arg-type]
            else:
                waiter.set_result(t.result())

        unregister = token.add_callback(_on_cancel)
        task.add_done_callback(_on_done)
        try:
            return await waiter
        finally:
            unregister()
            task.remove_done_callback(_on_done)

    def invalidate(self, path: str) -> int:
        """Drop cached entries for one procedure; returns how many were dropped."""
        prefix = f"{path}:"
        stale = [key for key in self._entries if key.startswith(prefix)]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()
        self._inflight.clear()
        self._generation += 1
        log.debug("query_cache_cleared", generation=self._generation)
