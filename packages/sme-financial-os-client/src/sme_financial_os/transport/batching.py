"""Coalesces calls issued within one event-loop tick into batched round trips."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from sme_financial_os.errors import CallCancelledError

log = structlog.get_logger(__name__)


class CallKind(str, Enum):
    QUERY = "query"
    MUTATION = "mutation"


@dataclass(eq=False)
class PendingCall:
    """One outbound procedure call waiting for its batch response.

    ``input`` holds the already serialized envelope sent in the batch slot.
    """

    kind: CallKind
    path: str
    input: Any
    future: asyncio.Future[Any] = field(repr=False)

    def resolve(self, value: Any) -> bool:
        if self.future.done():
            return False
        self.future.set_result(value)
        return True

    def reject(self, exc: BaseException) -> bool:
        if self.future.done():
            return False
        self.future.set_exception(exc)
        return True


Dispatcher = Callable[[CallKind, list[PendingCall]], Awaitable[None]]


class BatchScheduler:
    """Queues calls and flushes them once per loop iteration.

    Every call enqueued before the flush callback runs shares the flush. Each
    flush sends one batch per call kind (queries and mutations never share a
    request), split further when ``max_items`` is set. ``window`` delays the
    flush by that many seconds to widen the batch.
    """

    def __init__(
        self,
        dispatch: Dispatcher,
        *,
        max_items: int | None = None,
        window: float = 0.0,
    ) -> None:
        self._dispatch = dispatch
        self._max_items = max_items
        self._window = window
        self._queue: list[PendingCall] = []
        self._flush_handle: asyncio.Handle | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._queue)

    def enqueue(self, kind: CallKind, path: str, input: Any) -> PendingCall:
        """Queue a call; must run synchronously inside the caller's task step."""
        loop = asyncio.get_running_loop()
        call = PendingCall(kind=kind, path=path, input=input, future=loop.create_future())
        self._queue.append(call)
        if self._flush_handle is None:
            if self._window > 0:
                self._flush_handle = loop.call_later(self._window, self._flush)
            else:
                self._flush_handle = loop.call_soon(self._flush)
        return call

    def discard(self, call: PendingCall) -> bool:
        """Drop a call that has not been dispatched yet."""
        if call in self._queue:
            self._queue.remove(call)
            return True
        return False

    def _flush(self) -> None:
        self._flush_handle = None
        queue, self._queue = self._queue, []
        live = [call for call in queue if not call.future.done()]
        if not live:
            return

        loop = asyncio.get_running_loop()
        for kind in CallKind:
            calls = [call for call in live if call.kind is kind]
            for chunk in self._chunks(calls):
                task = loop.create_task(self._run(kind, chunk))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)

    def _chunks(self, calls: list[PendingCall]) -> list[list[PendingCall]]:
        if not calls:
            return []
        if not self._max_items:
            return [calls]
        size = self._max_items
        return [calls[i : i + size] for i in range(0, len(calls), size)]

    async def _run(self, kind: CallKind, calls: list[PendingCall]) -> None:
        try:
            await self._dispatch(kind, calls)
        except asyncio.CancelledError:
            for call in calls:
                call.reject(CallCancelledError(call.path))
            raise
        except Exception as exc:
            for call in calls:
                call.reject(exc)
            log.debug("batch_failed", kind=kind.value, size=len(calls), error=str(exc))

    async def aclose(self) -> None:
        """Fail queued calls and cancel batches still on the wire."""
        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._flush_handle = None
        queue, self._queue = self._queue, []
        for call in queue:
            call.reject(CallCancelledError(call.path))

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
