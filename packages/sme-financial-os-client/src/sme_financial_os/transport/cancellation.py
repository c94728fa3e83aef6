"""Explicit cancellation tokens for in-flight API calls."""

from __future__ import annotations

from collections.abc import Callable

import structlog

log = structlog.get_logger(__name__)


class CancellationToken:
    """Signals that the owner of one or more calls no longer wants their results.

    A view creates a token, passes it to every call it issues, and cancels it
    when it goes away. Calls still queued are dropped from their batch; calls
    already on the wire raise ``CallCancelledError`` and their late responses
    are discarded.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        log.debug("cancellation_requested", pending=len(callbacks))
        for callback in callbacks:
            callback()

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run *callback* on cancellation; returns a function that unregisters it."""
        if self._cancelled:
            callback()
            return lambda: None
        self._callbacks.append(callback)

        def _remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _remove
