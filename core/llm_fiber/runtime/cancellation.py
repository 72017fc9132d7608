"""Cooperative cancellation for runs.

A run owns exactly one ``CancellationToken``. A token supplied by the caller
is linked one-way: when it fires, the run's token fires too, once.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


class CancellationToken:
    """A one-shot cancellation signal with subscribe-once callbacks."""

    def __init__(self) -> None:
        self._cancelled = False
        self._callbacks: list[Callable[[], None]] = []
        self._event: asyncio.Event | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Fire the token. Later calls are no-ops."""
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        if self._event is not None:
            self._event.set()
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Cancellation callback failed")

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run *callback* once when the token fires.

        Runs immediately if the token already fired. Returns a function that
        removes the subscription.
        """
        if self._cancelled:
            callback()
            return lambda: None
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def link(self, outer: CancellationToken) -> Callable[[], None]:
        """Fire this token when *outer* fires. Returns the unlink function."""
        return outer.on_cancel(self.cancel)

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise asyncio.CancelledError("cancellation requested")

    async def wait(self) -> None:
        """Suspend until the token fires."""
        if self._cancelled:
            return
        if self._event is None:
            self._event = asyncio.Event()
        await self._event.wait()
