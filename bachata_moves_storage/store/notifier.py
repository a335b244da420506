"""
Coalescing change notifier.

Mutations call :meth:`ChangeNotifier.notify`; every call inside the
coalescing window collapses into one broadcast to subscribers. The window
is waited through an injectable ``sleep`` so tests can drive it.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

Listener = Callable[[], Any]
Sleep = Callable[[float], Awaitable[None]]


class ChangeNotifier:
    """Broadcasts "the data changed" to subscribers, at most once per window."""

    def __init__(self, delay: float = 0.1, sleep: Sleep = asyncio.sleep):
        self.delay = delay
        self._sleep = sleep
        self._listeners: list[Listener] = []
        self._pending: asyncio.Task[None] | None = None
        self.broadcasts = 0

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def notify(self) -> None:
        """Schedule a broadcast unless one is already waiting out the window."""
        if self.pending:
            return
        self._pending = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        await self._sleep(self.delay)
        self._pending = None
        await self.broadcast()

    async def broadcast(self) -> None:
        """Call every listener now; listener failures are logged, not raised."""
        self.broadcasts += 1
        for listener in list(self._listeners):
            try:
                result = listener()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Change listener {listener!r} failed: {e}")

    async def flush(self) -> None:
        """Wait for a scheduled broadcast to finish."""
        if self._pending is not None:
            await self._pending

    async def close(self) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
            try:
                await self._pending
            except asyncio.CancelledError:
                pass
        self._pending = None
