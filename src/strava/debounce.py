"""Trailing-edge debouncer on the asyncio event loop."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable

logger = logging.getLogger("stride.debounce")


class Debouncer:
    """Collapse bursts of ``trigger()`` calls into a single callback.

    Every ``trigger()`` restarts the window; the callback runs once the
    window elapses with no further triggers.  Coroutine callbacks are run as
    tasks and their failures are logged.

    Usage::

        debouncer = Debouncer(refresh, wait=0.3)
        for _ in range(10):
            debouncer.trigger()    # refresh() runs once, 300 ms after the last call
    """

    def __init__(self, callback: Callable[[], Any], wait: float) -> None:
        if wait < 0:
            raise ValueError("wait must be non-negative")
        self._callback = callback
        self._wait = wait
        self._handle: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def wait(self) -> float:
        return self._wait

    @property
    def pending(self) -> bool:
        """True while a trigger is waiting for its window to elapse."""
        return self._handle is not None

    def trigger(self) -> None:
        loop = asyncio.get_running_loop()
        if self._handle is not None:
            self._handle.cancel()
        self._handle = loop.call_later(self._wait, self._fire)

    def cancel(self) -> None:
        """Drop a pending trigger.  A callback already running is not affected."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def close(self) -> None:
        """Drop the pending trigger and cancel running callbacks."""
        self.cancel()
        for task in list(self._tasks):
            task.cancel()

    def _fire(self) -> None:
        self._handle = None
        try:
            result = self._callback()
        except Exception as exc:
            logger.error("Debounced callback failed: %s", exc)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Debounced callback failed: %s", task.exception())

    async def idle(self) -> None:
        """Wait until no trigger is pending and no callback is running."""
        while self._handle is not None or self._tasks:
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            else:
                await asyncio.sleep(self._wait / 2 or 0)
