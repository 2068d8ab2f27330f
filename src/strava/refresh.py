"""Refresh coordination for views that depend on synced data.

A view registers an ``on_refresh`` callback with ``use_refresh``.  It is
re-run when:

- a sync completes (``sync:complete`` on the event channel),
- a declared dependency value changes (the first render is not a change),
- the view calls ``refresh()`` itself.

All triggers go through one debouncer per registration, so a burst inside
the window produces exactly one ``on_refresh``.  The scroll offset is
captured before the callback and restored on the next paint after it
resolves, so refreshed content does not make the page jump.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Sequence

from src.strava.config_loader import get_sync_config
from src.strava.debounce import Debouncer
from src.strava.events import EventChannel, SyncCompleted, SyncTopic

logger = logging.getLogger("stride.refresh")


class ScrollSurface(ABC):
    """Whatever holds the scroll position of the refreshed view."""

    @abstractmethod
    def get_scroll_offset(self) -> float:
        """Return the current vertical offset."""

    @abstractmethod
    def set_scroll_offset(self, offset: float) -> None:
        """Move to ``offset``."""


class StaticScrollSurface(ScrollSurface):
    """A scroll position held in memory (headless views, tests)."""

    def __init__(self, offset: float = 0.0) -> None:
        self.offset = offset

    def get_scroll_offset(self) -> float:
        return self.offset

    def set_scroll_offset(self, offset: float) -> None:
        self.offset = offset


def _next_paint(callback: Callable[[], None]) -> None:
    asyncio.get_running_loop().call_soon(callback)


class RefreshHandle:
    """One ``use_refresh`` registration.  Returned to the view."""

    def __init__(
        self,
        on_refresh: Callable[[], Any],
        dependencies: Sequence[Any],
        enabled: bool,
        events: EventChannel,
        debounce_seconds: float,
        scroll: ScrollSurface | None,
        schedule_paint: Callable[[Callable[[], None]], None],
    ) -> None:
        self._on_refresh = on_refresh
        self._dependencies = tuple(dependencies)
        self._enabled = enabled
        self._scroll = scroll
        self._schedule_paint = schedule_paint
        self._debouncer = Debouncer(self._run, debounce_seconds)
        self._unsubscribe = events.subscribe(SyncTopic.COMPLETE, self._on_sync_complete)
        self._closed = False
        self.refresh_count = 0

    @property
    def enabled(self) -> bool:
        return self._enabled

    def set_on_refresh(self, on_refresh: Callable[[], Any]) -> None:
        """Swap the callback without re-registering (latest closure wins)."""
        self._on_refresh = on_refresh

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled
        if not enabled:
            self._debouncer.cancel()

    def refresh(self) -> None:
        """Request a refresh; debounced with every other trigger."""
        if self._closed or not self._enabled:
            return
        self._debouncer.trigger()

    def update_dependencies(self, dependencies: Sequence[Any]) -> bool:
        """Report the dependency values of the current render.

        Returns:
            True if any value changed and a refresh was requested.
        """
        new = tuple(dependencies)
        if new == self._dependencies:
            return False
        self._dependencies = new
        logger.debug("Refresh dependencies changed: %r", new)
        self.refresh()
        return True

    def _on_sync_complete(self, event: SyncCompleted) -> None:
        logger.debug("Refresh triggered by sync completion (%d activities)", event.activities_synced)
        self.refresh()

    async def _run(self) -> None:
        if self._closed or not self._enabled:
            return
        offset = self._scroll.get_scroll_offset() if self._scroll else None
        try:
            result = self._on_refresh()
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            logger.error("Error during automatic refresh: %s", exc)
        finally:
            self.refresh_count += 1
            if self._scroll is not None and offset is not None and not self._closed:
                scroll = self._scroll
                self._schedule_paint(lambda: scroll.set_scroll_offset(offset))

    async def idle(self) -> None:
        """Wait for pending and running refreshes."""
        await self._debouncer.idle()

    def close(self) -> None:
        """Release the subscription and every pending timer."""
        if self._closed:
            return
        self._closed = True
        self._unsubscribe()
        self._debouncer.close()


class RefreshCoordinator:
    """Factory for ``RefreshHandle`` registrations sharing one event channel.

    Usage::

        coordinator = RefreshCoordinator(channel, scroll=page)
        handle = coordinator.use_refresh(reload_table, dependencies=[month, year])
        ...
        handle.update_dependencies([next_month, year])   # debounced refresh
        handle.close()                                    # on teardown
    """

    def __init__(
        self,
        events: EventChannel,
        scroll: ScrollSurface | None = None,
        debounce_seconds: float | None = None,
        schedule_paint: Callable[[Callable[[], None]], None] = _next_paint,
    ) -> None:
        self._events = events
        self._scroll = scroll
        self._debounce_seconds = (
            debounce_seconds if debounce_seconds is not None else get_sync_config().debounce_seconds
        )
        self._schedule_paint = schedule_paint
        self._handles: list[RefreshHandle] = []

    def use_refresh(
        self,
        on_refresh: Callable[[], Any],
        dependencies: Sequence[Any] = (),
        enabled: bool = True,
        scroll: ScrollSurface | None = None,
    ) -> RefreshHandle:
        handle = RefreshHandle(
            on_refresh=on_refresh,
            dependencies=dependencies,
            enabled=enabled,
            events=self._events,
            debounce_seconds=self._debounce_seconds,
            scroll=scroll or self._scroll,
            schedule_paint=self._schedule_paint,
        )
        self._handles.append(handle)
        return handle

    def close(self) -> None:
        for handle in self._handles:
            handle.close()
        self._handles.clear()
