"""Tests for the debouncer and the refresh coordinator."""

from __future__ import annotations

import asyncio
from typing import Callable

import pytest

from src.strava.debounce import Debouncer
from src.strava.events import EventChannel, SyncCompleted, SyncTopic
from src.strava.refresh import RefreshCoordinator, StaticScrollSurface

WINDOW = 0.02


class ManualPaint:
    """Collects next-paint callbacks so tests decide when a frame happens."""

    def __init__(self) -> None:
        self.pending: list[Callable[[], None]] = []

    def __call__(self, callback: Callable[[], None]) -> None:
        self.pending.append(callback)

    def paint(self) -> None:
        callbacks, self.pending = self.pending, []
        for callback in callbacks:
            callback()


@pytest.fixture
def paint() -> ManualPaint:
    return ManualPaint()


@pytest.fixture
def coordinator(events: EventChannel, paint: ManualPaint) -> RefreshCoordinator:
    return RefreshCoordinator(events, debounce_seconds=WINDOW, schedule_paint=paint)


def _completed() -> SyncCompleted:
    return SyncCompleted(activities_synced=1, stats=None, automatic=True)


# ---------------------------------------------------------------------------
# Debouncer
# ---------------------------------------------------------------------------


class TestDebouncer:
    @pytest.mark.asyncio
    async def test_burst_collapses_to_one_call(self) -> None:
        calls: list[int] = []
        debouncer = Debouncer(lambda: calls.append(1), wait=WINDOW)
        for _ in range(10):
            debouncer.trigger()
        assert debouncer.pending is True
        await debouncer.idle()
        assert calls == [1]
        assert debouncer.pending is False

    @pytest.mark.asyncio
    async def test_async_callback_awaited_by_idle(self) -> None:
        done = asyncio.Event()

        async def callback() -> None:
            await asyncio.sleep(0)
            done.set()

        debouncer = Debouncer(callback, wait=WINDOW)
        debouncer.trigger()
        await debouncer.idle()
        assert done.is_set()

    @pytest.mark.asyncio
    async def test_cancel_drops_pending_trigger(self) -> None:
        calls: list[int] = []
        debouncer = Debouncer(lambda: calls.append(1), wait=WINDOW)
        debouncer.trigger()
        debouncer.cancel()
        await asyncio.sleep(WINDOW * 3)
        assert calls == []

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_break_later_triggers(self) -> None:
        calls: list[int] = []

        def callback() -> None:
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")

        debouncer = Debouncer(callback, wait=WINDOW)
        debouncer.trigger()
        await debouncer.idle()
        debouncer.trigger()
        await debouncer.idle()
        assert len(calls) == 2

    def test_negative_wait_rejected(self) -> None:
        with pytest.raises(ValueError):
            Debouncer(lambda: None, wait=-1)


# ---------------------------------------------------------------------------
# RefreshCoordinator
# ---------------------------------------------------------------------------


class TestRefreshTriggers:
    @pytest.mark.asyncio
    async def test_sync_complete_triggers_refresh(
        self, coordinator: RefreshCoordinator, events: EventChannel
    ) -> None:
        calls: list[int] = []
        handle = coordinator.use_refresh(lambda: calls.append(1))
        events.publish(SyncTopic.COMPLETE, _completed())
        await handle.idle()
        assert calls == [1]
        assert handle.refresh_count == 1

    @pytest.mark.asyncio
    async def test_burst_of_triggers_refreshes_once(
        self, coordinator: RefreshCoordinator, events: EventChannel
    ) -> None:
        calls: list[int] = []
        handle = coordinator.use_refresh(lambda: calls.append(1), dependencies=[3, 2026])
        events.publish(SyncTopic.COMPLETE, _completed())
        handle.update_dependencies([4, 2026])
        handle.refresh()
        events.publish(SyncTopic.COMPLETE, _completed())
        await handle.idle()
        assert calls == [1]

    @pytest.mark.asyncio
    async def test_first_render_is_not_a_change(self, coordinator: RefreshCoordinator) -> None:
        calls: list[int] = []
        handle = coordinator.use_refresh(lambda: calls.append(1), dependencies=[3, 2026])
        assert handle.update_dependencies([3, 2026]) is False
        await asyncio.sleep(WINDOW * 3)
        assert calls == []

    @pytest.mark.asyncio
    async def test_dependency_change_triggers_refresh(self, coordinator: RefreshCoordinator) -> None:
        calls: list[int] = []
        handle = coordinator.use_refresh(lambda: calls.append(1), dependencies=[3, 2026])
        assert handle.update_dependencies([4, 2026]) is True
        await handle.idle()
        assert calls == [1]

    @pytest.mark.asyncio
    async def test_disabled_handle_ignores_triggers(
        self, coordinator: RefreshCoordinator, events: EventChannel
    ) -> None:
        calls: list[int] = []
        handle = coordinator.use_refresh(lambda: calls.append(1), enabled=False)
        events.publish(SyncTopic.COMPLETE, _completed())
        handle.refresh()
        await asyncio.sleep(WINDOW * 3)
        assert calls == []

    @pytest.mark.asyncio
    async def test_latest_callback_is_used(self, coordinator: RefreshCoordinator) -> None:
        calls: list[str] = []
        handle = coordinator.use_refresh(lambda: calls.append("old"))
        handle.set_on_refresh(lambda: calls.append("new"))
        handle.refresh()
        await handle.idle()
        assert calls == ["new"]

    @pytest.mark.asyncio
    async def test_failing_refresh_is_contained(self, coordinator: RefreshCoordinator) -> None:
        async def on_refresh() -> None:
            raise RuntimeError("table reload failed")

        handle = coordinator.use_refresh(on_refresh)
        handle.refresh()
        await handle.idle()
        assert handle.refresh_count == 1


class TestScrollPreservation:
    @pytest.mark.asyncio
    async def test_offset_restored_on_next_paint(
        self, coordinator: RefreshCoordinator, paint: ManualPaint
    ) -> None:
        surface = StaticScrollSurface(offset=420.0)

        def on_refresh() -> None:
            surface.offset = 0.0  # content re-render jumps to top

        handle = coordinator.use_refresh(on_refresh, scroll=surface)
        handle.refresh()
        await handle.idle()
        assert surface.offset == 0.0
        assert len(paint.pending) == 1

        paint.paint()
        assert surface.offset == 420.0

    @pytest.mark.asyncio
    async def test_default_paint_uses_event_loop(self, events: EventChannel) -> None:
        surface = StaticScrollSurface(offset=90.0)
        coordinator = RefreshCoordinator(events, scroll=surface, debounce_seconds=WINDOW)

        def on_refresh() -> None:
            surface.offset = 5.0

        handle = coordinator.use_refresh(on_refresh)
        handle.refresh()
        await handle.idle()
        await asyncio.sleep(0)
        assert surface.offset == 90.0


class TestTeardown:
    @pytest.mark.asyncio
    async def test_close_unsubscribes_and_cancels(
        self, coordinator: RefreshCoordinator, events: EventChannel
    ) -> None:
        calls: list[int] = []
        handle = coordinator.use_refresh(lambda: calls.append(1))
        assert events.subscriber_count(SyncTopic.COMPLETE) == 1

        handle.refresh()
        handle.close()
        events.publish(SyncTopic.COMPLETE, _completed())
        await asyncio.sleep(WINDOW * 3)

        assert calls == []
        assert events.subscriber_count(SyncTopic.COMPLETE) == 0

    @pytest.mark.asyncio
    async def test_coordinator_close_releases_all_handles(
        self, coordinator: RefreshCoordinator, events: EventChannel
    ) -> None:
        coordinator.use_refresh(lambda: None)
        coordinator.use_refresh(lambda: None)
        coordinator.close()
        assert events.subscriber_count(SyncTopic.COMPLETE) == 0
