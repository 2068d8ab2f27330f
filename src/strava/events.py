"""In-process publish/subscribe channel for sync lifecycle events.

Topics:
    sync:start     — SyncStarted(automatic)
    sync:progress  — SyncProgress(message)
    sync:complete  — SyncCompleted(activities_synced, stats, automatic)
    sync:error     — SyncFailed(error, kind, automatic)

Handlers may be plain callables or coroutine functions.  Plain handlers run
inline during ``publish``; coroutine handlers are scheduled as tasks on the
running loop.  A failing handler is logged and never affects the publisher
or the other subscribers.
"""

from __future__ import annotations

import asyncio
import enum
import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Union

from src.strava.base import AggregateStats

logger = logging.getLogger("stride.events")


class SyncTopic(str, enum.Enum):
    START = "sync:start"
    PROGRESS = "sync:progress"
    COMPLETE = "sync:complete"
    ERROR = "sync:error"


@dataclass(frozen=True)
class SyncStarted:
    automatic: bool


@dataclass(frozen=True)
class SyncProgress:
    message: str


@dataclass(frozen=True)
class SyncCompleted:
    activities_synced: int
    stats: AggregateStats | None
    automatic: bool


@dataclass(frozen=True)
class SyncFailed:
    error: str
    kind: str
    automatic: bool


SyncEvent = Union[SyncStarted, SyncProgress, SyncCompleted, SyncFailed]

_PAYLOAD_TYPES: dict[SyncTopic, type] = {
    SyncTopic.START: SyncStarted,
    SyncTopic.PROGRESS: SyncProgress,
    SyncTopic.COMPLETE: SyncCompleted,
    SyncTopic.ERROR: SyncFailed,
}

Handler = Callable[[Any], Any]


class EventChannel:
    """Typed pub/sub with any number of subscribers per topic.

    Usage::

        channel = EventChannel()
        unsubscribe = channel.subscribe(SyncTopic.COMPLETE, on_complete)
        channel.publish(SyncTopic.COMPLETE, SyncCompleted(3, stats, automatic=True))
        unsubscribe()
    """

    def __init__(self) -> None:
        self._handlers: dict[SyncTopic, list[Handler]] = defaultdict(list)
        self._tasks: set[asyncio.Task] = set()

    def subscribe(self, topic: SyncTopic, handler: Handler) -> Callable[[], None]:
        """Attach ``handler`` to ``topic``.

        Returns:
            A callable that detaches the handler.  Calling it twice is a no-op.
        """
        self._handlers[topic].append(handler)

        def _unsubscribe() -> None:
            try:
                self._handlers[topic].remove(handler)
            except ValueError:
                pass

        return _unsubscribe

    def subscriber_count(self, topic: SyncTopic) -> int:
        return len(self._handlers[topic])

    def publish(self, topic: SyncTopic, event: SyncEvent) -> None:
        """Deliver ``event`` to every current subscriber of ``topic``.

        Raises:
            TypeError: If ``event`` is not the payload type of ``topic``.
        """
        expected = _PAYLOAD_TYPES[topic]
        if not isinstance(event, expected):
            raise TypeError(
                f"{topic.value} expects {expected.__name__}, got {type(event).__name__}"
            )
        logger.debug("Publishing %s: %s", topic.value, event)

        for handler in list(self._handlers[topic]):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._tasks.add(task)
                    task.add_done_callback(self._on_task_done)
            except Exception as exc:
                logger.warning("Subscriber %r failed on %s: %s", handler, topic.value, exc)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Async subscriber failed: %s", task.exception())

    async def drain(self) -> None:
        """Wait for all scheduled async handlers to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def clear(self) -> None:
        """Drop all subscribers and cancel pending async handlers."""
        self._handlers.clear()
        for task in list(self._tasks):
            task.cancel()
