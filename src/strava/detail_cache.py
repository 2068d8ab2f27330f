"""Per-entity TTL cache with request supersession and two-stage population.

Population happens in two stages:

1. ``fetch_primary`` — the required fields.  Committed as soon as it arrives,
   so ``get`` returns without waiting for stage 2.  Failures propagate.
2. ``fetch_enrichment`` — secondary metrics (heart rate stream, splits),
   run in the background and merged into the cached value.  Failures are
   logged and leave stage 1 data in place.

Every fetch for an id is stamped with a new generation number for that id.
A response is committed only if its generation is still the latest one
issued for the id: the last *issued* request wins, not the last to
*complete*.  Nothing is cancelled on the wire; superseded responses are
simply dropped on arrival.  Generations are scoped per id, so fetching one
activity never discards another's response.

Expiry is checked lazily at ``get`` time; there is no background sweep.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Generic

from src.strava.base import CacheEntry, DetailSource, E, K, T
from src.strava.config_loader import get_sync_config

logger = logging.getLogger("stride.detail_cache")

Listener = Callable[[K, T], None]


class EntityDetailCache(Generic[K, T, E]):
    """TTL cache for one entity type, fed by a ``DetailSource``.

    Usage::

        cache = EntityDetailCache(SupabaseActivitySource(client))
        detail = await cache.get(activity_id)      # stage 1 data, enrichment follows
        cache.schedule_prefetch(other_id)          # on hover
        cache.invalidate(deleted_id)               # entity removed elsewhere
    """

    def __init__(
        self,
        source: DetailSource[K, T, E],
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._ttl = ttl_seconds if ttl_seconds is not None else get_sync_config().detail_ttl_seconds
        self._clock = clock
        self._entries: dict[K, CacheEntry[T]] = {}
        self._generations: dict[K, int] = {}
        self._enriching: dict[K, tuple[int, asyncio.Task]] = {}
        self._tasks: set[asyncio.Task] = set()
        self._listeners: list[Listener] = []

    # ------------------------------------------------------------------
    # Generations
    # ------------------------------------------------------------------

    def _next_generation(self, entity_id: K) -> int:
        generation = self._generations.get(entity_id, 0) + 1
        self._generations[entity_id] = generation
        return generation

    def generation(self, entity_id: K) -> int:
        """Latest generation issued for ``entity_id`` (0 if never fetched)."""
        return self._generations.get(entity_id, 0)

    def _is_current(self, entity_id: K, generation: int) -> bool:
        return self._generations.get(entity_id, 0) == generation

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _valid_entry(self, entity_id: K) -> CacheEntry[T] | None:
        entry = self._entries.get(entity_id)
        if entry is None:
            return None
        if not entry.is_valid(self._clock()):
            return None
        return entry

    def is_valid(self, entity_id: K) -> bool:
        return self._valid_entry(entity_id) is not None

    def peek(self, entity_id: K) -> T | None:
        """Return the cached value without fetching, or None if missing/expired."""
        entry = self._valid_entry(entity_id)
        return entry.value if entry else None

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, entity_id: K) -> T:
        """Return the entity, fetching stage 1 on a miss.

        Stage 2 enrichment is scheduled in the background and does not delay
        the return.  A cache hit without enrichment schedules it too.

        Raises:
            Exception: Whatever ``fetch_primary`` raised.
        """
        entry = self._valid_entry(entity_id)
        if entry is not None:
            logger.debug("Using cached detail for %s", entity_id)
            if not self._source.is_enriched(entry.value):
                self._schedule_enrichment(entity_id, self.generation(entity_id))
            return entry.value

        generation = self._next_generation(entity_id)
        value = await self._fetch_primary(entity_id, generation)
        if self._is_current(entity_id, generation):
            self._schedule_enrichment(entity_id, generation)
        return value

    async def prefetch(self, entity_id: K) -> None:
        """Warm the cache for ``entity_id``; no-op if a valid entry exists.

        Errors are logged, never raised.  Enrichment is left for the first
        real ``get``.
        """
        if self.is_valid(entity_id):
            return
        generation = self._next_generation(entity_id)
        try:
            await self._fetch_primary(entity_id, generation)
        except Exception as exc:
            logger.warning("Error prefetching %s: %s", entity_id, exc)

    def schedule_prefetch(self, entity_id: K) -> asyncio.Task | None:
        """Fire-and-forget ``prefetch`` (hover handler).

        Returns:
            The background task, or None when the entry is already valid.
        """
        if self.is_valid(entity_id):
            return None
        return self._spawn(self.prefetch(entity_id))

    def invalidate(self, entity_id: K) -> None:
        """Forget ``entity_id`` and fence off fetches still in flight for it."""
        self._entries.pop(entity_id, None)
        if entity_id in self._generations:
            self._next_generation(entity_id)
        running = self._enriching.pop(entity_id, None)
        if running is not None:
            running[1].cancel()
        logger.debug("Invalidated detail cache entry %s", entity_id)

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener(entity_id, value)`` whenever an enrichment is merged."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _fetch_primary(self, entity_id: K, generation: int) -> T:
        try:
            value = await self._source.fetch_primary(entity_id)
        except Exception as exc:
            logger.error("Error fetching detail for %s: %s", entity_id, exc)
            raise
        if self._is_current(entity_id, generation):
            self._entries[entity_id] = CacheEntry(value=value, expires_at=self._clock() + self._ttl)
        else:
            logger.debug(
                "Discarding superseded response for %s (generation %d < %d)",
                entity_id, generation, self.generation(entity_id),
            )
        return value

    def _schedule_enrichment(self, entity_id: K, generation: int) -> None:
        running = self._enriching.get(entity_id)
        if running is not None:
            running_generation, running_task = running
            if running_generation == generation and not running_task.done():
                return
            running_task.cancel()
        task = self._spawn(self._enrich(entity_id, generation))
        self._enriching[entity_id] = (generation, task)

        def _clear(t: asyncio.Task) -> None:
            current = self._enriching.get(entity_id)
            if current is not None and current[1] is t:
                del self._enriching[entity_id]

        task.add_done_callback(_clear)

    async def _enrich(self, entity_id: K, generation: int) -> None:
        try:
            enrichment = await self._source.fetch_enrichment(entity_id)
        except Exception as exc:
            logger.warning("Enrichment failed for %s, keeping primary data: %s", entity_id, exc)
            return
        if enrichment is None:
            return
        if not self._is_current(entity_id, generation):
            logger.debug("Discarding superseded enrichment for %s", entity_id)
            return
        entry = self._entries.get(entity_id)
        if entry is None:
            return
        merged = self._source.merge(entry.value, enrichment)
        self._entries[entity_id] = CacheEntry(value=merged, expires_at=entry.expires_at)
        for listener in list(self._listeners):
            try:
                listener(entity_id, merged)
            except Exception as exc:
                logger.warning("Detail cache listener failed: %s", exc)

    # ------------------------------------------------------------------
    # Task bookkeeping
    # ------------------------------------------------------------------

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for background prefetches and enrichments to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel background work.  Cached entries are kept."""
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)


class DetailView(Generic[K, T, E]):
    """Consumer-side state for a detail screen.

    Holds ``entity``, ``loading`` and ``error`` the way a view would render
    them.  Successive ``show`` calls for different ids follow
    last-issued-wins: if the response for an earlier id arrives after a
    later one, the view keeps the later id's state.  Enrichment merged into
    the cache for the shown id updates ``entity`` in place.
    """

    def __init__(self, cache: EntityDetailCache[K, T, E]) -> None:
        self._cache = cache
        self._request = 0
        self.current_id: K | None = None
        self.entity: T | None = None
        self.loading = False
        self.error: str | None = None
        self._remove_listener = cache.add_listener(self._on_enriched)

    async def show(self, entity_id: K) -> None:
        self._request += 1
        request = self._request
        self.current_id = entity_id
        self.loading = True
        self.error = None
        try:
            value = await self._cache.get(entity_id)
        except Exception as exc:
            if request == self._request:
                self.error = str(exc) or "Error loading details"
                self.loading = False
            return
        if request != self._request:
            return
        self.entity = value
        self.loading = False

    def _on_enriched(self, entity_id: K, value: T) -> None:
        if entity_id == self.current_id and not self.loading:
            self.entity = value

    def close(self) -> None:
        self._remove_listener()
