"""Activity detail endpoints backed by the two-stage detail cache."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from src.dependencies import DetailCache
from src.models.activities import ActivityDetailRead, PrefetchRead
from src.models.base import ErrorDetail

router = APIRouter(prefix="/activities", tags=["activities"])


@router.get(
    "/{activity_id}",
    response_model=ActivityDetailRead,
    responses={404: {"model": ErrorDetail}, 502: {"model": ErrorDetail}},
)
async def get_activity(activity_id: int, cache: DetailCache) -> Any:
    """Primary fields are returned immediately.

    Heart rate stream and splits are merged into the cache in the
    background; ``enriched`` tells the client whether to poll again.
    """
    return await cache.get(activity_id)


@router.post("/{activity_id}/prefetch", response_model=PrefetchRead, status_code=202)
async def prefetch_activity(activity_id: int, cache: DetailCache) -> Any:
    task = cache.schedule_prefetch(activity_id)
    return PrefetchRead(activity_id=activity_id, scheduled=task is not None)


@router.delete("/{activity_id}/cache", status_code=204)
async def invalidate_activity(activity_id: int, cache: DetailCache) -> None:
    cache.invalidate(activity_id)
