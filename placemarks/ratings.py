"""Concurrent rating and photo enrichment for a batch of catalog places."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, Awaitable, List, Optional, Sequence, Tuple

from . import config
from .http import MalformedResponse, NetworkFailure
from .models import Place, Rating

logger = logging.getLogger(__name__)

RECOVERABLE_ERRORS = (NetworkFailure, MalformedResponse)


class RatingAggregator:
    """Fan out one average-rating call and one provider-details call per place.

    Every pair is joined before the batch is returned. A failed sub-fetch
    resolves to 0 / no photos and never fails the batch.
    """

    def __init__(self, catalog: Any, max_concurrency: Optional[int] = None) -> None:
        self.catalog = catalog
        if max_concurrency is None:
            max_concurrency = config.RATING_MAX_CONCURRENCY
        self._semaphore = asyncio.Semaphore(max_concurrency) if max_concurrency else None

    async def enrich(self, places: Sequence[Place]) -> List[Place]:
        if not places:
            return []
        return list(await asyncio.gather(*(self._enrich_one(p) for p in places)))

    async def ratings_for(self, places: Sequence[Place]) -> List[Rating]:
        enriched = await self.enrich(places)
        return [Rating(p.id, p.average_rating, p.external_rating) for p in enriched]

    async def _enrich_one(self, place: Place) -> Place:
        average_task = self._limited(self.catalog.fetch_average_rating(place.id))
        if place.external_id:
            details_task = self._limited(self.catalog.fetch_provider_details(place.external_id))
        else:
            details_task = _no_details()
        average, details = await asyncio.gather(
            average_task, details_task, return_exceptions=True
        )

        average_rating = _settled_rating(average, place, "average rating")
        external_rating, photos = _settled_details(details, place)
        return replace(
            place,
            average_rating=average_rating,
            external_rating=external_rating,
            photos=photos,
        )

    async def _limited(self, coro: Awaitable[Any]) -> Any:
        if self._semaphore is None:
            return await coro
        async with self._semaphore:
            return await coro


async def _no_details() -> Tuple[float, Tuple[str, ...]]:
    return 0.0, ()


def _settled_rating(result: Any, place: Place, label: str) -> float:
    if isinstance(result, BaseException):
        _log_failure(result, place, label)
        return 0.0
    try:
        return float(result or 0.0)
    except (TypeError, ValueError):
        return 0.0


def _settled_details(result: Any, place: Place) -> Tuple[float, Tuple[str, ...]]:
    if isinstance(result, BaseException):
        _log_failure(result, place, "provider details")
        return 0.0, ()
    rating, photos = result
    return _settled_rating(rating, place, "provider rating"), tuple(photos or ())


def _log_failure(exc: BaseException, place: Place, label: str) -> None:
    if isinstance(exc, asyncio.CancelledError):
        raise exc
    if isinstance(exc, RECOVERABLE_ERRORS):
        logger.warning("Defaulting %s for place %s: %s", label, place.id, exc)
    else:
        logger.error("Unexpected error fetching %s for place %s: %r", label, place.id, exc)
