"""Internal catalog client: curated places, ratings and provider details proxy."""
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from . import config
from .geo import haversine_km, parse_coordinates
from .http import HttpClient, MalformedResponse, NetworkFailure, RequestBudget, RequestMetrics
from .models import CatalogFilter, CatalogResult, Coordinate, Place, SortBy, SortOrder

logger = logging.getLogger(__name__)

LISTING_FILTERS = (CatalogFilter.POPULAR, CatalogFilter.RECENT, CatalogFilter.HISTORICAL)


class InternalCatalogClient:
    def __init__(
        self,
        http_client: HttpClient,
        base_url: Optional[str] = None,
        user_id: Optional[str] = None,
        budget: Optional[RequestBudget] = None,
        metrics: Optional[RequestMetrics] = None,
    ) -> None:
        self.http = http_client
        self.base_url = (base_url or config.CATALOG_BASE_URL).rstrip("/")
        self.user_id = user_id
        self.budget = budget
        self.metrics = metrics

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _consume(self) -> None:
        if self.budget is not None:
            self.budget.consume("catalog")

    async def fetch_by_filter(self, catalog_filter: CatalogFilter) -> CatalogResult:
        catalog_filter = CatalogFilter(catalog_filter)
        if catalog_filter not in LISTING_FILTERS:
            raise ValueError(f"Not a listing filter: {catalog_filter.value}")
        return await self._fetch_places(
            "GET",
            "places",
            params={"filter": catalog_filter.value},
            error_message="Failed to fetch places.",
        )

    async def fetch_nearby(self, center: Coordinate, radius_m: float) -> CatalogResult:
        body = {"latitude": center.lat, "longitude": center.lng, "radius": radius_m}
        result = await self._fetch_places(
            "POST", "places/nearby", body=body, error_message="Failed to fetch nearby places."
        )
        result.places = [with_distance(p, center) for p in result.places]
        return result

    async def fetch_by_text_query(
        self,
        query: str,
        min_rating: Optional[float] = None,
        sort_by: SortBy = SortBy.RELEVANCE,
        order: SortOrder = SortOrder.DESC,
    ) -> CatalogResult:
        query = (query or "").strip()
        if not query and min_rating is None:
            return CatalogResult()
        params = {
            "query": query,
            "rating": min_rating,
            "sortBy": SortBy(sort_by).value,
            "order": SortOrder(order).value,
        }
        result = await self._fetch_places(
            "GET", "search", params=params, error_message="Failed to search places."
        )
        result.places = sort_places(result.places, sort_by, order, query)
        return result

    async def fetch_average_rating(self, place_id: str) -> float:
        self._consume()
        data = await self.http.aget_json(self._url("ratings"), params={"placeId": place_id})
        if not isinstance(data, dict):
            raise MalformedResponse("Rating response is not an object")
        return _as_rating(data.get("averageRating"))

    async def fetch_provider_details(self, external_id: str) -> Tuple[float, Tuple[str, ...]]:
        self._consume()
        data = await self.http.aget_json(self._url("places"), params={"placeId": external_id})
        if not isinstance(data, dict):
            raise MalformedResponse("Place details response is not an object")
        photos = data.get("photos") or []
        if not isinstance(photos, list):
            raise MalformedResponse("Place details photos is not a list")
        return _as_rating(data.get("googleRating")), tuple(str(p) for p in photos if p)

    async def submit_rating(self, place_id: str, value: int, user_id: Optional[str] = None) -> None:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError("Rating must be an integer")
        if not config.RATING_MIN_VALUE <= value <= config.RATING_MAX_VALUE:
            raise ValueError(
                f"Rating must be between {config.RATING_MIN_VALUE} and {config.RATING_MAX_VALUE}"
            )
        identity = user_id or self.user_id
        if not identity:
            raise ValueError("A caller identity is required to submit a rating")
        self._consume()
        await self.http.apost_json(
            self._url("ratings"),
            {"value": value},
            params={"placeId": place_id},
            extra_headers={config.CATALOG_USER_HEADER: identity},
        )

    async def _fetch_places(
        self,
        method: str,
        path: str,
        error_message: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> CatalogResult:
        url = self._url(path)
        try:
            self._consume()
            if method == "GET":
                data = await self.http.aget_json(url, params=params)
            else:
                data = await self.http.apost_json(url, body or {}, params=params)
            return CatalogResult(places=parse_catalog_response(data))
        except (NetworkFailure, MalformedResponse) as exc:
            logger.warning("Catalog %s %s failed: %s", method, path, exc)
            if self.metrics is not None:
                self.metrics.inc_failure("catalog")
            return CatalogResult(places=[], error=error_message)


# Adapter/mapper for catalog response fields

def parse_catalog_response(response: Any) -> List[Place]:
    if not isinstance(response, dict):
        raise MalformedResponse("Catalog response is not an object")
    items = response.get("places")
    if items is None:
        return []
    if not isinstance(items, list):
        raise MalformedResponse("Catalog places is not a list")
    parsed: List[Place] = []
    for item in items:
        place = parse_place(item)
        if place is None:
            logger.debug("Dropping malformed catalog record: %r", item)
            continue
        parsed.append(place)
    return parsed


def parse_place(item: Any) -> Optional[Place]:
    if not isinstance(item, dict):
        return None
    place_id = item.get("id")
    title = item.get("title") or item.get("name")
    if place_id in (None, "") or not title:
        return None

    coordinate = parse_coordinates(item.get("coordinates"))
    if coordinate is None and item.get("latitude") is not None:
        coordinate = parse_coordinates((item.get("latitude"), item.get("longitude")))

    external_id = item.get("placeId")
    created_at = item.get("createdAt")
    photos = item.get("photos")
    if not isinstance(photos, list):
        photos = []
    return Place(
        id=str(place_id),
        title=str(title),
        external_id=str(external_id) if external_id else None,
        location=item.get("location"),
        city=item.get("city"),
        country=item.get("country"),
        coordinate=coordinate,
        description=item.get("description"),
        fun_fact=item.get("funFact"),
        style=item.get("style"),
        likes=_as_count(item.get("likes")),
        comments=_as_count(item.get("comments")),
        created_at=created_at if isinstance(created_at, str) else None,
        is_enhanced=bool(item.get("isEnhanced")),
        average_rating=_as_rating(item.get("averageRating")),
        photos=tuple(p for p in photos if isinstance(p, str) and p),
    )


def with_distance(place: Place, center: Coordinate) -> Place:
    if place.coordinate is None:
        return place
    return replace(place, distance_km=round(haversine_km(center, place.coordinate), 2))


def sort_places(
    places: Sequence[Place],
    sort_by: SortBy = SortBy.RELEVANCE,
    order: SortOrder = SortOrder.DESC,
    query: str = "",
) -> List[Place]:
    sort_by = SortBy(sort_by)
    reverse = SortOrder(order) == SortOrder.DESC
    needle = (query or "").lower()

    if sort_by == SortBy.RATING:
        key = lambda p: p.average_rating
    elif sort_by == SortBy.NAME:
        key = lambda p: p.title.lower()
    elif sort_by == SortBy.DATE:
        key = lambda p: _created_ts(p.created_at)
    else:
        key = lambda p: 1 if needle and needle in p.title.lower() else 0
    return sorted(places, key=key, reverse=reverse)


def _created_ts(value: Any) -> float:
    if not value or not isinstance(value, str):
        return 0.0
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return 0.0


def _as_rating(value: Any) -> float:
    try:
        rating = float(value)
    except (TypeError, ValueError):
        return 0.0
    if rating != rating:  # NaN
        return 0.0
    return rating


def _as_count(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0
