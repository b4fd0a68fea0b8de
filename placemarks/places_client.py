"""Places provider client: text search, nearby search and photo URLs."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from . import config
from .geo import parse_coordinates
from .http import (
    HttpClient,
    MalformedResponse,
    NetworkFailure,
    RateLimitOrQuotaExceeded,
    RequestBudget,
    RequestMetrics,
)
from .models import Coordinate, ExternalPlace

logger = logging.getLogger(__name__)

OK_STATUSES = {"OK", "ZERO_RESULTS"}
QUOTA_STATUSES = {"OVER_QUERY_LIMIT", "RESOURCE_EXHAUSTED"}


class ExternalPlaceClient:
    def __init__(
        self,
        http_client: HttpClient,
        api_key: str,
        budget: Optional[RequestBudget] = None,
        metrics: Optional[RequestMetrics] = None,
    ) -> None:
        self.http = http_client
        self.api_key = api_key
        self.budget = budget
        self.metrics = metrics

    async def search_by_text(self, query: str) -> List[ExternalPlace]:
        if not query or not query.strip():
            return []
        params = build_text_search_params(query)
        places = await self._search(config.PLACES_TEXT_SEARCH_URL, params, "text search")
        return places[: config.TEXT_SEARCH_MAX_RESULTS]

    async def search_nearby(
        self,
        center: Coordinate,
        radius_m: float,
        category_filter: Optional[str] = None,
    ) -> List[ExternalPlace]:
        if category_filter is None:
            category_filter = config.NEARBY_CATEGORY_FILTER
        params = build_nearby_search_params(center, radius_m, category_filter)
        return await self._search(config.PLACES_NEARBY_SEARCH_URL, params, "nearby search")

    def photo_url(self, photo_reference: str, max_width: Optional[int] = None) -> str:
        return build_photo_url(photo_reference, self.api_key, max_width=max_width)

    async def _search(self, url: str, params: Dict[str, Any], label: str) -> List[ExternalPlace]:
        params = dict(params, key=self.api_key)
        try:
            if self.budget is not None:
                self.budget.consume("provider")
            response = await self.http.aget_json(url, params=params)
            return parse_places_response(response)
        except RateLimitOrQuotaExceeded as exc:
            logger.warning("Provider %s throttled, withholding results: %s", label, exc)
        except (NetworkFailure, MalformedResponse) as exc:
            logger.warning("Provider %s failed: %s", label, exc)
        if self.metrics is not None:
            self.metrics.inc_failure("provider")
        return []


def build_text_search_params(query: str) -> Dict[str, Any]:
    return {
        "query": query.strip(),
        "language": config.TEXT_SEARCH_LANGUAGE,
        "region": config.TEXT_SEARCH_REGION,
    }


def build_nearby_search_params(
    center: Coordinate, radius_m: float, category_filter: Optional[str]
) -> Dict[str, Any]:
    radius = min(float(radius_m), config.PROVIDER_MAX_RADIUS_M)
    params: Dict[str, Any] = {
        "location": center.as_param(),
        "radius": int(round(radius)),
    }
    if category_filter:
        params["type"] = category_filter
    return params


def build_photo_url(photo_reference: str, api_key: str, max_width: Optional[int] = None) -> str:
    if max_width is None:
        max_width = config.PHOTO_MAX_WIDTH
    query = urlencode(
        {"maxwidth": int(max_width), "photoreference": photo_reference, "key": api_key}
    )
    return f"{config.PLACES_PHOTO_URL}?{query}"


# Adapter/mapper for provider response fields

def parse_places_response(response: Any) -> List[ExternalPlace]:
    if not isinstance(response, dict):
        raise MalformedResponse("Provider response is not an object")
    status = response.get("status")
    if status and status not in OK_STATUSES:
        message = response.get("error_message") or status
        if status in QUOTA_STATUSES:
            raise RateLimitOrQuotaExceeded(f"Provider quota: {message}")
        raise NetworkFailure(f"Provider status {status}: {message}")

    parsed: List[ExternalPlace] = []
    results = response.get("results")
    if results is None:
        return []
    if not isinstance(results, list):
        raise MalformedResponse("Provider results is not a list")
    for item in results:
        place = parse_external_place(item)
        if place is None:
            logger.debug("Dropping malformed provider record: %r", item)
            continue
        parsed.append(place)
    return parsed


def parse_external_place(item: Any) -> Optional[ExternalPlace]:
    if not isinstance(item, dict):
        return None
    provider_id = item.get("place_id") or item.get("id")
    name = item.get("name")
    if not provider_id or not name:
        return None
    geometry = item.get("geometry")
    location = geometry.get("location") if isinstance(geometry, dict) else None
    if not isinstance(location, dict):
        return None
    coordinate = parse_coordinates((location.get("lat"), location.get("lng")))
    if coordinate is None:
        return None

    photos = []
    for photo in _as_list(item.get("photos")):
        ref = photo.get("photo_reference") if isinstance(photo, dict) else None
        if isinstance(ref, str) and ref:
            photos.append(ref)

    opening = item.get("opening_hours")
    open_now = opening.get("open_now") if isinstance(opening, dict) else None

    return ExternalPlace(
        provider_id=str(provider_id),
        name=str(name),
        coordinate=coordinate,
        rating=_optional_float(item.get("rating")),
        photo_references=tuple(photos),
        formatted_address=item.get("formatted_address") or item.get("vicinity"),
        types=tuple(t for t in _as_list(item.get("types")) if isinstance(t, str)),
        open_now=open_now if isinstance(open_now, bool) else None,
        price_level=_optional_int(item.get("price_level")),
    )


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
