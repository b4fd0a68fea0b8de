"""Data model for catalog places, provider places and map viewports."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lng: float

    def as_param(self) -> str:
        return f"{self.lat},{self.lng}"


class CatalogFilter(str, Enum):
    POPULAR = "popular"
    RECENT = "recent"
    HISTORICAL = "historical"
    NEARBY = "nearby"
    TEXT = "text"


class SortBy(str, Enum):
    RELEVANCE = "relevance"
    RATING = "rating"
    NAME = "name"
    DATE = "date"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class Place:
    """Internal catalog record, immutable for the lifetime of one fetch."""

    id: str
    title: str
    external_id: Optional[str] = None
    location: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    coordinate: Optional[Coordinate] = None
    description: Optional[str] = None
    fun_fact: Optional[str] = None
    style: Optional[str] = None
    likes: int = 0
    comments: int = 0
    created_at: Optional[str] = None
    is_enhanced: bool = False
    average_rating: float = 0.0
    external_rating: float = 0.0
    photos: Tuple[str, ...] = ()
    user_rating: Optional[int] = None
    distance_km: Optional[float] = None


@dataclass(frozen=True)
class ExternalPlace:
    """Provider result. Transient, re-fetched on every viewport change."""

    provider_id: str
    name: str
    coordinate: Coordinate
    rating: Optional[float] = None
    photo_references: Tuple[str, ...] = ()
    formatted_address: Optional[str] = None
    types: Tuple[str, ...] = ()
    open_now: Optional[bool] = None
    price_level: Optional[int] = None


@dataclass(frozen=True)
class Viewport:
    center: Coordinate
    latitude_delta: float
    longitude_delta: float

    def is_valid(self) -> bool:
        for delta in (self.latitude_delta, self.longitude_delta):
            if not math.isfinite(delta) or delta <= 0:
                return False
        return True


@dataclass(frozen=True)
class Rating:
    place_id: str
    average: float = 0.0
    external: float = 0.0


@dataclass(frozen=True)
class SearchQuery:
    text: str = ""
    min_rating: Optional[float] = None
    sort_by: SortBy = SortBy.RELEVANCE
    order: SortOrder = SortOrder.DESC

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()


@dataclass
class CatalogResult:
    places: List[Place] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None
