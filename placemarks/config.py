"""Project configuration.

Loads overrides from map_config.json when available, falling back to the
defaults below. Keep API request shapes and map thresholds centralized here.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

_REPO_ROOT = Path(__file__).resolve().parent.parent

# --- API endpoints ---

PLACES_TEXT_SEARCH_URL = "https://maps.googleapis.com/maps/api/place/textsearch/json"
PLACES_NEARBY_SEARCH_URL = "https://maps.googleapis.com/maps/api/place/nearbysearch/json"
PLACES_PHOTO_URL = "https://maps.googleapis.com/maps/api/place/photo"

CATALOG_BASE_URL = "http://localhost:3000/api"
CATALOG_USER_HEADER = "X-User-Id"

# --- Provider request shape ---

TEXT_SEARCH_LANGUAGE = "en"
TEXT_SEARCH_REGION = "us"
TEXT_SEARCH_MAX_RESULTS = 10
NEARBY_CATEGORY_FILTER = "tourist_attraction|museum|park|restaurant|point_of_interest"
PHOTO_MAX_WIDTH = 400

# --- Geometry ---

EARTH_RADIUS_M = 6371000.0
TILE_SIZE_PX = 256

# --- Fetch policy ---

EXTERNAL_FETCH_MIN_ZOOM = 12.0  # strictly greater than
PROVIDER_MAX_RADIUS_M = 10000.0
NEARBY_CATALOG_RADIUS_M = 10000

# --- Marker visibility ---

INITIAL_ZOOM = 15.0
INTERNAL_MARKER_CAP = 10
INTERNAL_ALL_MARKERS_ZOOM = 15.0  # strictly greater than
EXTERNAL_MARKER_MIN_ZOOM = 13.0
EXTERNAL_MARKER_CAP = 20

# --- Dedup ---

DEDUP_COORD_EPSILON_DEG = 0.001

# --- Debounce (milliseconds) ---

REGION_DEBOUNCE_MS = 500
SEARCH_DEBOUNCE_MS = 500

# --- Rating aggregation ---

RATING_MIN_VALUE = 1
RATING_MAX_VALUE = 5
RATING_MAX_CONCURRENCY: Optional[int] = None

# --- Budgets ---

MAX_CATALOG_REQUESTS_PER_SESSION = 2000
MAX_PROVIDER_REQUESTS_PER_SESSION = 500

# --- HTTP ---

HTTP_TIMEOUT_SECONDS = 15
HTTP_RETRY_MAX = 1
HTTP_BACKOFF_BASE = 0.5
HTTP_BACKOFF_MAX = 8.0

# --- Outputs ---

OUTPUT_DIR = "out"
DEFAULT_VIEWPORT_WIDTH_PX = 390

_OVERRIDABLE: Dict[str, type] = {
    "CATALOG_BASE_URL": str,
    "TEXT_SEARCH_LANGUAGE": str,
    "TEXT_SEARCH_REGION": str,
    "TEXT_SEARCH_MAX_RESULTS": int,
    "NEARBY_CATEGORY_FILTER": str,
    "PHOTO_MAX_WIDTH": int,
    "REGION_DEBOUNCE_MS": int,
    "SEARCH_DEBOUNCE_MS": int,
    "INTERNAL_MARKER_CAP": int,
    "EXTERNAL_MARKER_CAP": int,
    "DEDUP_COORD_EPSILON_DEG": float,
    "RATING_MAX_CONCURRENCY": int,
    "MAX_PROVIDER_REQUESTS_PER_SESSION": int,
    "MAX_CATALOG_REQUESTS_PER_SESSION": int,
    "HTTP_TIMEOUT_SECONDS": int,
    "HTTP_RETRY_MAX": int,
    "OUTPUT_DIR": str,
}


def load_map_config(path: Optional[str] = None) -> bool:
    """Load map configuration overrides from a JSON file.

    Keys are matched case-insensitively against the overridable constants in
    this module. Unknown keys are ignored. Returns True if a file was loaded,
    False if it was not found.
    """
    if path is None:
        path = str(_REPO_ROOT / "map_config.json")

    config_path = Path(path)
    if not config_path.exists():
        return False

    with open(config_path, "r", encoding="utf-8") as f:
        data: Dict[str, Any] = json.load(f)

    globals_ref = globals()
    for raw_key, value in data.items():
        key = str(raw_key).upper()
        cast = _OVERRIDABLE.get(key)
        if cast is None:
            continue
        if value is None:
            if key == "RATING_MAX_CONCURRENCY":
                globals_ref[key] = None
            continue
        globals_ref[key] = cast(value)

    return True
