"""CLI entrypoint."""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv as _load_dotenv

from placemarks import config
from placemarks.catalog_client import InternalCatalogClient
from placemarks.controller import MapState, ViewportController
from placemarks.http import HttpClient, RequestBudget, RequestMetrics
from placemarks.models import CatalogFilter, Coordinate, Viewport
from placemarks.places_client import ExternalPlaceClient
from placemarks.ratings import RatingAggregator
from placemarks.reporting import ensure_dir, summary_lines, write_markers_json

logger = logging.getLogger(__name__)


def _repo_root() -> Path:
    return Path(__file__).resolve().parent


def load_env(path: str = ".env", root_dir: Optional[Path] = None) -> None:
    """Optionally load a repo-root .env file without overriding real env vars."""
    root = Path(root_dir) if root_dir else _repo_root()
    env_path = (root / path).resolve()
    if not env_path.exists():
        return
    _load_dotenv(dotenv_path=env_path, override=False)


def catalog_base_url() -> str:
    """Catalog API root: the environment wins over map_config.json and the default."""
    return (os.environ.get("PLACEMARKS_API_BASE_URL") or "").strip() or config.CATALOG_BASE_URL


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fetch map markers for one viewport")
    parser.add_argument("--preflight", action="store_true", help="Run offline checks only")
    parser.add_argument("--lat", type=float, default=None, help="Viewport center latitude")
    parser.add_argument("--lon", type=float, default=None, help="Viewport center longitude")
    parser.add_argument("--lat-delta", type=float, default=0.05)
    parser.add_argument("--lon-delta", type=float, default=0.05)
    parser.add_argument(
        "--width",
        type=float,
        default=None,
        help=f"Viewport width in px (default: {config.DEFAULT_VIEWPORT_WIDTH_PX})",
    )
    parser.add_argument(
        "--filter",
        choices=[f.value for f in CatalogFilter],
        default=CatalogFilter.POPULAR.value,
    )
    parser.add_argument("--query", type=str, default=None, help="Free-text provider search")
    parser.add_argument("--min-rating", type=float, default=None)
    parser.add_argument("--user-id", type=str, default=None)
    parser.add_argument("--max-catalog", type=int, default=None)
    parser.add_argument("--max-provider", type=int, default=None)
    parser.add_argument("--out", type=str, default=None)
    return parser.parse_args(argv)


def run_preflight(api_key: Optional[str], base_url: str) -> int:
    ok = True

    if api_key:
        print("API key: OK")
    else:
        print("API key: MISSING")
        ok = False

    if base_url.startswith(("http://", "https://")):
        print(f"Catalog base URL: OK ({base_url})")
    else:
        print(f"Catalog base URL: FAIL ({base_url!r})")
        ok = False

    print(
        "Request caps: max_catalog={max_catalog}, max_provider={max_provider}".format(
            max_catalog=config.MAX_CATALOG_REQUESTS_PER_SESSION,
            max_provider=config.MAX_PROVIDER_REQUESTS_PER_SESSION,
        )
    )
    print(
        "Thresholds: fetch_zoom>{zoom}, max_radius={radius}m, debounce={debounce}ms".format(
            zoom=config.EXTERNAL_FETCH_MIN_ZOOM,
            radius=int(config.PROVIDER_MAX_RADIUS_M),
            debounce=config.REGION_DEBOUNCE_MS,
        )
    )

    print("Preflight: PASS" if ok else "Preflight: FAIL")
    return 0 if ok else 1


async def run_cycle(args: argparse.Namespace, api_key: str) -> MapState:
    metrics = RequestMetrics()
    budget = RequestBudget(
        max_catalog=args.max_catalog or config.MAX_CATALOG_REQUESTS_PER_SESSION,
        max_provider=args.max_provider or config.MAX_PROVIDER_REQUESTS_PER_SESSION,
        metrics=metrics,
    )
    http_client = HttpClient(
        timeout=config.HTTP_TIMEOUT_SECONDS,
        retry_max=config.HTTP_RETRY_MAX,
        backoff_base=config.HTTP_BACKOFF_BASE,
        backoff_max=config.HTTP_BACKOFF_MAX,
    )
    catalog = InternalCatalogClient(
        http_client,
        base_url=catalog_base_url(),
        user_id=args.user_id or os.environ.get("PLACEMARKS_USER_ID"),
        budget=budget,
        metrics=metrics,
    )
    provider = ExternalPlaceClient(http_client, api_key, budget=budget, metrics=metrics)
    controller = ViewportController(
        catalog,
        provider,
        aggregator=RatingAggregator(catalog),
        viewport_width_px=args.width,
        metrics=metrics,
    )

    center = Coordinate(args.lat, args.lon)
    controller.set_user_location(center)
    try:
        if args.min_rating is not None:
            controller.set_min_rating(args.min_rating)
        # Changing the filter cancels pending timers, so it goes first.
        await controller.set_filter(CatalogFilter(args.filter))
        controller.on_region_change(Viewport(center, args.lat_delta, args.lon_delta))
        if args.query:
            controller.set_query(args.query)
        state = await controller.settle()
    finally:
        controller.close()
        http_client.close()

    logger.info(
        "Requests: catalog=%s provider=%s failures=%s/%s stale=%s/%s",
        metrics.catalog_count,
        metrics.provider_count,
        metrics.failures_catalog,
        metrics.failures_provider,
        metrics.stale_drops_catalog,
        metrics.stale_drops_provider,
    )
    return state


def main() -> int:
    load_env()
    config.load_map_config()
    args = parse_args()
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    api_key = os.environ.get("GOOGLE_MAPS_API_KEY")
    if args.preflight:
        return run_preflight(api_key, catalog_base_url())

    if not api_key:
        print("Missing GOOGLE_MAPS_API_KEY in environment", file=sys.stderr)
        return 1
    if args.lat is None or args.lon is None:
        print("--lat and --lon are required", file=sys.stderr)
        return 1

    try:
        state = asyncio.run(run_cycle(args, api_key))
    except ValueError as exc:
        print(f"Invalid input: {exc}", file=sys.stderr)
        return 1

    for line in summary_lines(state):
        print(line)

    out_dir = args.out or config.OUTPUT_DIR
    ensure_dir(out_dir)
    out_path = os.path.join(out_dir, "markers.json")
    write_markers_json(out_path, state)
    print(f"Markers: {out_path}")
    return 0 if state.error is None else 2


if __name__ == "__main__":
    raise SystemExit(main())
