"""Viewport controller: owns map state and orchestrates debounced fetches."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

from . import config
from .catalog_client import LISTING_FILTERS
from .debounce import CATALOG_CHANNEL, REGION_CHANNEL, SEARCH_CHANNEL, Debouncer, RequestSequencer
from .dedup import merge
from .geo import search_radius_meters, zoom_level
from .http import NetworkFailure, RequestMetrics
from .models import (
    CatalogFilter,
    CatalogResult,
    Coordinate,
    ExternalPlace,
    Place,
    SearchQuery,
    SortBy,
    SortOrder,
    Viewport,
)
from .ratings import RatingAggregator
from .selection import (
    NO_SELECTION,
    BackgroundPressed,
    MarkerKind,
    MarkerPressed,
    Selection,
    SelectionEvent,
    SelectionStateMachine,
)

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    IDLE = "idle"
    FETCHING_INTERNAL = "fetching_internal"
    FETCHING_EXTERNAL = "fetching_external"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True)
class MarkerSet:
    internal: Tuple[Place, ...] = ()
    external: Tuple[ExternalPlace, ...] = ()

    def __len__(self) -> int:
        return len(self.internal) + len(self.external)


@dataclass(frozen=True)
class MapState:
    phase: Phase = Phase.IDLE
    catalog_filter: CatalogFilter = CatalogFilter.POPULAR
    query: SearchQuery = field(default_factory=SearchQuery)
    viewport: Optional[Viewport] = None
    zoom: Optional[float] = None
    radius_m: Optional[float] = None
    places: Tuple[Place, ...] = ()
    # Raw provider results for the current viewport; deduplicated at render time.
    external_places: Tuple[ExternalPlace, ...] = ()
    search_results: Tuple[ExternalPlace, ...] = ()
    is_searching: bool = False
    focus: Optional[ExternalPlace] = None
    selection: Selection = NO_SELECTION
    error: Optional[str] = None
    notice: Optional[str] = None

    @property
    def markers(self) -> MarkerSet:
        return visible_markers(self)


def should_fetch_external(zoom: float, radius_m: float) -> bool:
    return zoom > config.EXTERNAL_FETCH_MIN_ZOOM and radius_m <= config.PROVIDER_MAX_RADIUS_M


def visible_markers(state: MapState) -> MarkerSet:
    zoom = state.zoom if state.zoom is not None else config.INITIAL_ZOOM

    if zoom > config.INTERNAL_ALL_MARKERS_ZOOM:
        candidates = state.places
    else:
        candidates = state.places[: config.INTERNAL_MARKER_CAP]
    internal = tuple(p for p in candidates if p.coordinate is not None)

    external: Tuple[ExternalPlace, ...] = ()
    if zoom >= config.EXTERNAL_MARKER_MIN_ZOOM:
        capped = state.external_places[: config.EXTERNAL_MARKER_CAP]
        external = tuple(merge(state.places, capped))
    return MarkerSet(internal=internal, external=external)


Listener = Callable[[MapState], None]


class ViewportController:
    def __init__(
        self,
        catalog: Any,
        provider: Any,
        aggregator: Optional[RatingAggregator] = None,
        viewport_width_px: Optional[float] = None,
        region_debounce_ms: Optional[float] = None,
        search_debounce_ms: Optional[float] = None,
        metrics: Optional[RequestMetrics] = None,
    ) -> None:
        self.catalog = catalog
        self.provider = provider
        self.aggregator = aggregator or RatingAggregator(catalog)
        self.viewport_width_px = viewport_width_px or config.DEFAULT_VIEWPORT_WIDTH_PX
        self.region_debounce_ms = (
            config.REGION_DEBOUNCE_MS if region_debounce_ms is None else region_debounce_ms
        )
        self.search_debounce_ms = (
            config.SEARCH_DEBOUNCE_MS if search_debounce_ms is None else search_debounce_ms
        )
        self.metrics = metrics
        self.user_location: Optional[Coordinate] = None
        self._state = MapState()
        self._debouncer = Debouncer()
        self._sequencer = RequestSequencer()
        self._selection = SelectionStateMachine()
        self._last_good: Optional[Tuple[Place, ...]] = None
        self._listeners: List[Listener] = []

    # --- state access ---

    @property
    def state(self) -> MapState:
        return self._state

    @property
    def markers(self) -> MarkerSet:
        return self._state.markers

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, state: MapState, reconcile: bool = False) -> MapState:
        if reconcile:
            selection = self._selection.reconcile(*_shown_ids(state))
            state = replace(state, selection=selection)
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Map state listener failed")
        return state

    def _is_stale(self, channel: str, seq: int, kind: str) -> bool:
        if self._sequencer.is_latest(channel, seq):
            return False
        logger.debug(
            "Discarding stale %s response #%s (latest #%s)",
            channel,
            seq,
            self._sequencer.latest(channel),
        )
        if self.metrics is not None:
            self.metrics.inc_stale_drop(kind)
        return True

    # --- filter / mode ---

    async def set_filter(self, mode: CatalogFilter) -> MapState:
        mode = CatalogFilter(mode)
        self._debouncer.cancel_all()
        self._publish(replace(self._state, catalog_filter=mode))
        return await self._refresh_catalog()

    async def _refresh_catalog(self) -> MapState:
        seq = self._sequencer.issue(CATALOG_CHANNEL)
        mode = self._state.catalog_filter
        self._publish(replace(self._state, phase=Phase.FETCHING_INTERNAL, error=None))

        result = await self._fetch_catalog(mode)
        if self._is_stale(CATALOG_CHANNEL, seq, "catalog"):
            return self._state

        if not result.ok:
            logger.warning("Catalog fetch for %s failed: %s", mode.value, result.error)
            self._publish(
                replace(self._state, phase=Phase.ERROR, error=result.error, notice=result.error)
            )
            if self._last_good is not None:
                self._publish(
                    replace(self._state, phase=Phase.READY, places=self._last_good, error=None),
                    reconcile=True,
                )
            return self._state

        enriched = tuple(await self.aggregator.enrich(result.places))
        if self._is_stale(CATALOG_CHANNEL, seq, "catalog"):
            return self._state

        self._last_good = enriched
        logger.info("Loaded %s catalog places for %s", len(enriched), mode.value)
        return self._publish(
            replace(self._state, phase=Phase.READY, places=enriched, error=None),
            reconcile=True,
        )

    async def _fetch_catalog(self, mode: CatalogFilter) -> CatalogResult:
        if mode in LISTING_FILTERS:
            return await self.catalog.fetch_by_filter(mode)
        if mode == CatalogFilter.NEARBY:
            center = self.user_location
            if center is None and self._state.viewport is not None:
                center = self._state.viewport.center
            if center is None:
                return CatalogResult(error="Location is not available yet.")
            return await self.catalog.fetch_nearby(center, config.NEARBY_CATALOG_RADIUS_M)
        query = self._state.query
        return await self.catalog.fetch_by_text_query(
            query.text, query.min_rating, query.sort_by, query.order
        )

    def _schedule_text_catalog_refresh(self) -> None:
        if self._state.catalog_filter != CatalogFilter.TEXT:
            return
        self._debouncer.schedule(CATALOG_CHANNEL, self.search_debounce_ms, self._refresh_catalog)

    # --- viewport ---

    def on_region_change(self, viewport: Viewport, viewport_width_px: Optional[float] = None) -> None:
        width = viewport_width_px or self.viewport_width_px
        if not viewport.is_valid() or width <= 0:
            logger.debug("Ignoring degenerate viewport %r (width=%s)", viewport, width)
            return
        zoom = zoom_level(width, viewport.longitude_delta)
        radius = search_radius_meters(viewport.latitude_delta)
        self._publish(replace(self._state, viewport=viewport, zoom=zoom, radius_m=radius))

        async def fire() -> None:
            await self._refresh_external(viewport, zoom, radius)

        self._debouncer.schedule(REGION_CHANNEL, self.region_debounce_ms, fire)

    async def _refresh_external(self, viewport: Viewport, zoom: float, radius_m: float) -> None:
        seq = self._sequencer.issue(REGION_CHANNEL)
        if not should_fetch_external(zoom, radius_m):
            logger.debug("Skipping provider nearby search (zoom=%.2f, radius=%.0fm)", zoom, radius_m)
            state = replace(self._state, external_places=())
            # A superseded in-flight fetch will be dropped as stale, so leave its phase here.
            if state.phase == Phase.FETCHING_EXTERNAL:
                state = replace(state, phase=Phase.READY)
            self._publish(state, reconcile=True)
            return

        self._publish(replace(self._state, phase=Phase.FETCHING_EXTERNAL))
        results = await self.provider.search_nearby(viewport.center, radius_m)
        if self._is_stale(REGION_CHANNEL, seq, "provider"):
            return

        survivors = merge(self._state.places, results)
        logger.info(
            "Provider nearby search: %s results, %s after dedup",
            len(results),
            len(survivors),
        )
        self._publish(
            replace(self._state, phase=Phase.READY, external_places=tuple(results)),
            reconcile=True,
        )

    def set_user_location(self, location: Optional[Coordinate]) -> None:
        self.user_location = location

    # --- free-text search ---

    def set_query(self, text: str) -> None:
        query = replace(self._state.query, text=text or "")
        self._publish(replace(self._state, query=query))
        self._schedule_text_catalog_refresh()
        if query.is_empty:
            self._debouncer.cancel(SEARCH_CHANNEL)
            self._sequencer.issue(SEARCH_CHANNEL)
            self._publish(
                replace(self._state, search_results=(), is_searching=False), reconcile=True
            )
            return

        async def fire() -> None:
            await self._run_text_search(query.text)

        self._debouncer.schedule(SEARCH_CHANNEL, self.search_debounce_ms, fire)

    def set_min_rating(self, value: Optional[float]) -> None:
        if value is not None and not (config.RATING_MIN_VALUE <= value <= config.RATING_MAX_VALUE):
            raise ValueError(
                f"Minimum rating must be between {config.RATING_MIN_VALUE} and {config.RATING_MAX_VALUE}"
            )
        self._publish(replace(self._state, query=replace(self._state.query, min_rating=value)))
        self._schedule_text_catalog_refresh()

    def set_sort(self, sort_by: SortBy, order: SortOrder = SortOrder.DESC) -> None:
        query = replace(self._state.query, sort_by=SortBy(sort_by), order=SortOrder(order))
        self._publish(replace(self._state, query=query))
        self._schedule_text_catalog_refresh()

    async def _run_text_search(self, text: str) -> None:
        seq = self._sequencer.issue(SEARCH_CHANNEL)
        self._publish(replace(self._state, is_searching=True))
        results = await self.provider.search_by_text(text)
        if self._is_stale(SEARCH_CHANNEL, seq, "provider"):
            return
        if not results:
            logger.info("No provider results for %r", text)
        self._publish(
            replace(self._state, search_results=tuple(results), is_searching=False),
            reconcile=True,
        )

    def select_search_result(self, place: ExternalPlace) -> MapState:
        self._debouncer.cancel(SEARCH_CHANNEL)
        self._sequencer.issue(SEARCH_CHANNEL)
        selection = self._selection.handle(MarkerPressed(MarkerKind.EXTERNAL, place))
        return self._publish(
            replace(
                self._state,
                query=replace(self._state.query, text=""),
                search_results=(),
                is_searching=False,
                focus=place,
                selection=selection,
            )
        )

    # --- selection ---

    def press(self, event: SelectionEvent) -> MapState:
        selection = self._selection.handle(event)
        return self._publish(replace(self._state, selection=selection))

    def press_marker(self, kind: MarkerKind, place: Any) -> MapState:
        return self.press(MarkerPressed(MarkerKind(kind), place))

    def press_background(self) -> MapState:
        return self.press(BackgroundPressed())

    def background(self) -> MapState:
        """Owning screen went to the background."""
        self._debouncer.cancel_all()
        selection = self._selection.clear()
        return self._publish(replace(self._state, selection=selection))

    # --- ratings ---

    async def rate_place(self, place_id: str, value: int) -> bool:
        try:
            await self.catalog.submit_rating(place_id, value)
        except NetworkFailure as exc:
            logger.warning("Rating submission for %s failed: %s", place_id, exc)
            self._publish(replace(self._state, notice="Failed to submit rating."))
            return False

        places = tuple(
            replace(p, user_rating=value) if p.id == place_id else p for p in self._state.places
        )
        if self._last_good is not None:
            self._last_good = tuple(
                replace(p, user_rating=value) if p.id == place_id else p for p in self._last_good
            )
        self._publish(replace(self._state, places=places))
        selected = self._selection.state.internal
        if selected is not None and selected.id == place_id:
            self.press_marker(MarkerKind.INTERNAL, replace(selected, user_rating=value))
        return True

    def dismiss_notice(self) -> MapState:
        return self._publish(replace(self._state, notice=None))

    # --- lifecycle ---

    async def settle(self) -> MapState:
        await self._debouncer.wait()
        return self._state

    def close(self) -> None:
        self._debouncer.cancel_all()
        self._listeners.clear()


def _shown_ids(state: MapState) -> Tuple[set, set]:
    internal_ids = {p.id for p in state.places}
    external_ids = {p.provider_id for p in merge(state.places, state.external_places)}
    external_ids.update(p.provider_id for p in state.search_results)
    if state.focus is not None:
        external_ids.add(state.focus.provider_id)
    return internal_ids, external_ids
