import asyncio

import pytest

from placemarks.http import MalformedResponse, NetworkFailure
from placemarks.models import Place
from placemarks.ratings import RatingAggregator


class FakeCatalog:
    def __init__(self, averages=None, details=None, delay=0.01):
        self.averages = averages or {}
        self.details = details or {}
        self.delay = delay
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def _track(self, value):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1
        if isinstance(value, Exception):
            raise value
        return value

    async def fetch_average_rating(self, place_id):
        self.calls.append(("average", place_id))
        return await self._track(self.averages.get(place_id, 0.0))

    async def fetch_provider_details(self, external_id):
        self.calls.append(("details", external_id))
        return await self._track(self.details.get(external_id, (0.0, ())))


PLACES = [
    Place(id="1", title="Red Square", external_id="g1"),
    Place(id="2", title="Local Cafe"),
    Place(id="3", title="Bolshoi", external_id="g3"),
]


@pytest.mark.asyncio
async def test_enrich_joins_average_and_provider_details():
    catalog = FakeCatalog(
        averages={"1": 4.5, "2": 3.0, "3": 4.0},
        details={"g1": (4.7, ("a", "b")), "g3": (4.2, ())},
    )

    enriched = await RatingAggregator(catalog).enrich(PLACES)

    assert [p.id for p in enriched] == ["1", "2", "3"]
    assert (enriched[0].average_rating, enriched[0].external_rating) == (4.5, 4.7)
    assert enriched[0].photos == ("a", "b")
    assert enriched[2].external_rating == 4.2


@pytest.mark.asyncio
async def test_place_without_external_id_skips_details_call():
    catalog = FakeCatalog(averages={"2": 3.0})

    enriched = await RatingAggregator(catalog).enrich([PLACES[1]])

    assert enriched[0].average_rating == 3.0
    assert enriched[0].external_rating == 0.0
    assert enriched[0].photos == ()
    assert catalog.calls == [("average", "2")]


@pytest.mark.asyncio
async def test_sub_fetch_failures_default_to_zero():
    catalog = FakeCatalog(
        averages={"1": NetworkFailure("down"), "3": 4.0},
        details={"g1": (4.7, ("a",)), "g3": MalformedResponse("bad")},
    )

    enriched = await RatingAggregator(catalog).enrich(PLACES)

    assert enriched[0].average_rating == 0.0
    assert enriched[0].external_rating == 4.7
    assert enriched[2].average_rating == 4.0
    assert (enriched[2].external_rating, enriched[2].photos) == (0.0, ())


@pytest.mark.asyncio
async def test_calls_run_concurrently():
    catalog = FakeCatalog()
    await RatingAggregator(catalog).enrich(PLACES)
    # 3 averages + 2 details issued together.
    assert catalog.max_in_flight == 5


@pytest.mark.asyncio
async def test_max_concurrency_limits_in_flight_calls():
    catalog = FakeCatalog()
    await RatingAggregator(catalog, max_concurrency=2).enrich(PLACES)
    assert catalog.max_in_flight <= 2
    assert len(catalog.calls) == 5


@pytest.mark.asyncio
async def test_ratings_for_and_empty_batch():
    catalog = FakeCatalog(averages={"1": 4.5}, details={"g1": (4.7, ())})
    aggregator = RatingAggregator(catalog)

    ratings = await aggregator.ratings_for([PLACES[0]])

    assert [(r.place_id, r.average, r.external) for r in ratings] == [("1", 4.5, 4.7)]
    assert await aggregator.enrich([]) == []
