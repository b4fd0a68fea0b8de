import math

import pytest

from placemarks.geo import haversine_km, parse_coordinates, search_radius_meters, zoom_level
from placemarks.models import Coordinate


def test_zoom_level_whole_world_viewport_is_low():
    # 360 * (360 / 256 / 180) = 2.8125 -> log2 ~ 1.49, +1
    zoom = zoom_level(360, 180)
    assert zoom == pytest.approx(2.49, abs=0.01)
    assert zoom < 12


def test_zoom_level_city_viewport_is_high():
    zoom = zoom_level(390, 0.05)
    assert zoom == pytest.approx(14.42, abs=0.01)
    assert zoom > 12


def test_zoom_level_decreases_as_longitude_delta_grows():
    deltas = [0.001, 0.01, 0.05, 0.5, 5.0, 90.0, 180.0]
    zooms = [zoom_level(390, d) for d in deltas]
    assert zooms == sorted(zooms, reverse=True)
    assert len(set(zooms)) == len(zooms)


def test_search_radius_is_half_the_latitude_span():
    assert search_radius_meters(0.05) == pytest.approx(2779.87, abs=0.1)
    assert search_radius_meters(0.2) > 10000


def test_haversine_km_known_distance():
    red_square = Coordinate(55.7539, 37.6208)
    bolshoi = Coordinate(55.7601, 37.6186)
    assert haversine_km(red_square, bolshoi) == pytest.approx(0.70, abs=0.02)
    assert haversine_km(red_square, red_square) == 0


def test_parse_coordinates_variants():
    assert parse_coordinates("55.7539,37.6208") == Coordinate(55.7539, 37.6208)
    assert parse_coordinates(" 1.5 , -2.25 ") == Coordinate(1.5, -2.25)
    assert parse_coordinates([10, 20]) == Coordinate(10.0, 20.0)
    assert parse_coordinates(("1", "2")) == Coordinate(1.0, 2.0)


@pytest.mark.parametrize(
    "value",
    [None, "", "55.7", "a,b", "1,2,3", "91,0", "0,181", (math.nan, 1.0), {"lat": 1, "lng": 2}],
)
def test_parse_coordinates_rejects_bad_input(value):
    assert parse_coordinates(value) is None
