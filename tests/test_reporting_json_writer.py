import json

from placemarks.controller import MapState
from placemarks.models import CatalogFilter, Coordinate, ExternalPlace, Place, SearchQuery, Viewport
from placemarks.reporting import summary_lines, write_json_object, write_markers_json
from placemarks.selection import Selection


def test_write_json_object_nested_atomic(tmp_path):
    path = tmp_path / "markers.json"
    payload = {
        "filter": "historical",
        "nested": {"list": [1, 2, 3], "word": "Moskvá Plôshchad"},
    }

    write_json_object(str(path), payload)

    text = path.read_text(encoding="utf-8")
    assert json.loads(text) == payload
    assert "á" in text

    leftovers = [p for p in tmp_path.iterdir() if p.name != "markers.json"]
    assert not leftovers


def test_write_markers_json_snapshot(tmp_path):
    place = Place(id="1", title="Red Square", coordinate=Coordinate(55.7539, 37.6208), photos=("a",))
    gum = ExternalPlace(
        provider_id="g2", name="GUM", coordinate=Coordinate(55.7547, 37.6215), types=("store",)
    )
    state = MapState(
        catalog_filter=CatalogFilter.HISTORICAL,
        query=SearchQuery(text="gum"),
        viewport=Viewport(Coordinate(55.75, 37.62), 0.05, 0.05),
        zoom=14.42,
        radius_m=2779.9,
        places=(place,),
        external_places=(gum,),
        search_results=(gum,),
        selection=Selection(external=gum),
    )
    path = tmp_path / "markers.json"

    write_markers_json(str(path), state)

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["filter"] == "historical"
    assert data["query"] == "gum"
    assert data["viewport"]["center"] == {"lat": 55.75, "lng": 37.62}
    assert data["internal_markers"][0]["coordinate"] == {"lat": 55.7539, "lng": 37.6208}
    assert data["internal_markers"][0]["photos"] == ["a"]
    assert [m["provider_id"] for m in data["external_markers"]] == ["g2"]
    assert data["external_markers"][0]["types"] == ["store"]
    assert data["selection"] == {"kind": "external", "id": "g2"}
    assert data["generated_at"]


def test_summary_lines_mention_counts():
    state = MapState(zoom=14.42, radius_m=2779.9, error="Failed to fetch places.")
    lines = summary_lines(state)
    assert "Zoom: 14.42 (radius 2780 m)" in lines
    assert "Internal markers: 0" in lines
    assert "Error: Failed to fetch places." in lines
