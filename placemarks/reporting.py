"""Output reporting helpers."""
from __future__ import annotations

import json
import os
import tempfile
from contextlib import contextmanager
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, TextIO

from .controller import MapState
from .models import Coordinate, ExternalPlace, Place


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def _fsync_dir(path: str) -> None:
    try:
        dir_fd = os.open(path, os.O_DIRECTORY)
    except OSError:
        return
    try:
        os.fsync(dir_fd)
    except OSError:
        pass
    finally:
        os.close(dir_fd)


@contextmanager
def atomic_writer(path: str, encoding: str = "utf-8") -> Iterator[TextIO]:
    dir_path = os.path.dirname(path) or "."
    base = os.path.basename(path)
    fd, tmp_path = tempfile.mkstemp(prefix=f".{base}.", suffix=".tmp", dir=dir_path)
    try:
        with os.fdopen(fd, "w", encoding=encoding) as f:
            yield f
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
        _fsync_dir(dir_path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def atomic_write_text(path: str, text: str) -> None:
    with atomic_writer(path) as f:
        f.write(text)


def write_json_object(path: str, payload: Dict[str, Any]) -> None:
    atomic_write_text(path, json.dumps(payload, ensure_ascii=False, indent=2) + "\n")


def _coordinate(value: Optional[Coordinate]) -> Optional[Dict[str, float]]:
    if value is None:
        return None
    return {"lat": value.lat, "lng": value.lng}


def place_row(place: Place) -> Dict[str, Any]:
    row = asdict(place)
    row["coordinate"] = _coordinate(place.coordinate)
    row["photos"] = list(place.photos)
    return row


def external_place_row(place: ExternalPlace) -> Dict[str, Any]:
    row = asdict(place)
    row["coordinate"] = _coordinate(place.coordinate)
    row["photo_references"] = list(place.photo_references)
    row["types"] = list(place.types)
    return row


def markers_payload(state: MapState) -> Dict[str, Any]:
    markers = state.markers
    selection = state.selection
    selected: Optional[Dict[str, Any]] = None
    if selection.internal is not None:
        selected = {"kind": "internal", "id": selection.internal.id}
    elif selection.external is not None:
        selected = {"kind": "external", "id": selection.external.provider_id}

    viewport = None
    if state.viewport is not None:
        viewport = {
            "center": _coordinate(state.viewport.center),
            "latitude_delta": state.viewport.latitude_delta,
            "longitude_delta": state.viewport.longitude_delta,
        }

    return {
        "generated_at": utc_now_iso(),
        "phase": state.phase.value,
        "filter": state.catalog_filter.value,
        "query": state.query.text,
        "viewport": viewport,
        "zoom": state.zoom,
        "radius_m": state.radius_m,
        "error": state.error,
        "internal_markers": [place_row(p) for p in markers.internal],
        "external_markers": [external_place_row(p) for p in markers.external],
        "search_results": [external_place_row(p) for p in state.search_results],
        "selection": selected,
    }


def write_markers_json(path: str, state: MapState) -> None:
    write_json_object(path, markers_payload(state))


def summary_lines(state: MapState) -> List[str]:
    markers = state.markers
    lines = [
        f"Filter: {state.catalog_filter.value}",
        f"Phase: {state.phase.value}",
    ]
    if state.zoom is not None and state.radius_m is not None:
        lines.append(f"Zoom: {state.zoom:.2f} (radius {state.radius_m:.0f} m)")
    lines.append(f"Catalog places: {len(state.places)}")
    lines.append(f"Internal markers: {len(markers.internal)}")
    lines.append(
        f"External markers: {len(markers.external)} (of {len(state.external_places)} fetched)"
    )
    if state.query.text:
        lines.append(f"Search results for {state.query.text!r}: {len(state.search_results)}")
    if state.error:
        lines.append(f"Error: {state.error}")
    return lines
