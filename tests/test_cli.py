import json

import pytest

import run
from placemarks import config
from placemarks.controller import MapState
from placemarks.models import CatalogFilter


def test_parse_args_defaults():
    args = run.parse_args(["--lat", "55.75", "--lon", "37.62"])
    assert args.filter == "popular"
    assert args.lat_delta == 0.05
    assert args.query is None
    assert args.preflight is False


def test_parse_args_rejects_unknown_filter():
    with pytest.raises(SystemExit):
        run.parse_args(["--filter", "everything"])


def test_preflight_reports_missing_key(capsys):
    assert run.run_preflight(None, "http://localhost:3000/api") == 1
    out = capsys.readouterr().out
    assert "API key: MISSING" in out
    assert "Preflight: FAIL" in out


def test_preflight_passes(capsys):
    assert run.run_preflight("key", "https://catalog.example/api") == 0
    assert "Preflight: PASS" in capsys.readouterr().out


def test_main_writes_markers(tmp_path, monkeypatch, capsys):
    monkeypatch.setattr(run, "load_env", lambda *a, **k: None)
    monkeypatch.setattr(config, "load_map_config", lambda *a, **k: False)
    monkeypatch.setenv("GOOGLE_MAPS_API_KEY", "key")
    monkeypatch.setattr(
        "sys.argv",
        ["run.py", "--lat", "55.75", "--lon", "37.62", "--out", str(tmp_path)],
    )

    async def fake_cycle(args, api_key):
        assert api_key == "key"
        return MapState(catalog_filter=CatalogFilter(args.filter), zoom=14.42, radius_m=2779.9)

    monkeypatch.setattr(run, "run_cycle", fake_cycle)

    assert run.main() == 0
    data = json.loads((tmp_path / "markers.json").read_text(encoding="utf-8"))
    assert data["filter"] == "popular"
    assert "Internal markers: 0" in capsys.readouterr().out


def test_main_requires_center(monkeypatch, capsys):
    monkeypatch.setattr(run, "load_env", lambda *a, **k: None)
    monkeypatch.setattr(config, "load_map_config", lambda *a, **k: False)
    monkeypatch.setenv("GOOGLE_MAPS_API_KEY", "key")
    monkeypatch.setattr("sys.argv", ["run.py"])

    assert run.main() == 1
    assert "--lat and --lon are required" in capsys.readouterr().err


def test_catalog_base_url_from_dotenv_is_applied(tmp_path, monkeypatch, capsys):
    (tmp_path / ".env").write_text(
        "PLACEMARKS_API_BASE_URL=https://catalog.example/api\n", encoding="utf-8"
    )
    # Record the variable so it is removed again after the test.
    monkeypatch.setenv("PLACEMARKS_API_BASE_URL", "placeholder")
    monkeypatch.delenv("PLACEMARKS_API_BASE_URL")

    assert run.catalog_base_url() == config.CATALOG_BASE_URL

    run.load_env(root_dir=tmp_path)

    assert run.catalog_base_url() == "https://catalog.example/api"
    assert run.run_preflight("key", run.catalog_base_url()) == 0
    assert "Catalog base URL: OK (https://catalog.example/api)" in capsys.readouterr().out


def test_catalog_base_url_falls_back_to_map_config(monkeypatch):
    monkeypatch.delenv("PLACEMARKS_API_BASE_URL", raising=False)
    monkeypatch.setattr(config, "CATALOG_BASE_URL", "https://staging.example/api")
    assert run.catalog_base_url() == "https://staging.example/api"
