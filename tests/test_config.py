import json

from placemarks import config


def test_load_map_config_overrides_known_keys(tmp_path, monkeypatch):
    for key in ("REGION_DEBOUNCE_MS", "DEDUP_COORD_EPSILON_DEG", "RATING_MAX_CONCURRENCY", "OUTPUT_DIR"):
        monkeypatch.setattr(config, key, getattr(config, key))
    path = tmp_path / "map_config.json"
    path.write_text(
        json.dumps(
            {
                "region_debounce_ms": "250",
                "DEDUP_COORD_EPSILON_DEG": 0.0005,
                "rating_max_concurrency": 4,
                "not_a_setting": 1,
                "output_dir": None,
            }
        ),
        encoding="utf-8",
    )

    assert config.load_map_config(str(path)) is True

    assert config.REGION_DEBOUNCE_MS == 250
    assert config.DEDUP_COORD_EPSILON_DEG == 0.0005
    assert config.RATING_MAX_CONCURRENCY == 4
    assert config.OUTPUT_DIR == "out"
    assert not hasattr(config, "NOT_A_SETTING")


def test_load_map_config_can_clear_concurrency_limit(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "RATING_MAX_CONCURRENCY", 8)
    path = tmp_path / "map_config.json"
    path.write_text(json.dumps({"RATING_MAX_CONCURRENCY": None}), encoding="utf-8")

    config.load_map_config(str(path))

    assert config.RATING_MAX_CONCURRENCY is None


def test_load_map_config_missing_file(tmp_path):
    assert config.load_map_config(str(tmp_path / "absent.json")) is False
