import json

import pytest

from pulse import config
from pulse.config import Settings, get_api_key, load_config, load_settings, save_config


def test_defaults():
    s = Settings.from_config({})
    assert s.take == 12
    assert s.store_count == 60
    assert s.reranker_top_k == 12
    assert s.tz.key == "America/New_York"


def test_clamping():
    s = Settings.from_config(
        {
            "take": 99,
            "store_count": 5,
            "reranker_max_candidates": 1000,
            "reranker_top_k": 2,
            "warmup_minutes": 90,
            "default_blend": 4,
        }
    )
    assert s.take == 20
    assert s.store_count == 20
    assert s.reranker_max_candidates == 200
    assert s.reranker_top_k == 6
    assert s.warmup_minutes == 20
    assert s.default_blend == 1.0


def test_bad_values_fall_back():
    s = Settings.from_config(
        {"take": "lots", "reranker_enabled": "no", "tier1_sources": [], "lookback_overrides": {"Calm": 4, "x": "y"}}
    )
    assert s.take == 12
    assert s.reranker_enabled is False
    assert "Reuters" in s.tier1_sources
    assert s.lookback_overrides == {"Calm": 4}


def test_unknown_timezone_uses_utc():
    assert Settings(timezone="Mars/Olympus").tz.key == "UTC"


def test_save_and_load(isolated_config):
    save_config("take", 8)
    save_config("timezone", "Europe/Berlin")
    assert json.loads(config.CONFIG_FILE.read_text()) == {"take": 8, "timezone": "Europe/Berlin"}
    s = load_settings()
    assert s.take == 8
    assert s.tz.key == "Europe/Berlin"


def test_corrupt_config_is_ignored(isolated_config):
    isolated_config.mkdir(parents=True)
    config.CONFIG_FILE.write_text("{oops")
    assert load_config() == {}


def test_api_key_precedence(monkeypatch):
    assert get_api_key() is None
    monkeypatch.setenv("OPENAI_API_KEY", "fallback")
    assert get_api_key() == "fallback"
    monkeypatch.setenv("PULSE_API_KEY", "primary")
    assert get_api_key() == "primary"


@pytest.mark.parametrize("raw,expected", [("true", True), ("ON", True), ("0", False), (False, False)])
def test_bool_parsing(raw, expected):
    assert Settings.from_config({"reranker_enabled": raw}).reranker_enabled is expected
