import pytest
import yaml

from blunav.config_manager import ConfigManager
from blunav.errors import InvalidConfig
from blunav.models import FusionMode


@pytest.fixture
def config_path(tmp_path):
    return tmp_path / "config" / "config.yaml"


def test_missing_file_is_created_with_defaults(config_path):
    manager = ConfigManager(str(config_path))
    assert config_path.exists()
    saved = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    assert saved["rssi_model"] == {"p0": -59.0, "n": 2.0}
    assert manager.get_mqtt_config()["ingest_topic"] == "blunav/readings/+"


def test_partial_file_is_merged_with_defaults(config_path):
    config_path.parent.mkdir(parents=True)
    config_path.write_text(
        "positioning:\n  fusion_mode: weighted_centroid\n  weight_exponent: 2\n",
        encoding="utf-8",
    )
    manager = ConfigManager(str(config_path))
    settings = manager.get_positioning_settings()
    assert settings.fusion_mode is FusionMode.WEIGHTED_CENTROID
    assert settings.weight_exponent == 2.0
    assert settings.trim_fraction == 0.1
    assert settings.max_condition_number == 1e4
    assert settings.expiration_seconds == 10.0


def test_broken_yaml_falls_back_to_defaults(config_path):
    config_path.parent.mkdir(parents=True)
    config_path.write_text("positioning: [unclosed", encoding="utf-8")
    manager = ConfigManager(str(config_path))
    assert manager.get_positioning_settings().fusion_mode is FusionMode.WEIGHTED_TRILATERATION
    # 原文件不被覆盖
    assert config_path.read_text(encoding="utf-8") == "positioning: [unclosed"


def test_setters_persist(config_path):
    manager = ConfigManager(str(config_path))
    manager.set_rssi_model_config(-62.5, 2.7)
    manager.set_fusion_mode("least_squares_all")
    manager.set_mqtt_config("10.0.0.2", 1884, location_topic="out/{device_id}")

    reloaded = ConfigManager(str(config_path))
    settings = reloaded.get_positioning_settings()
    assert settings.default_p0 == -62.5
    assert settings.default_n == 2.7
    assert settings.fusion_mode is FusionMode.LEAST_SQUARES_ALL
    assert reloaded.get_mqtt_config()["port"] == 1884
    assert reloaded.get_mqtt_config()["location_topic"] == "out/{device_id}"


def test_unknown_fusion_mode_is_rejected(config_path):
    manager = ConfigManager(str(config_path))
    manager.config["positioning"]["fusion_mode"] = "magic"
    with pytest.raises(InvalidConfig):
        manager.get_positioning_settings()
    with pytest.raises(ValueError):
        manager.set_fusion_mode("magic")


@pytest.mark.parametrize("section, key, value", [
    ("cache", "expiration_seconds", 0),
    ("positioning", "poll_interval", -1),
    ("positioning", "weight_exponent", -0.5),
    ("rssi_model", "n", 0),
    ("positioning", "trim_count", "many"),
    ("positioning", "trim_count", -1),
    ("positioning", "trim_fraction", 0.5),
    ("positioning", "max_condition_number", 1.0),
    ("positioning", "max_reading_age", 0),
    ("cache", "shards", 0),
    ("cache", "max_samples", 0),
])
def test_invalid_values_are_rejected(config_path, section, key, value):
    manager = ConfigManager(str(config_path))
    manager.config[section][key] = value
    with pytest.raises(InvalidConfig):
        manager.get_positioning_settings()


def test_environment_overrides_defaults(config_path, monkeypatch):
    monkeypatch.setenv("BLUNAV_FUSION_MODE", "weighted_centroid")
    monkeypatch.setenv("BLUNAV_TRIM_COUNT", "2")
    monkeypatch.setenv("BLUNAV_MQTT_PORT", "not-a-port")
    manager = ConfigManager(str(config_path))
    settings = manager.get_positioning_settings()
    assert settings.fusion_mode is FusionMode.WEIGHTED_CENTROID
    assert settings.trim_count == 2
    assert manager.get_mqtt_config()["port"] == 1883
