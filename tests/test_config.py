"""Tests for YAML configuration and environment overrides."""

import pytest
import yaml

from pulsecore.core.config import Config


ENV_VARS = [
    "PULSECORE_DB_PATH",
    "PULSECORE_EXPORT_DIR",
    "PULSECORE_WEB_PORT",
    "MQTT_ENABLED",
    "MQTT_HOST",
    "MQTT_PORT",
    "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_missing_file_gives_defaults(tmp_path):
    config = Config.from_yaml(str(tmp_path / "absent.yaml"))

    assert config.storage.db_path == "data/pulsecore.db"
    assert config.telemetry.prune_every_ticks == 180
    assert config.mqtt.enabled is False


def test_yaml_sections_are_loaded(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({
        "storage": {"db_path": "/var/lib/pulsecore/h.db"},
        "telemetry": {"start_low_power": True, "prune_every_ticks": 60},
        "probe": {"timeout_seconds": 5},
    }))

    config = Config.from_yaml(str(path))
    assert config.storage.db_path == "/var/lib/pulsecore/h.db"
    assert config.storage.export_dir == "data/exports"
    assert config.telemetry.start_low_power is True
    assert config.telemetry.prune_every_ticks == 60
    assert config.probe.timeout_seconds == 5


def test_environment_overrides_file(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({"mqtt": {"enabled": False, "host": "broker.lan"}}))
    monkeypatch.setenv("MQTT_ENABLED", "true")
    monkeypatch.setenv("MQTT_PORT", "8883")
    monkeypatch.setenv("PULSECORE_WEB_PORT", "9000")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")

    config = Config.from_yaml(str(path))
    assert config.mqtt.enabled is True
    assert config.mqtt.host == "broker.lan"
    assert config.mqtt.port == 8883
    assert config.web.port == 9000
    assert config.logging.level == "DEBUG"


def test_environment_applies_without_file(tmp_path, monkeypatch):
    monkeypatch.setenv("PULSECORE_DB_PATH", str(tmp_path / "env.db"))
    config = Config.from_yaml(str(tmp_path / "absent.yaml"))
    assert config.storage.db_path == str(tmp_path / "env.db")


def test_to_yaml_round_trip(tmp_path):
    config = Config()
    config.telemetry.max_interval_ms = 20_000
    config.mqtt.topic_prefix = "office/pc1"
    path = tmp_path / "out.yaml"
    config.to_yaml(str(path))

    loaded = Config.from_yaml(str(path))
    assert loaded.telemetry.max_interval_ms == 20_000
    assert loaded.mqtt.topic_prefix == "office/pc1"
