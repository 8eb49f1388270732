"""
Configuration management for PulseCore.

Loads configuration from YAML files and environment variables.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import yaml


@dataclass
class StorageConfig:
    """History database configuration."""

    db_path: str = "data/pulsecore.db"
    export_dir: str = "data/exports"
    busy_timeout_seconds: float = 5.0


@dataclass
class TelemetryConfig:
    """Telemetry loop configuration."""

    prune_every_ticks: int = 180
    recent_history_size: int = 300
    min_interval_ms: int = 100
    max_interval_ms: int = 10_000
    start_low_power: bool = False


@dataclass
class ProbeConfig:
    """Network diagnostics configuration."""

    timeout_seconds: float = 30.0
    ping_command: str = "ping"


@dataclass
class WebConfig:
    """Local HTTP command surface configuration."""

    host: str = "127.0.0.1"
    port: int = 8765
    stream_queue_size: int = 100


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file_path: Optional[str] = None
    max_file_size_mb: int = 10
    backup_count: int = 5


@dataclass
class MQTTConfig:
    """MQTT forwarding configuration."""

    enabled: bool = False
    port: int = 1883
    host: str = "localhost"
    topic_prefix: str = "pulsecore"
    reconnect_min_seconds: float = 5.0
    reconnect_max_seconds: float = 300.0


@dataclass
class Config:
    """Main configuration container."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)
    probe: ProbeConfig = field(default_factory=ProbeConfig)
    web: WebConfig = field(default_factory=WebConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    mqtt: MQTTConfig = field(default_factory=MQTTConfig)

    @classmethod
    def from_yaml(cls, path: str) -> "Config":
        """Load configuration from YAML file."""
        config_path = Path(path)
        if not config_path.exists():
            config = cls()
            config._apply_env_overrides()
            return config

        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}

        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: dict) -> "Config":
        """Create config from dictionary."""
        config = cls()

        if "storage" in data:
            config.storage = StorageConfig(**data["storage"])

        if "telemetry" in data:
            config.telemetry = TelemetryConfig(**data["telemetry"])

        if "probe" in data:
            config.probe = ProbeConfig(**data["probe"])

        if "web" in data:
            config.web = WebConfig(**data["web"])

        if "logging" in data:
            config.logging = LoggingConfig(**data["logging"])

        if "mqtt" in data:
            config.mqtt = MQTTConfig(**data["mqtt"])

        # Override with environment variables
        config._apply_env_overrides()

        return config

    def _apply_env_overrides(self):
        """Apply environment variable overrides."""
        # Storage
        if os.getenv("PULSECORE_DB_PATH"):
            self.storage.db_path = os.getenv("PULSECORE_DB_PATH")
        if os.getenv("PULSECORE_EXPORT_DIR"):
            self.storage.export_dir = os.getenv("PULSECORE_EXPORT_DIR")

        # Web
        if os.getenv("PULSECORE_WEB_PORT"):
            self.web.port = int(os.getenv("PULSECORE_WEB_PORT"))

        # MQTT settings
        if os.getenv("MQTT_ENABLED"):
            self.mqtt.enabled = os.getenv("MQTT_ENABLED").lower() == "true"
        if os.getenv("MQTT_HOST"):
            self.mqtt.host = os.getenv("MQTT_HOST")
        if os.getenv("MQTT_PORT"):
            self.mqtt.port = int(os.getenv("MQTT_PORT"))

        # Logging
        if os.getenv("LOG_LEVEL"):
            self.logging.level = os.getenv("LOG_LEVEL")

    def to_yaml(self, path: str):
        """Save configuration to YAML file."""
        data = {
            "storage": {
                "db_path": self.storage.db_path,
                "export_dir": self.storage.export_dir,
                "busy_timeout_seconds": self.storage.busy_timeout_seconds,
            },
            "telemetry": {
                "prune_every_ticks": self.telemetry.prune_every_ticks,
                "recent_history_size": self.telemetry.recent_history_size,
                "min_interval_ms": self.telemetry.min_interval_ms,
                "max_interval_ms": self.telemetry.max_interval_ms,
                "start_low_power": self.telemetry.start_low_power,
            },
            "probe": {
                "timeout_seconds": self.probe.timeout_seconds,
                "ping_command": self.probe.ping_command,
            },
            "web": {
                "host": self.web.host,
                "port": self.web.port,
            },
            "mqtt": {
                "enabled": self.mqtt.enabled,
                "host": self.mqtt.host,
                "port": self.mqtt.port,
                "topic_prefix": self.mqtt.topic_prefix,
                "reconnect_min_seconds": self.mqtt.reconnect_min_seconds,
                "reconnect_max_seconds": self.mqtt.reconnect_max_seconds,
            },
            "logging": {
                "level": self.logging.level,
                "file_path": self.logging.file_path,
            },
        }

        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False)


def get_default_config_path() -> str:
    """Get the default configuration file path."""
    # Check common locations
    candidates = [
        Path("config/config.yaml"),
        Path("config.yaml"),
        Path.home() / ".pulsecore" / "config.yaml",
    ]

    for path in candidates:
        if path.exists():
            return str(path)

    # Return the first candidate as default
    return str(candidates[0])
