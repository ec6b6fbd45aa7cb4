"""
Configuration management for HASS Satellite.

YAML configuration with .env support, dot-notation access and environment
variable overrides.
"""

import os
from pathlib import Path
import socket
from typing import Any, Optional

from dotenv import dotenv_values
import yaml

ENV_PREFIX = "HASS_SATELLITE_"

# Lazy one-time .env loading flag
_ENV_LOADED = False


def _load_env_once() -> None:
    global _ENV_LOADED
    if _ENV_LOADED:
        return
    # Cascading precedence: system environment, then project .env, then
    # workspace .env. Values never overwrite keys already in os.environ.
    project_root = Path(__file__).parent.parent.parent
    workspace_env = project_root.parent / ".env"
    project_env = project_root / ".env"

    workspace_vals = dotenv_values(workspace_env) if workspace_env.exists() else {}
    project_vals = dotenv_values(project_env) if project_env.exists() else {}

    merged = {}
    merged.update({k: v for k, v in workspace_vals.items() if v is not None})
    merged.update({k: v for k, v in project_vals.items() if v is not None})

    for k, v in merged.items():
        if k and v is not None and k not in os.environ:
            os.environ[k] = str(v)
    _ENV_LOADED = True


def _default_device_name() -> str:
    return socket.gethostname().split(".")[0] or "hass_satellite"


class Config:
    """Configuration manager with validation and defaults."""

    config_path: Optional[str] = None

    def __init__(self, config_data: dict):
        """Initialize configuration from dictionary."""
        _load_env_once()
        self._data = config_data or {}
        # Instance-specific path; may be set by from_file or from_defaults
        self.config_path = None

    @classmethod
    def from_file(cls, config_path: str) -> "Config":
        """Load configuration from YAML file."""
        _load_env_once()
        path = Path(config_path)

        if not path.exists():
            # Try relative to project root
            project_root = Path(__file__).parent.parent.parent
            path = project_root / config_path

            if not path.exists():
                raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        instance = cls(data)
        instance.config_path = str(path)
        return instance

    @classmethod
    def from_defaults(cls) -> "Config":
        """Create configuration with default values."""
        _load_env_once()
        defaults = {
            "app": {
                "device_name": _default_device_name(),
                "manufacturer": "HASS Satellite",
                "model": "hass-satellite",
                "unique_id_prefix": "hass_satellite",
            },
            "mqtt": {
                "enabled": True,
                "broker": "localhost",
                "port": 1883,
                "client_id": "hass_satellite",
                "discovery_prefix": "homeassistant",
                "security": "none",
            },
            "commands": {
                "storage_file": "config/commands.json",
                "state_update_interval_seconds": 10,
            },
            "service": {
                "first_run_delay_seconds": 1,
                "cycle_interval_seconds": 30,
                "announce_interval_seconds": 30,
                "connect_poll_seconds": 0.25,
            },
            "external_tools": {
                "custom_executor": "",
                "browser": "",
            },
        }

        instance = cls(defaults)
        instance.config_path = "defaults"
        return instance

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation."""
        keys = key.split(".")
        value = self._data

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        # Environment variable override
        env_key = f"{ENV_PREFIX}{key.upper().replace('.', '_')}"
        env_value = os.getenv(env_key)
        if env_value is not None:
            # Basic type conversion
            if isinstance(value, bool):
                return env_value.lower() in ("true", "1", "yes", "on")
            elif isinstance(value, int):
                try:
                    return int(env_value)
                except ValueError:
                    pass
            elif isinstance(value, float):
                try:
                    return float(env_value)
                except ValueError:
                    pass
            return env_value

        # Handle ${VARIABLE} expansion in string values
        if isinstance(value, str) and value.startswith("${") and value.endswith("}"):
            expanded_value = os.getenv(value[2:-1])
            if expanded_value is not None:
                return expanded_value

        return value

    @property
    def device_name(self) -> str:
        """Device name used in topics and the Home Assistant device."""
        return str(self.get("app.device_name") or _default_device_name())

    @property
    def mqtt_enabled(self) -> bool:
        return self.get("mqtt.enabled", True)

    @property
    def mqtt_broker(self) -> Optional[str]:
        """Get MQTT broker (None when not configured)."""
        primary = self.get("mqtt.broker_url", None)
        legacy = self.get("mqtt.broker", None)
        val = primary or legacy
        # Unexpanded ${VAR} placeholders count as missing
        if isinstance(val, str) and val.startswith("${"):
            val = legacy if legacy and not str(legacy).startswith("${") else None
        return str(val) if val else None

    @property
    def mqtt_port(self) -> int:
        primary = self.get("mqtt.broker_port", None)
        legacy = self.get("mqtt.port", None)
        val = primary if primary is not None else legacy
        if val is None:
            return 1883
        try:
            return int(val)
        except (TypeError, ValueError):
            return 1883

    @property
    def mqtt_username(self) -> Optional[str]:
        return self.get("mqtt.auth.username")

    @property
    def mqtt_password(self) -> Optional[str]:
        return self.get("mqtt.auth.password")

    @property
    def mqtt_client_id(self) -> str:
        return self.get("mqtt.client_id", "hass_satellite")

    @property
    def discovery_prefix(self) -> str:
        return self.get("mqtt.discovery_prefix", "homeassistant")

    @property
    def commands_config_topic(self) -> str:
        """Topic on which a full desired command list can be pushed."""
        return self.get(
            "mqtt.commands_config_topic",
            f"hass_satellite/{self.device_name}/commands/set",
        )

    @property
    def commands_file(self) -> str:
        return self.get("commands.storage_file", "config/commands.json")

    @property
    def state_update_interval_seconds(self) -> float:
        return float(self.get("commands.state_update_interval_seconds", 10))

    # Service (engine) settings
    @property
    def first_run_delay_seconds(self) -> float:
        return float(self.get("service.first_run_delay_seconds", 1))

    @property
    def cycle_interval_seconds(self) -> float:
        return float(self.get("service.cycle_interval_seconds", 30))

    @property
    def announce_interval_seconds(self) -> float:
        return float(self.get("service.announce_interval_seconds", 30))

    @property
    def connect_poll_seconds(self) -> float:
        return float(self.get("service.connect_poll_seconds", 0.25))

    def get_mqtt_config(self) -> dict:
        """Get complete MQTT connection settings for MqttManager."""
        # Programmatic configs must name a broker explicitly rather than
        # silently falling back to localhost.
        mqtt_section = (
            self._data.get("mqtt", {}) if isinstance(self._data, dict) else {}
        )
        if self.config_path is None and not (
            mqtt_section.get("broker_url") or mqtt_section.get("broker")
        ):
            raise ValueError("broker_url is required")

        cfg = {
            "broker_url": self.mqtt_broker,
            "broker_port": self.mqtt_port,
            "client_id": self.mqtt_client_id,
            "security": self.get("mqtt.security", "none"),
            "keepalive": int(self.get("mqtt.keepalive", 60)),
        }
        tls_cfg = self.get("mqtt.tls")
        if isinstance(tls_cfg, dict):
            cfg["tls"] = tls_cfg if tls_cfg else {"verify": False}
        elif isinstance(tls_cfg, bool) and tls_cfg:
            cfg["tls"] = {"verify": False}
        else:
            env_tls = os.getenv("MQTT_USE_TLS")
            if env_tls is not None and env_tls.lower() in ("true", "1", "yes", "on"):
                cfg["tls"] = {"verify": False}
        if cfg["security"] == "username" and self.mqtt_username and self.mqtt_password:
            cfg["auth"] = {
                "username": self.mqtt_username,
                "password": self.mqtt_password,
            }
        return cfg

    def validate(self) -> list[str]:
        """Return a list of human readable configuration problems."""
        problems: list[str] = []
        if not self.mqtt_broker:
            problems.append("mqtt.broker is not set")
        if not 0 < self.mqtt_port < 65536:
            problems.append(f"mqtt.port out of range: {self.mqtt_port}")
        if self.get("mqtt.security", "none") == "username" and not (
            self.mqtt_username and self.mqtt_password
        ):
            problems.append("mqtt.security=username requires mqtt.auth credentials")
        for key in (
            "service.first_run_delay_seconds",
            "service.cycle_interval_seconds",
            "service.announce_interval_seconds",
            "service.connect_poll_seconds",
        ):
            try:
                if float(self.get(key, 1)) <= 0:
                    problems.append(f"{key} must be positive")
            except (TypeError, ValueError):
                problems.append(f"{key} must be a number")
        return problems
