"""Data model shared by the engine, the MQTT gateway and the command store."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class CommandType(str, Enum):
    """Supported command kinds."""

    SHUTDOWN = "shutdown"
    RESTART = "restart"
    HIBERNATE = "hibernate"
    SLEEP = "sleep"
    LOG_OFF = "log_off"
    LOCK = "lock"
    CUSTOM = "custom"
    SHELL_SCRIPT = "shell_script"
    MEDIA_PLAY_PAUSE = "media_play_pause"
    MEDIA_NEXT = "media_next"
    MEDIA_PREVIOUS = "media_previous"
    MEDIA_VOLUME_UP = "media_volume_up"
    MEDIA_VOLUME_DOWN = "media_volume_down"
    MEDIA_MUTE = "media_mute"
    KEY = "key"
    PUBLISH_ALL_SENSORS = "publish_all_sensors"
    LAUNCH_URL = "launch_url"
    CUSTOM_EXECUTOR = "custom_executor"


class CommandEntityType(str, Enum):
    """Home Assistant component a command is announced as."""

    BUTTON = "button"
    SWITCH = "switch"


class MqttStatus(Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CONFIG_MISSING = "config_missing"
    DISCONNECTED = "disconnected"
    ERROR = "error"


@dataclass
class ConfiguredCommand:
    """A command as it is configured and persisted.

    Fields:
        type: command kind
        name: human readable name, also the base of the MQTT object id
        id: opaque unique identifier (None means "generate one")
        entity_type: button | switch
        command: type specific text (shell command, script path, URL,
            custom executor argument)
        key_code: key name for ``key`` commands
    """

    type: CommandType
    name: str
    id: Optional[str] = None
    entity_type: CommandEntityType = CommandEntityType.BUTTON
    command: str = ""
    key_code: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConfiguredCommand:
        """Build from a plain dict (JSON/YAML), raising ValueError when malformed."""
        if not isinstance(data, dict):
            raise ValueError(f"command entry must be a mapping, got {type(data).__name__}")

        name = str(data.get("name") or "").strip()
        if not name:
            raise ValueError("command entry is missing a name")

        raw_type = data.get("type")
        try:
            command_type = CommandType(raw_type)
        except ValueError:
            raise ValueError(f"unknown command type: {raw_type!r}") from None

        raw_entity = data.get("entity_type") or CommandEntityType.BUTTON.value
        try:
            entity_type = CommandEntityType(raw_entity)
        except ValueError:
            raise ValueError(f"unknown entity type: {raw_entity!r}") from None

        raw_id = data.get("id")
        return cls(
            type=command_type,
            name=name,
            id=str(raw_id) if raw_id else None,
            entity_type=entity_type,
            command=str(data.get("command") or ""),
            key_code=str(data.get("key_code") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "entity_type": self.entity_type.value,
            "command": self.command,
            "key_code": self.key_code,
        }
