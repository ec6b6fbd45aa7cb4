# hass_satellite/discovery.py
"""Home Assistant MQTT discovery payloads for commands.

Components are described with ha-mqtt-publisher's Device/Entity classes.
The per-command fields the engine relies on (unique_id, object_id,
availability and the device block) are then set explicitly, so the payload
keeps the same shape whatever defaults the library applies.
"""

from __future__ import annotations

from typing import Any

from ha_mqtt_publisher import Device, Entity

from . import __version__
from .config import Config
from .mqtt_utils import availability_topic, sanitize_name


def build_device(config: Config) -> Device:
    """Build the Home Assistant device every command entity is grouped under."""
    name = config.device_name
    return Device(
        config,
        identifiers=[f"hass_satellite_{sanitize_name(name)}"],
        name=name,
        manufacturer=config.get("app.manufacturer", "HASS Satellite"),
        model=config.get("app.model", "hass-satellite"),
        sw_version=__version__,
        configuration_url=config.get("app.configuration_url"),
    )


def device_info(device: Device) -> dict[str, Any]:
    """Device block embedded in each entity's discovery payload."""
    info: dict[str, Any] = {
        "identifiers": list(device.identifiers),
        "name": device.name,
    }
    for key in ("manufacturer", "model", "sw_version", "configuration_url"):
        value = getattr(device, key, None)
        if value:
            info[key] = value
    return info


def build_command_config(
    config: Config,
    *,
    name: str,
    unique_id: str,
    object_id: str,
    command_topic: str,
    state_topic: str,
    component: str,
) -> dict[str, Any]:
    """Build the discovery config payload for one command entity.

    Buttons carry no state topic; switches report ON/OFF on ``state_topic``.
    """
    device = build_device(config)
    if component == "switch":
        options: dict[str, Any] = {
            "state_topic": state_topic,
            "payload_on": "ON",
            "payload_off": "OFF",
            "optimistic": False,
        }
    else:
        options = {"payload_press": "PRESS"}

    entity = Entity(
        config,
        device,
        component=component,
        unique_id=object_id,
        name=name,
        command_topic=command_topic,
        **options,
    )
    payload = entity.get_config_payload().copy()
    payload.update(options)
    payload.update(
        {
            "name": name,
            "unique_id": unique_id,
            "object_id": f"{sanitize_name(device.name)}_{object_id}",
            "availability_topic": availability_topic(
                config.discovery_prefix, config.device_name
            ),
            "command_topic": command_topic,
            "device": device_info(device),
        }
    )
    return payload
