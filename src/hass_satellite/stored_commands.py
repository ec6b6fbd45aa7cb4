"""Conversion between configured commands and entities, plus JSON storage."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
import json
import logging
import os
from pathlib import Path
import tempfile
from typing import TYPE_CHECKING, Any, Callable, Optional

from .config import Config
from .entities import (
    MEDIA_TYPES,
    POWER_TYPES,
    AbstractCommand,
    CustomCommand,
    CustomExecutorCommand,
    KeyCommand,
    LaunchUrlCommand,
    MediaKeyCommand,
    PowerCommand,
    PublishAllSensorsCommand,
    ShellScriptCommand,
)
from .models import CommandType, ConfiguredCommand

if TYPE_CHECKING:  # pragma: no cover
    from .mqtt_manager import MqttManager


logger = logging.getLogger(__name__)

_TEXT_COMMANDS = {
    CommandType.CUSTOM: CustomCommand,
    CommandType.SHELL_SCRIPT: ShellScriptCommand,
    CommandType.LAUNCH_URL: LaunchUrlCommand,
    CommandType.CUSTOM_EXECUTOR: CustomExecutorCommand,
}


def parse_configured_commands(items: Any) -> list[ConfiguredCommand]:
    """Parse a list of dicts, skipping (and logging) malformed entries."""
    if not isinstance(items, list):
        logger.warning("expected a list of commands, got %s", type(items).__name__)
        return []
    parsed: list[ConfiguredCommand] = []
    for index, item in enumerate(items):
        try:
            parsed.append(ConfiguredCommand.from_dict(item))
        except ValueError as e:
            logger.warning("skipping malformed command #%d: %s", index, e)
    return parsed


class CommandFactory:
    """Turns configured commands into entities and back."""

    def __init__(
        self,
        config: Config,
        gateway: MqttManager,
        publish_all_hook: Optional[Callable[[], None]] = None,
    ):
        self.config = config
        self.gateway = gateway
        self.publish_all_hook = publish_all_hook

    def to_entity(self, spec: ConfiguredCommand) -> Optional[AbstractCommand]:
        """Build the entity for a spec; None for specs that cannot be built."""
        common: dict[str, Any] = {
            "command_id": spec.id,
            "entity_type": spec.entity_type,
        }
        args = (self.gateway, self.config, spec.name)
        try:
            if spec.type in POWER_TYPES:
                return PowerCommand(spec.type, *args, **common)
            if spec.type in MEDIA_TYPES:
                return MediaKeyCommand(spec.type, *args, **common)
            if spec.type in _TEXT_COMMANDS:
                return _TEXT_COMMANDS[spec.type](*args, command=spec.command, **common)
            if spec.type == CommandType.KEY:
                return KeyCommand(*args, key_code=spec.key_code, **common)
            if spec.type == CommandType.PUBLISH_ALL_SENSORS:
                return PublishAllSensorsCommand(
                    *args, on_trigger=self.publish_all_hook, **common
                )
        except ValueError as e:
            logger.warning("cannot build command %s: %s", spec.name, e)
            return None
        logger.warning("unsupported command type %s for %s", spec.type, spec.name)
        return None

    def to_configured(self, command: AbstractCommand) -> Optional[ConfiguredCommand]:
        try:
            return ConfiguredCommand(
                type=command.type,
                name=command.name,
                id=command.id,
                entity_type=command.entity_type,
                command=getattr(command, "command", ""),
                key_code=getattr(command, "key_code", ""),
            )
        except AttributeError as e:
            logger.warning("cannot convert %r: %s", command, e)
            return None


class StoredCommands:
    """Loads and stores the command registry as a JSON file."""

    def __init__(self, path: str | os.PathLike, factory: CommandFactory):
        self.path = Path(path)
        self.factory = factory

    def load_configured(self) -> list[ConfiguredCommand]:
        if not self.path.exists():
            logger.info("no stored commands at %s", self.path)
            return []
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("failed to read stored commands %s: %s", self.path, e)
            return []
        return parse_configured_commands(data)

    def load(self) -> list[AbstractCommand]:
        commands: list[AbstractCommand] = []
        for spec in self.load_configured():
            command = self.factory.to_entity(spec)
            if command is not None:
                commands.append(command)
        logger.info("loaded %d stored command(s)", len(commands))
        return commands

    def store(self, commands: Iterable[AbstractCommand]) -> bool:
        """Write the registry (temp file + replace); errors are logged only."""
        specs = [self.factory.to_configured(c) for c in commands]
        return self.store_configured([s for s in specs if s is not None])

    def store_configured(self, specs: Sequence[ConfiguredCommand]) -> bool:
        payload = [s.to_dict() for s in specs]
        tmp: Optional[str] = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp, self.path)
            tmp = None
        except OSError as e:
            logger.error("failed to store commands to %s: %s", self.path, e)
            return False
        finally:
            if tmp is not None and os.path.exists(tmp):
                os.unlink(tmp)
        logger.debug("stored %d command(s) to %s", len(payload), self.path)
        return True
