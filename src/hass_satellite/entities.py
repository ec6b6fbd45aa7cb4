"""Command entities: the capability set the engine publishes and drives.

Every command knows its own topics, builds and caches its discovery config,
decides when its state needs republishing and knows how to execute itself.
The engine only ever talks to the ``AbstractCommand`` interface.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import time
from typing import TYPE_CHECKING, Any, Callable, ClassVar, Optional
import uuid
import webbrowser

from .discovery import build_command_config
from .models import CommandEntityType, CommandType
from .mqtt_utils import entity_topic_base, sanitize_name

if TYPE_CHECKING:  # pragma: no cover
    from .config import Config
    from .mqtt_manager import MqttManager


logger = logging.getLogger(__name__)

STATE_ON = "ON"
STATE_OFF = "OFF"


class AbstractCommand:
    """Base class for all commands."""

    command_type: ClassVar[CommandType]

    def __init__(
        self,
        gateway: MqttManager,
        config: Config,
        name: str,
        command_id: Optional[str] = None,
        entity_type: CommandEntityType = CommandEntityType.BUTTON,
        clock: Callable[[], float] = time.time,
    ):
        self._gateway = gateway
        self._config = config
        self._clock = clock
        self.id = command_id or str(uuid.uuid4())
        self.name = name
        self.entity_type = entity_type
        self.update_interval = config.state_update_interval_seconds
        self._autodiscovery_config: Optional[dict[str, Any]] = None
        # None: unknown (fresh instance), True: announced, False: withdrawn
        self._discovery_published: Optional[bool] = None
        self._last_state_publish = 0.0

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id} name={self.name!r}>"

    @property
    def type(self) -> CommandType:
        return self.command_type

    @property
    def object_id(self) -> str:
        return sanitize_name(self.name)

    @property
    def component(self) -> str:
        return self.entity_type.value

    @property
    def _topic_base(self) -> str:
        return entity_topic_base(
            self._config.discovery_prefix,
            self.component,
            self._config.device_name,
            self.object_id,
        )

    @property
    def config_topic(self) -> str:
        return f"{self._topic_base}/config"

    @property
    def state_topic(self) -> str:
        return f"{self._topic_base}/state"

    @property
    def command_topic(self) -> str:
        return f"{self._topic_base}/set"

    @property
    def action_topic(self) -> str:
        return f"{self._topic_base}/action"

    # --- Discovery ------------------------------------------------------------------
    def get_autodiscovery_config(self) -> dict[str, Any]:
        """Return the (locally cached) discovery config payload."""
        if self._autodiscovery_config is None:
            self._autodiscovery_config = build_command_config(
                self._config,
                name=self.name,
                unique_id=self.id,
                object_id=self.object_id,
                command_topic=self.command_topic,
                state_topic=self.state_topic,
                component=self.component,
            )
        return self._autodiscovery_config

    def clear_autodiscovery_config(self) -> None:
        self._autodiscovery_config = None

    def publish_autodiscovery(self) -> bool:
        ok = self._gateway.publish(
            self.config_topic, self.get_autodiscovery_config(), retain=True
        )
        if ok:
            self._discovery_published = True
        return ok

    def unpublish_autodiscovery(self) -> bool:
        """Withdraw the discovery config (empty retained payload).

        No-op when this instance already withdrew it.
        """
        if self._discovery_published is False:
            return True
        ok = self._gateway.publish(self.config_topic, "", retain=True)
        if ok:
            self._discovery_published = False
        return ok

    # --- State ----------------------------------------------------------------------
    def get_state(self) -> str:
        return STATE_OFF

    def reset_checks(self) -> None:
        self._last_state_publish = 0.0

    def publish_state(self, respect_checks: bool = True) -> bool:
        """Publish the current state; with checks, only once per update interval."""
        now = self._clock()
        if respect_checks and now - self._last_state_publish < self.update_interval:
            return False
        state = self.get_state()
        ok = self._gateway.publish(self.state_topic, state, retain=False)
        if ok:
            self._last_state_publish = now
        return ok

    # --- Execution ------------------------------------------------------------------
    def turn_on(self, action: Optional[str] = None) -> None:
        raise NotImplementedError

    def turn_off(self) -> None:
        """Commands are momentary; turning off only reports the state again."""
        self.publish_state(respect_checks=False)


class ProcessCommand(AbstractCommand):
    """A command that launches an external process."""

    def build_argv(self, action: Optional[str] = None) -> list[str]:
        raise NotImplementedError

    def turn_on(self, action: Optional[str] = None) -> None:
        argv = self.build_argv(action)
        if not argv:
            logger.warning("command %s has nothing to execute", self.name)
            return
        logger.info("executing command %s: %s", self.name, argv)
        try:
            subprocess.Popen(  # noqa: S603 - configured by the host owner
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            logger.error("command %s failed to launch: %s", self.name, e)


_POWER_ARGV: dict[CommandType, list[str]] = {
    CommandType.SHUTDOWN: ["shutdown", "-h", "+1"],
    CommandType.RESTART: ["shutdown", "-r", "+1"],
    CommandType.HIBERNATE: ["systemctl", "hibernate"],
    CommandType.SLEEP: ["systemctl", "suspend"],
    CommandType.LOG_OFF: ["loginctl", "terminate-user", "{user}"],
    CommandType.LOCK: ["loginctl", "lock-session"],
}


class PowerCommand(ProcessCommand):
    """Session and power management (shutdown, restart, sleep, lock, ...)."""

    def __init__(self, command_type: CommandType, *args: Any, **kwargs: Any):
        if command_type not in _POWER_ARGV:
            raise ValueError(f"not a power command: {command_type}")
        self.command_type = command_type  # type: ignore[misc]
        super().__init__(*args, **kwargs)

    def build_argv(self, action: Optional[str] = None) -> list[str]:
        user = os.environ.get("USER", "")
        return [part.format(user=user) for part in _POWER_ARGV[self.command_type]]


class CustomCommand(ProcessCommand):
    """Runs a configured shell command line; an action is appended as argument."""

    command_type = CommandType.CUSTOM

    def __init__(self, *args: Any, command: str = "", **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.command = command

    def build_argv(self, action: Optional[str] = None) -> list[str]:
        if not self.command:
            return []
        argv = ["sh", "-c", self.command]
        if action:
            argv[2] = f"{self.command} {shlex.quote(action)}"
        return argv


class ShellScriptCommand(CustomCommand):
    """Runs a script file (*.sh) or a single-line shell command."""

    command_type = CommandType.SHELL_SCRIPT

    def build_argv(self, action: Optional[str] = None) -> list[str]:
        if self.command.endswith(".sh"):
            argv = ["sh", self.command]
            if action:
                argv.append(action)
            return argv
        return super().build_argv(action)


_MEDIA_ARGV: dict[CommandType, list[str]] = {
    CommandType.MEDIA_PLAY_PAUSE: ["playerctl", "play-pause"],
    CommandType.MEDIA_NEXT: ["playerctl", "next"],
    CommandType.MEDIA_PREVIOUS: ["playerctl", "previous"],
    CommandType.MEDIA_VOLUME_UP: ["pactl", "set-sink-volume", "@DEFAULT_SINK@", "+5%"],
    CommandType.MEDIA_VOLUME_DOWN: ["pactl", "set-sink-volume", "@DEFAULT_SINK@", "-5%"],
    CommandType.MEDIA_MUTE: ["pactl", "set-sink-mute", "@DEFAULT_SINK@", "toggle"],
}


class MediaKeyCommand(ProcessCommand):
    """Simulates a media key."""

    def __init__(self, command_type: CommandType, *args: Any, **kwargs: Any):
        if command_type not in _MEDIA_ARGV:
            raise ValueError(f"not a media command: {command_type}")
        self.command_type = command_type  # type: ignore[misc]
        super().__init__(*args, **kwargs)

    def build_argv(self, action: Optional[str] = None) -> list[str]:
        return list(_MEDIA_ARGV[self.command_type])


class KeyCommand(ProcessCommand):
    command_type = CommandType.KEY

    def __init__(self, *args: Any, key_code: str = "", **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.key_code = key_code

    def build_argv(self, action: Optional[str] = None) -> list[str]:
        key = action or self.key_code
        return ["xdotool", "key", key] if key else []


class CustomExecutorCommand(ProcessCommand):
    """Passes the command 'as is' to the configured custom executor."""

    command_type = CommandType.CUSTOM_EXECUTOR

    def __init__(self, *args: Any, command: str = "", **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.command = command

    def build_argv(self, action: Optional[str] = None) -> list[str]:
        executor = self._config.get("external_tools.custom_executor", "")
        if not executor:
            logger.warning("no custom executor configured for %s", self.name)
            return []
        return [*shlex.split(executor), action or self.command]


class LaunchUrlCommand(AbstractCommand):
    """Opens a URL, in the configured browser or the default one."""

    command_type = CommandType.LAUNCH_URL

    def __init__(self, *args: Any, command: str = "", **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.command = command

    def turn_on(self, action: Optional[str] = None) -> None:
        url = action or self.command
        if not url:
            logger.warning("command %s has no URL configured", self.name)
            return
        browser = self._config.get("external_tools.browser", "") or None
        try:
            webbrowser.get(browser).open(url)
        except webbrowser.Error as e:
            logger.error("command %s could not open %s: %s", self.name, url, e)


class PublishAllSensorsCommand(AbstractCommand):
    """Forces every command to resend its state on the next cycle."""

    command_type = CommandType.PUBLISH_ALL_SENSORS

    def __init__(
        self,
        *args: Any,
        on_trigger: Optional[Callable[[], None]] = None,
        **kwargs: Any,
    ):
        super().__init__(*args, **kwargs)
        self._on_trigger = on_trigger

    def turn_on(self, action: Optional[str] = None) -> None:
        if self._on_trigger is None:
            logger.warning("publish all sensors has no hook attached")
            return
        self._on_trigger()


POWER_TYPES = frozenset(_POWER_ARGV)
MEDIA_TYPES = frozenset(_MEDIA_ARGV)
