"""Command reconciliation and publishing engine.

``CommandsManager`` owns the registry of active commands and runs one
background thread that keeps Home Assistant in sync with it:

  - every ``announce_interval`` seconds: availability, discovery configs and
    (once per discovery round) command topic subscriptions
  - every cycle: offer each command the chance to publish its state

Bulk changes go through ``apply_desired_state`` which pauses the cycle for
its whole duration, so the bus never sees a half-applied configuration.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
import json
import logging
import threading
import time
from typing import TYPE_CHECKING, Any, Callable, Optional, Union
import uuid

from .command_info import UNKNOWN_COMMAND_INFO, load_command_info
from .entities import STATE_OFF, STATE_ON
from .models import CommandType, ConfiguredCommand, MqttStatus
from .stored_commands import parse_configured_commands

if TYPE_CHECKING:  # pragma: no cover
    from .config import Config
    from .entities import AbstractCommand
    from .mqtt_manager import MqttManager
    from .stored_commands import CommandFactory, StoredCommands


logger = logging.getLogger(__name__)

DEFAULT_FIRST_RUN_DELAY = 1.0
DEFAULT_CYCLE_INTERVAL = 30.0
DEFAULT_ANNOUNCE_INTERVAL = 30.0
DEFAULT_CONNECT_POLL = 0.25

_PRESS_PAYLOADS = {"", "PRESS", STATE_ON}


@dataclass
class CycleState:
    """Flags shared between the reconciler and the publish cycle."""

    active: bool = True
    paused: bool = False
    subscribed: bool = False
    last_announce: float = 0.0


class CommandsManager:
    """Registry, reconciler and publish cycle for configured commands."""

    def __init__(
        self,
        gateway: MqttManager,
        factory: CommandFactory,
        store: StoredCommands,
        config: Optional[Config] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.gateway = gateway
        self.factory = factory
        self.store = store
        self.commands: list[AbstractCommand] = []
        self.state = CycleState()
        self._clock = clock
        self._command_info: dict[CommandType, str] = {}
        self._apply_lock = threading.Lock()
        self._wake = threading.Event()
        self._thread: Optional[threading.Thread] = None

        if config is not None:
            self.first_run_delay = config.first_run_delay_seconds
            self.cycle_interval = config.cycle_interval_seconds
            self.announce_interval = config.announce_interval_seconds
            self.connect_poll = config.connect_poll_seconds
        else:
            self.first_run_delay = DEFAULT_FIRST_RUN_DELAY
            self.cycle_interval = DEFAULT_CYCLE_INTERVAL
            self.announce_interval = DEFAULT_ANNOUNCE_INTERVAL
            self.connect_poll = DEFAULT_CONNECT_POLL

    # --- Lifecycle ------------------------------------------------------------------
    def initialize(self) -> threading.Thread:
        """Load the help table and start the background publish cycle.

        The thread first waits for the gateway to leave ``CONNECTING``.
        """
        self.initialize_command_info()
        self._thread = threading.Thread(
            target=self._run, name="commands-manager", daemon=True
        )
        self._thread.start()
        return self._thread

    def initialize_command_info(self) -> None:
        self._command_info = load_command_info()

    def stop(self) -> None:
        """Stop the cycle for good; wakes a sleeping loop."""
        self.state.active = False
        self._wake.set()

    def shutdown(self, timeout: Optional[float] = None) -> None:
        self.stop()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def set_paused(self, paused: bool) -> None:
        self.state.paused = paused

    def pause(self) -> None:
        self.set_paused(True)

    def resume(self) -> None:
        self.set_paused(False)

    @contextmanager
    def paused_cycle(self) -> Iterator[None]:
        """Hold the cycle paused; always resumes on exit."""
        self.pause()
        try:
            yield
        finally:
            self.resume()

    # --- Registry -------------------------------------------------------------------
    def commands_present(self) -> bool:
        return bool(self.commands)

    def get_command(self, command_id: Optional[str]) -> Optional[AbstractCommand]:
        index = self._index_of(command_id)
        return self.commands[index] if index >= 0 else None

    def _index_of(self, command_id: Optional[str]) -> int:
        for index, command in enumerate(self.commands):
            if command.id == command_id:
                return index
        return -1

    def load_stored_commands(self) -> int:
        """Fill the registry from storage; the cycle publishes them later."""
        self.commands = self.store.load()
        return len(self.commands)

    def reset_command_ids(self) -> None:
        """Give every command a fresh identifier and store the registry."""
        if not self.commands_present():
            return
        for command in self.commands:
            command.id = str(uuid.uuid4())
            command.clear_autodiscovery_config()
        self.store.store(self.commands)

    def describe_command_type(self, command_type: Union[CommandType, str]) -> str:
        try:
            key = CommandType(command_type)
        except ValueError:
            return UNKNOWN_COMMAND_INFO
        return self._command_info.get(key, UNKNOWN_COMMAND_INFO)

    # --- Publish cycle --------------------------------------------------------------
    def _run(self) -> None:
        while self.state.active and self.gateway.status() == MqttStatus.CONNECTING:
            self._wake.wait(self.connect_poll)
        self._process()

    def _process(self) -> None:
        first_run = True
        while self.state.active:
            # Short first delay so we announce ourselves quickly after startup
            self._wake.wait(self.first_run_delay if first_run else self.cycle_interval)
            if not self.state.active:
                break
            try:
                if self.state.paused:
                    continue
                if self.gateway.status() != MqttStatus.CONNECTED:
                    continue
                first_run = False
                self.run_cycle_once()
            except Exception as e:
                logger.critical("Error while publishing: %s", e, exc_info=True)
        logger.info("commands manager stopped")

    def _can_publish(self) -> bool:
        return (
            self.state.active
            and not self.state.paused
            and self.gateway.status() == MqttStatus.CONNECTED
        )

    def _publishable(self, commands: Sequence[AbstractCommand]) -> Iterator[AbstractCommand]:
        """Yield commands until pause, stop or disconnect is observed."""
        for command in commands:
            if not self._can_publish():
                return
            yield command

    def run_cycle_once(self) -> bool:
        """Run one publish cycle; False when nothing could be done."""
        if self.state.paused or self.gateway.status() != MqttStatus.CONNECTED:
            return False
        if not self.commands_present():
            return False

        # Snapshot: the reconciler may replace entries while we iterate
        commands = list(self.commands)
        now = self._clock()
        if now - self.state.last_announce > self.announce_interval:
            self.gateway.announce_availability()

            for command in self._publishable(commands):
                command.publish_autodiscovery()

            if not self.state.subscribed:
                done = 0
                for command in self._publishable(commands):
                    self.gateway.subscribe(command)
                    done += 1
                self.state.subscribed = done == len(commands)

            self.state.last_announce = now

        # Commands decide themselves whether their state is due
        for command in self._publishable(commands):
            command.publish_state()
        return True

    def unpublish_all_commands(self) -> None:
        """Withdraw discovery and subscriptions of every command (registry kept)."""
        if not self.commands_present():
            return
        count = 0
        for command in list(self.commands):
            command.unpublish_autodiscovery()
            self.gateway.unsubscribe(command)
            command.clear_autodiscovery_config()
            count += 1
        logger.info("Unpublished %d command(s)", count)

        self.state.last_announce = 0.0
        self.state.subscribed = False

    def force_state_publish(self) -> None:
        """Make every command resend its state on the next cycle."""
        for command in list(self.commands):
            command.reset_checks()
        logger.info("state checks reset for %d command(s)", len(self.commands))

    # --- Reconciliation -------------------------------------------------------------
    def apply_desired_state(
        self,
        desired: Sequence[ConfiguredCommand],
        removals: Optional[Sequence[ConfiguredCommand]] = None,
    ) -> bool:
        """Store the provided commands and (re)publish them.

        Overlapping calls are serialized; the cycle stays paused throughout.
        """
        removals = removals or []
        with self._apply_lock, self.paused_cycle():
            try:
                self._remove_commands(removals)

                for spec in desired:
                    command = self.factory.to_entity(spec)
                    if command is None:
                        continue
                    index = self._index_of(command.id)
                    if index < 0:
                        self._add_command(command)
                    else:
                        self._update_command(index, command)

                self.gateway.announce_availability()
                self.store.store(self.commands)
                return True
            except Exception as e:
                logger.critical("Error while storing commands: %s", e, exc_info=True)
                return False

    def _remove_commands(self, removals: Sequence[ConfiguredCommand]) -> None:
        if not removals:
            return
        count = 0
        for spec in removals:
            converted = self.factory.to_entity(spec)
            if converted is None:
                continue
            command = self.get_command(converted.id)
            if command is None:
                if self._topic_owner(converted) is not None:
                    # Topics belong to a live command with the same name
                    logger.warning(
                        "Not removing unknown command %s (%s): its topics are in use",
                        converted.name,
                        converted.id,
                    )
                    continue
                command = converted
            command.unpublish_autodiscovery()
            self.gateway.unsubscribe(command)
            index = self._index_of(command.id)
            if index >= 0:
                del self.commands[index]
            command.clear_autodiscovery_config()
            self._restore_shared_topics(command)
            count += 1
            logger.info("Removed command: %s", command.name)
        logger.info("Removed %d command(s)", count)

    def _topic_owner(self, command: AbstractCommand) -> Optional[AbstractCommand]:
        """Return a registry command (other than ``command``) using the same topics."""
        for other in self.commands:
            if other is not command and other.command_topic == command.command_topic:
                return other
        return None

    def _restore_shared_topics(self, torn_down: AbstractCommand) -> None:
        """Re-register survivors whose topics were just withdrawn with ``torn_down``.

        Commands with the same name share topics, so tearing one down also
        drops the other's subscription and discovery config.
        """
        self.state.subscribed = False
        owner = self._topic_owner(torn_down)
        if owner is None:
            return
        logger.info("Re-registering %s on shared topics", owner.name)
        self.gateway.subscribe(owner)
        owner.publish_autodiscovery()

    def _add_command(self, command: AbstractCommand) -> None:
        self.commands.append(command)
        self.gateway.subscribe(command)
        command.publish_autodiscovery()
        command.publish_state(respect_checks=False)
        logger.info("Added command: %s", command.name)

    def _update_command(self, index: int, command: AbstractCommand) -> None:
        current = self.commands[index]
        if current.name != command.name or current.command_topic != command.command_topic:
            # Re-register under the new topic so HA drops the old entity
            logger.info(
                "Command changed name, re-registering as new entity: %s to %s",
                current.name,
                command.name,
            )
            current.unpublish_autodiscovery()
            self.gateway.unsubscribe(current)
            self.gateway.subscribe(command)
            self.commands[index] = command
            self._restore_shared_topics(current)
        else:
            self.commands[index] = command

        command.publish_autodiscovery()
        command.publish_state(respect_checks=False)
        logger.info("Modified command: %s", command.name)

    def process_received_desired_state(
        self, commands: Sequence[ConfiguredCommand]
    ) -> Optional[threading.Thread]:
        """Apply a complete desired list in the background.

        Registry entries whose id is absent from ``commands`` are removed.
        Returns the worker thread, or None when nothing was started.
        """
        try:
            if not commands:
                logger.warning("Received empty list, nothing to do ..")
                return None

            desired_ids = {c.id for c in commands if c.id}
            current = [self.factory.to_configured(c) for c in list(self.commands)]
            removals = [c for c in current if c is not None and c.id not in desired_ids]

            logger.info(
                "Processing %d received command(s), deleting %d command(s) ..",
                len(commands),
                len(removals),
            )
            worker = threading.Thread(
                target=self.apply_desired_state,
                args=(list(commands), removals),
                name="commands-apply",
                daemon=True,
            )
            worker.start()
            return worker
        except Exception as e:
            logger.critical("Error while processing received commands: %s", e, exc_info=True)
            return None

    def handle_desired_state_message(self, payload: bytes) -> Optional[threading.Thread]:
        """Decode a JSON command list pushed over MQTT and apply it."""
        try:
            data: Any = json.loads(payload.decode("utf-8") or "[]")
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning("ignoring undecodable desired state: %s", e)
            return None
        return self.process_received_desired_state(parse_configured_commands(data))

    # --- Incoming commands ----------------------------------------------------------
    def dispatch_command_message(self, topic: str, payload: str) -> bool:
        """Route a command/action message to the command that owns the topic."""
        for command in list(self.commands):
            if topic == command.command_topic:
                if payload.upper() in _PRESS_PAYLOADS:
                    command.turn_on()
                elif payload.upper() == STATE_OFF:
                    command.turn_off()
                else:
                    logger.warning("unknown payload %r for %s", payload, command.name)
                    return False
                return True
            if topic == command.action_topic:
                command.turn_on(action=payload or None)
                return True
        logger.debug("no command owns topic %s", topic)
        return False
