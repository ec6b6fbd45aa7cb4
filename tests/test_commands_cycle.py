import logging
import threading
import time

from hass_satellite.command_info import UNKNOWN_COMMAND_INFO
from hass_satellite.models import CommandType, ConfiguredCommand, MqttStatus

AVAILABILITY = "homeassistant/sensor/testhost/availability"


def load(manager, gateway, *names):
    for name in names:
        manager.commands.append(
            manager.factory.to_entity(ConfiguredCommand(type=CommandType.LOCK, name=name))
        )
    gateway._client.events.clear()


def wait_for(predicate, timeout=3.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_first_cycle_announces_publishes_subscribes_and_pushes_state(manager, gateway):
    load(manager, gateway, "Lock", "Lock Two")
    first, second = manager.commands

    assert manager.run_cycle_once() is True

    events = [(e[0], e[1]) for e in gateway._client.events]
    assert events == [
        ("publish", AVAILABILITY),
        ("publish", first.config_topic),
        ("publish", second.config_topic),
        ("subscribe", first.command_topic),
        ("subscribe", first.action_topic),
        ("subscribe", second.command_topic),
        ("subscribe", second.action_topic),
        ("publish", first.state_topic),
        ("publish", second.state_topic),
    ]
    assert manager.state.subscribed is True
    assert manager.state.last_announce == manager._clock()


def test_announce_is_throttled_but_state_is_offered_every_cycle(manager, gateway, clock):
    load(manager, gateway, "Lock")
    cmd = manager.commands[0]
    manager.run_cycle_once()
    gateway._client.events.clear()

    clock.advance(10)
    manager.run_cycle_once()

    assert [(e[0], e[1]) for e in gateway._client.events] == [
        ("publish", cmd.state_topic)
    ]

    gateway._client.events.clear()
    clock.advance(31)
    manager.run_cycle_once()

    events = [(e[0], e[1]) for e in gateway._client.events]
    assert ("publish", AVAILABILITY) in events
    assert ("publish", cmd.config_topic) in events
    # already subscribed for this discovery round
    assert gateway._client.of_kind("subscribe") == []


def test_disconnected_cycle_does_nothing(manager, gateway):
    load(manager, gateway, "Lock")
    gateway._on_disconnect(gateway._client, None, None, 7, None)
    assert gateway.status() == MqttStatus.DISCONNECTED

    assert manager.run_cycle_once() is False

    assert gateway._client.events == []
    assert len(manager.commands) == 1
    assert manager.state.last_announce == 0.0
    assert manager.state.subscribed is False


def test_paused_or_empty_cycle_does_nothing(manager, gateway):
    assert manager.run_cycle_once() is False

    load(manager, gateway, "Lock")
    manager.pause()
    manager.pause()  # idempotent
    assert manager.run_cycle_once() is False
    assert gateway._client.events == []

    manager.resume()
    assert manager.run_cycle_once() is True


def test_pause_mid_iteration_stops_remaining_commands(manager, gateway, monkeypatch):
    load(manager, gateway, "Lock", "Lock Two")
    first, second = manager.commands
    original = first.publish_autodiscovery

    def publish_then_pause():
        result = original()
        manager.pause()
        return result

    monkeypatch.setattr(first, "publish_autodiscovery", publish_then_pause)

    manager.run_cycle_once()

    topics = [e[1] for e in gateway._client.events]
    assert first.config_topic in topics
    assert second.config_topic not in topics
    assert gateway._client.of_kind("subscribe") == []
    assert manager.state.subscribed is False
    assert first.state_topic not in topics


def test_unpublish_all_is_idempotent_over_the_bus(manager, gateway):
    load(manager, gateway, "Lock", "Lock Two")
    manager.run_cycle_once()
    gateway._client.events.clear()

    manager.unpublish_all_commands()

    client = gateway._client
    assert len([e for e in client.publishes() if e[2] == ""]) == 2
    assert len(client.of_kind("unsubscribe")) == 4
    assert manager.state.subscribed is False
    assert manager.state.last_announce == 0.0

    client.events.clear()
    manager.unpublish_all_commands()

    assert client.events == []
    assert len(manager.commands) == 2


def test_unpublish_all_then_cycle_republishes(manager, gateway, clock):
    load(manager, gateway, "Lock")
    cmd = manager.commands[0]
    manager.run_cycle_once()
    manager.unpublish_all_commands()
    gateway._client.events.clear()

    clock.advance(1)
    manager.run_cycle_once()

    events = [(e[0], e[1]) for e in gateway._client.events]
    assert ("publish", cmd.config_topic) in events
    assert ("subscribe", cmd.command_topic) in events


def test_unpublish_all_on_empty_registry_is_noop(manager, gateway):
    manager.state.subscribed = True
    manager.unpublish_all_commands()
    assert gateway._client.events == []
    assert manager.state.subscribed is True


def test_background_cycle_waits_for_connection_then_publishes(manager, gateway):
    load(manager, gateway, "Lock")
    cmd = manager.commands[0]
    gateway._status = MqttStatus.CONNECTING

    thread = manager.initialize()
    time.sleep(0.05)
    assert gateway._client.publishes(cmd.config_topic) == []

    gateway._on_connect(gateway._client, None, None, 0, None)
    assert wait_for(lambda: gateway._client.publishes(cmd.state_topic))

    manager.shutdown(timeout=2)
    assert not thread.is_alive()
    assert manager.state.active is False


def test_background_cycle_survives_errors(manager, monkeypatch, caplog):
    calls = []

    def failing_cycle():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("broker hiccup")
        return True

    monkeypatch.setattr(manager, "run_cycle_once", failing_cycle)

    with caplog.at_level(logging.CRITICAL):
        manager.initialize()
        assert wait_for(lambda: len(calls) >= 2)
        manager.shutdown(timeout=2)

    assert "broker hiccup" in caplog.text


def test_stop_is_permanent(manager):
    manager.stop()
    manager.resume()
    assert manager.state.active is False


def test_reset_command_ids(manager, gateway, config):
    load(manager, gateway, "Lock", "Lock Two")
    before = [c.id for c in manager.commands]

    manager.reset_command_ids()

    after = [c.id for c in manager.commands]
    assert set(before).isdisjoint(after)
    assert len(set(after)) == 2
    assert gateway._client.events == []
    stored = manager.store.load_configured()
    assert [s.id for s in stored] == after


def test_describe_command_type(manager):
    assert manager.describe_command_type(CommandType.LOCK) == UNKNOWN_COMMAND_INFO

    manager.initialize_command_info()

    assert manager.describe_command_type(CommandType.LOCK) == "Locks the current session."
    assert manager.describe_command_type("sleep").startswith("Puts the machine to sleep")
    assert manager.describe_command_type("warp_drive") == UNKNOWN_COMMAND_INFO


def test_dispatch_routes_to_owning_command(manager, gateway, monkeypatch):
    load(manager, gateway, "Lock")
    cmd = manager.commands[0]
    pressed = []
    monkeypatch.setattr(cmd, "turn_on", lambda action=None: pressed.append(action))

    assert manager.dispatch_command_message(cmd.command_topic, "PRESS") is True
    assert manager.dispatch_command_message(cmd.action_topic, "now") is True
    assert manager.dispatch_command_message(cmd.command_topic, "WAT") is False
    assert manager.dispatch_command_message("other/topic", "PRESS") is False
    assert pressed == [None, "now"]


def test_publish_all_sensors_resets_state_checks(manager, gateway):
    manager.apply_desired_state(
        [
            ConfiguredCommand(type=CommandType.LOCK, name="Lock"),
            ConfiguredCommand(type=CommandType.PUBLISH_ALL_SENSORS, name="Refresh"),
        ]
    )
    lock, refresh = manager.commands
    lock.update_interval = 3600
    gateway._client.events.clear()

    assert lock.publish_state() is False
    refresh.turn_on()
    assert lock.publish_state() is True


def test_load_stored_commands(manager, gateway):
    manager.apply_desired_state([ConfiguredCommand(type=CommandType.LOCK, name="Lock", id="s1")])
    manager.commands = []

    assert manager.load_stored_commands() == 1
    assert manager.commands[0].id == "s1"


def test_initialize_does_not_block(manager, gateway):
    gateway._status = MqttStatus.CONNECTING
    started = threading.Event()

    def run():
        manager.initialize()
        started.set()

    threading.Thread(target=run).start()
    assert started.wait(1)
