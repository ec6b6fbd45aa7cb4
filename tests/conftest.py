from pathlib import Path
import sys
from types import SimpleNamespace

import pytest

# Add only the src directory to path, not the project root
project_root = Path(__file__).parent.parent
src_path = str(project_root / "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from hass_satellite import mqtt_manager as mqtt_manager_mod  # noqa: E402
from hass_satellite.commands_manager import CommandsManager  # noqa: E402
from hass_satellite.config import Config  # noqa: E402
from hass_satellite.mqtt_manager import MqttManager  # noqa: E402
from hass_satellite.stored_commands import CommandFactory, StoredCommands  # noqa: E402


class FakePahoClient:
    """Records every broker interaction in call order."""

    def __init__(self, *args, **kwargs):
        self.kwargs = kwargs
        self.events = []
        self.fail_publish = False
        self.auth = None
        self.will = None
        self.tls = None
        self.on_connect = None
        self.on_disconnect = None
        self.on_message = None

    def username_pw_set(self, username, password=None):
        self.auth = (username, password)

    def will_set(self, topic, payload=None, qos=0, retain=False):
        self.will = (topic, payload, qos, retain)

    def tls_set(self, **kwargs):
        self.tls = kwargs

    def tls_insecure_set(self, value):
        self.tls_insecure = value

    def connect_async(self, host, port=1883, keepalive=60):
        self.events.append(("connect", host, port))

    def loop_start(self):
        self.events.append(("loop_start",))

    def loop_stop(self):
        self.events.append(("loop_stop",))

    def disconnect(self):
        self.events.append(("disconnect",))

    def publish(self, topic, payload=None, qos=0, retain=False):
        self.events.append(("publish", topic, payload, retain))
        return SimpleNamespace(rc=1 if self.fail_publish else 0)

    def subscribe(self, topic, qos=0):
        self.events.append(("subscribe", topic))
        return (0, 1)

    def unsubscribe(self, topic):
        self.events.append(("unsubscribe", topic))
        return (0, 1)

    # helpers -------------------------------------------------------------------
    def publishes(self, topic=None):
        return [e for e in self.events if e[0] == "publish" and (topic is None or e[1] == topic)]

    def of_kind(self, kind):
        return [e for e in self.events if e[0] == kind]


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def make_config(tmp_path, **overrides):
    data = {
        "app": {"device_name": "testhost", "unique_id_prefix": "hass_satellite"},
        "mqtt": {"broker": "localhost", "port": 1883, "client_id": "sat"},
        "commands": {
            "storage_file": str(tmp_path / "commands.json"),
            "state_update_interval_seconds": 0,
        },
        "service": {
            "first_run_delay_seconds": 0.01,
            "cycle_interval_seconds": 0.01,
            "announce_interval_seconds": 30,
            "connect_poll_seconds": 0.01,
        },
    }
    for section, values in overrides.items():
        data.setdefault(section, {}).update(values)
    return Config(data)


def connect(gateway):
    """Simulate a successful CONNACK and forget the connect-time traffic."""
    gateway._on_connect(gateway._client, None, None, 0, None)
    gateway._client.events.clear()


@pytest.fixture
def config(tmp_path):
    return make_config(tmp_path)


@pytest.fixture
def paho(monkeypatch):
    monkeypatch.setattr(mqtt_manager_mod.mqtt, "Client", FakePahoClient)
    return FakePahoClient


@pytest.fixture
def gateway(config, paho):
    gw = MqttManager(config)
    connect(gw)
    return gw


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def manager(config, gateway, clock):
    factory = CommandFactory(config, gateway)
    store = StoredCommands(config.commands_file, factory)
    mgr = CommandsManager(gateway, factory, store, config=config, clock=clock)
    factory.publish_all_hook = mgr.force_state_publish
    yield mgr
    mgr.shutdown(timeout=2)
