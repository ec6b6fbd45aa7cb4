"""MQTT gateway for the command engine.

Wraps a single long-lived paho-mqtt client (Callback API v2) and offers the
operations the engine needs: status, availability announcement, per-command
subscribe/unsubscribe and publish. The gateway only remembers subscribed
topics, never command objects; incoming command messages are handed to the
``on_command_message`` callback and desired-state pushes to
``on_desired_state``.
"""

from __future__ import annotations

import json
import logging
import ssl
import threading
from typing import TYPE_CHECKING, Any, Callable, Optional

import paho.mqtt.client as mqtt

from .config import Config
from .models import MqttStatus
from .mqtt_utils import availability_topic, reason_code_value

if TYPE_CHECKING:  # pragma: no cover
    from .entities import AbstractCommand


logger = logging.getLogger(__name__)

PAYLOAD_ONLINE = "online"
PAYLOAD_OFFLINE = "offline"


class MqttManager:
    """Bus gateway used by the commands manager."""

    def __init__(self, config: Config):
        self.config = config
        self.availability_topic = availability_topic(
            config.discovery_prefix, config.device_name
        )
        self.desired_state_topic = config.commands_config_topic
        self.on_command_message: Optional[Callable[[str, str], None]] = None
        self.on_desired_state: Optional[Callable[[bytes], None]] = None

        self._lock = threading.Lock()
        self._topics: set[str] = set()
        try:
            self._settings = config.get_mqtt_config()
        except ValueError as e:
            logger.error("mqtt configuration incomplete: %s", e)
            self._settings = {"client_id": config.mqtt_client_id}
        self._status = (
            MqttStatus.DISCONNECTED
            if self._settings.get("broker_url")
            else MqttStatus.CONFIG_MISSING
        )
        self._client = self._create_client()

    def _create_client(self) -> mqtt.Client:
        settings = self._settings
        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=f"{settings['client_id']}-{self.config.device_name}",
            protocol=mqtt.MQTTv311,
        )
        auth = settings.get("auth")
        if auth:
            client.username_pw_set(auth["username"], auth["password"])

        # Home Assistant marks every command unavailable when we vanish
        client.will_set(self.availability_topic, PAYLOAD_OFFLINE, qos=1, retain=True)

        tls_cfg = settings.get("tls")
        if tls_cfg:
            verify = bool(tls_cfg.get("verify", False))
            client.tls_set(
                ca_certs=tls_cfg.get("ca_cert"),
                certfile=tls_cfg.get("client_cert"),
                keyfile=tls_cfg.get("client_key"),
                cert_reqs=ssl.CERT_REQUIRED if verify else ssl.CERT_NONE,
            )
            client.tls_insecure_set(not verify)
            logger.info("mqtt tls configured verify=%s", verify)

        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        return client

    # --- Lifecycle ------------------------------------------------------------------
    def status(self) -> MqttStatus:
        return self._status

    def is_connected(self) -> bool:
        return self._status == MqttStatus.CONNECTED

    def start(self) -> bool:
        """Start connecting in the background (paho handles reconnects)."""
        broker = self._settings.get("broker_url")
        if not broker:
            logger.error("mqtt broker not configured, not connecting")
            self._status = MqttStatus.CONFIG_MISSING
            return False
        port = self._settings["broker_port"]
        self._status = MqttStatus.CONNECTING
        logger.info(
            "mqtt_connection broker=%s port=%s client_id=%s",
            broker,
            port,
            self._settings["client_id"],
        )
        try:
            self._client.connect_async(
                broker, port, keepalive=self._settings["keepalive"]
            )
            self._client.loop_start()
        except (OSError, ValueError) as e:
            logger.error("cannot start MQTT client: %s", e)
            self._status = MqttStatus.ERROR
            return False
        return True

    def stop(self) -> None:
        """Announce offline and disconnect."""
        if self.is_connected():
            self.announce_availability(offline=True)
        self._client.loop_stop()
        self._client.disconnect()
        self._status = MqttStatus.DISCONNECTED

    # --- paho callbacks -------------------------------------------------------------
    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        rc = reason_code_value(reason_code)
        if rc not in (0, None):
            logger.error("mqtt connect refused rc=%s", rc)
            self._status = MqttStatus.ERROR
            return
        logger.info("mqtt connected rc=%s", rc)
        self._status = MqttStatus.CONNECTED
        # Subscriptions do not survive a clean session; restore them
        with self._lock:
            topics = sorted(self._topics)
        if self.desired_state_topic:
            topics.append(self.desired_state_topic)
        for topic in topics:
            client.subscribe(topic)
        self.announce_availability()

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        rc = reason_code_value(reason_code)
        if rc not in (0, None):
            logger.warning("mqtt unexpected disconnection rc=%s", rc)
        else:
            logger.info("mqtt disconnected")
        self._status = MqttStatus.DISCONNECTED

    def _on_message(self, client, userdata, msg):
        topic = getattr(msg, "topic", "") or ""
        payload: bytes = getattr(msg, "payload", b"") or b""
        try:
            if topic == self.desired_state_topic:
                if self.on_desired_state is not None:
                    self.on_desired_state(payload)
                return
            with self._lock:
                known = topic in self._topics
            if known and self.on_command_message is not None:
                text = payload.decode("utf-8", errors="ignore").strip()
                self.on_command_message(topic, text)
        except Exception as e:
            logger.error("command message handling failure topic=%s: %s", topic, e)

    # --- Gateway operations ---------------------------------------------------------
    def publish(self, topic: str, payload: Any, retain: bool = False, qos: int = 0) -> bool:
        """Publish a payload; dicts/lists are JSON encoded."""
        if not self.is_connected():
            logger.debug("not connected, dropping publish to %s", topic)
            return False
        if isinstance(payload, (dict, list)):
            payload = json.dumps(payload)
        try:
            result = self._client.publish(topic, payload, qos=qos, retain=retain)
        except (OSError, ValueError) as e:
            logger.warning("publication to %s failed: %s", topic, e)
            return False
        return result.rc == mqtt.MQTT_ERR_SUCCESS

    def announce_availability(self, offline: bool = False) -> bool:
        return self.publish(
            self.availability_topic,
            PAYLOAD_OFFLINE if offline else PAYLOAD_ONLINE,
            retain=True,
            qos=1,
        )

    def subscribe(self, command: AbstractCommand) -> None:
        for topic in (command.command_topic, command.action_topic):
            with self._lock:
                if topic in self._topics:
                    continue
                self._topics.add(topic)
            if self.is_connected():
                self._client.subscribe(topic)
            logger.debug("subscribed %s", topic)

    def unsubscribe(self, command: AbstractCommand) -> None:
        for topic in (command.command_topic, command.action_topic):
            with self._lock:
                if topic not in self._topics:
                    continue
                self._topics.discard(topic)
            if self.is_connected():
                self._client.unsubscribe(topic)
            logger.debug("unsubscribed %s", topic)

    def subscribed_topics(self) -> set[str]:
        with self._lock:
            return set(self._topics)
