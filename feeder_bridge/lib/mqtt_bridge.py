import json
import logging
import threading

from typing import Callable, Dict, List, Optional

import paho.mqtt.client as mqtt

from feeder_bridge.lib.errors import DeliveryFailed, TransportDisconnected
from feeder_bridge.lib.settings import BridgeSettings

LOG = logging.getLogger("feeder_bridge.mqtt")

MessageHandler = Callable[[str, bytes], None]


def format_log_message(direction: str, topic: str, payload, **extra) -> str:
    if isinstance(payload, (bytes, bytearray)):
        payload = bytes(payload).decode("utf-8", errors="replace")
    log_msg = {"dir": direction, "topic": topic, "payload": payload, **extra}
    return json.dumps(log_msg, separators=(",", ":"), ensure_ascii=False)


class BrokerClient:
    """
    paho-mqtt connection used by the bridge.

    Handlers are registered per topic before `start()`; the topics are
    (re)subscribed on every successful connection. paho reconnects on its
    own with exponential backoff between `reconnect_min_delay` and
    `reconnect_max_delay` seconds.
    """

    def __init__(self, settings: BridgeSettings):
        self.settings = settings
        self.client: Optional[mqtt.Client] = None
        self._handlers: Dict[str, MessageHandler] = {}
        self._connect_listeners: List[Callable[[], None]] = []
        self._lock = threading.Lock()

    def add_handler(self, topic: str, handler: MessageHandler) -> None:
        if not isinstance(topic, str) or not topic.strip():
            raise TypeError("topic must be a non-empty string")
        with self._lock:
            self._handlers[topic] = handler

    def add_connect_listener(self, listener: Callable[[], None]) -> None:
        self._connect_listeners.append(listener)

    def is_connected(self) -> bool:
        return self.client is not None and self.client.is_connected()

    def _setup_mqtt_client(self) -> None:
        s = self.settings
        self.client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=s.client_id,
            transport=s.transport,
        )
        if s.username:
            self.client.username_pw_set(s.username, s.password)
        if s.use_tls:
            self.client.tls_set()
        self.client.reconnect_delay_set(min_delay=s.reconnect_min_delay, max_delay=s.reconnect_max_delay)

        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.client.on_message = self._on_message

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        if reason_code.is_failure:
            LOG.error("MQTT connect failed: %s", reason_code)
            return
        LOG.info("Connected to broker %s:%s", self.settings.broker_host, self.settings.broker_port)

        with self._lock:
            topics = list(self._handlers)
        for topic in topics:
            result, _mid = client.subscribe(topic, qos=self.settings.qos)
            if result != mqtt.MQTT_ERR_SUCCESS:
                LOG.error("Failed to subscribe to %s: %s", topic, mqtt.error_string(result))
            else:
                LOG.info("Subscribed to %s", topic)

        for listener in self._connect_listeners:
            try:
                listener()
            except Exception:
                LOG.exception("Connect listener failed")

    def _on_disconnect(self, client, userdata, flags, reason_code, properties):
        LOG.warning("Disconnected from broker (rc=%s)", reason_code)

    def _on_message(self, client, userdata, msg):
        with self._lock:
            handler = self._handlers.get(msg.topic)
        if handler is None:
            LOG.debug("Received message on unknown topic %s; ignoring", msg.topic)
            return

        if self.settings.log_messages:
            LOG.info(format_log_message("RECV", msg.topic, msg.payload))

        # an exception escaping here would stop paho's network loop
        try:
            handler(msg.topic, msg.payload)
        except Exception:
            LOG.exception("Error handling message on %s", msg.topic)

    def start(self) -> None:
        s = self.settings
        self._setup_mqtt_client()
        LOG.info(
            "Connecting to MQTT with options: %s",
            json.dumps({
                "host": s.broker_host,
                "port": s.broker_port,
                "protocol": s.protocol,
                "username": s.username,
                "clientId": s.client_id,
            }),
        )
        self.client.connect_async(s.broker_host, s.broker_port, keepalive=s.keepalive)
        self.client.loop_start()

    def stop(self) -> None:
        LOG.info("Stopping MQTT client")
        if self.client is None:
            return
        try:
            self.client.disconnect()
            self.client.loop_stop()
        except Exception as e:
            LOG.debug("Exception while disconnecting MQTT client: %s", e)

    def publish_nowait(self, topic: str, payload: str, qos: int = 1) -> None:
        """Queue a message without waiting; safe from paho callbacks."""
        if self.client is None:
            raise TransportDisconnected("MQTT client not started", topic=topic)
        info = self.client.publish(topic, payload=payload, qos=qos, retain=False)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            LOG.warning("Failed to queue message on %s: %s", topic, mqtt.error_string(info.rc))
        elif self.settings.log_messages:
            LOG.info(format_log_message("SEND", topic, payload, qos=qos))

    def publish(self, topic: str, payload: str, qos: int = 1,
                timeout: Optional[float] = None) -> int:
        """
        Publish and wait for the transport to confirm the hand-off: PUBACK
        for qos 1, PUBCOMP for qos 2, written to the socket for qos 0.
        Raises DeliveryFailed when that does not happen within `timeout`.
        Must not be called from a paho callback.
        """
        if not self.is_connected():
            raise TransportDisconnected(f"Not connected to broker; cannot publish to {topic}", topic=topic)
        if timeout is None:
            timeout = self.settings.publish_timeout

        info = self.client.publish(topic, payload=payload, qos=qos, retain=False)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise DeliveryFailed(f"Publish to {topic} failed: {mqtt.error_string(info.rc)}", topic=topic, rc=info.rc)
        try:
            info.wait_for_publish(timeout=timeout)
        except (RuntimeError, ValueError) as e:
            raise DeliveryFailed(f"Publish to {topic} failed: {e}", topic=topic, rc=info.rc) from e
        if not info.is_published():
            raise DeliveryFailed(f"Publish to {topic} not confirmed within {timeout:.1f}s", topic=topic)

        if self.settings.log_messages:
            LOG.info(format_log_message("SEND", topic, payload, qos=qos, mid=info.mid))
        return info.mid
