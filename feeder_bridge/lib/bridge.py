import asyncio
import logging

from datetime import datetime
from typing import Any, Callable, Dict, Optional

from feeder_bridge.lib.commands import CommandDispatcher
from feeder_bridge.lib.confirmations import ConfirmationLog
from feeder_bridge.lib.device_state import DeviceStateStore, utcnow
from feeder_bridge.lib.errors import BridgeError, MalformedPayload
from feeder_bridge.lib.facade import QueryFacade
from feeder_bridge.lib.mqtt_bridge import BrokerClient
from feeder_bridge.lib.notifier import StateNotifier
from feeder_bridge.lib.payloads import StatusPayloadParser, decode_text, load_topic_schema
from feeder_bridge.lib.settings import BridgeSettings

LOG = logging.getLogger("feeder_bridge.bridge")


class FeederBridge:
    """
    Owns the state store, confirmation log, dispatcher, notifier and broker
    connection of one feeder, and routes broker messages between them.
    """

    def __init__(self, settings: BridgeSettings, broker: Optional[Any] = None,
                 clock: Callable[[], datetime] = utcnow):
        self.settings = settings

        schema = None
        if settings.validate_schema:
            schema = load_topic_schema(settings.schema_path, settings.state_topic)
        parser = StatusPayloadParser(settings.field_map, schema=schema, topic=settings.state_topic)

        self.store = DeviceStateStore(parser, stale_after=settings.stale_after, clock=clock)
        self.confirmations = ConfirmationLog(settings.max_confirmations, clock=clock)
        self.broker = broker if broker is not None else BrokerClient(settings)
        self.dispatcher = CommandDispatcher(
            self.broker,
            topic=settings.command_topic,
            allowed=settings.allowed_commands,
            qos=settings.qos,
            timeout=settings.publish_timeout,
        )
        self.notifier = StateNotifier()
        self.queries = QueryFacade(self.store, self.confirmations, self.broker, clock=clock)

        self._routes: Dict[str, Callable[[Any], None]] = {
            settings.state_topic: self._on_state,
            settings.confirmation_topic: self._on_confirmation,
            settings.connection_topic: self._on_connection,
        }
        for topic in self._routes:
            self.broker.add_handler(topic, self.handle_message)
        if settings.request_status_on_connect:
            self.broker.add_connect_listener(self.request_status)

    def handle_message(self, topic: str, payload: Any) -> None:
        """Apply one broker message. Malformed payloads are logged and dropped."""
        route = self._routes.get(topic)
        if route is None:
            LOG.debug("No route for topic %s; ignoring", topic)
            return
        try:
            route(payload)
        except MalformedPayload as e:
            LOG.warning("Discarding message on %s: %s", topic, e)

    def _on_state(self, payload: Any) -> None:
        snapshot = self.store.apply_state_message(payload)
        self.notifier.broadcast_threadsafe(snapshot)

    def _on_confirmation(self, payload: Any) -> None:
        token = decode_text(payload, self.settings.confirmation_topic)
        self.confirmations.record(token)
        if not self.store.apply_acknowledgment(token):
            LOG.info("Confirmation recorded without state change: %s", token)

    def _on_connection(self, payload: Any) -> None:
        token = decode_text(payload, self.settings.connection_topic)
        self.store.apply_connectivity_message(token)

    def request_status(self) -> None:
        """Ask the device to publish its current state."""
        try:
            self.broker.publish_nowait(self.settings.command_topic, "status", qos=self.settings.qos)
        except BridgeError as e:
            LOG.warning("Could not request device status: %s", e)

    def start(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        if loop is not None:
            self.notifier.bind(loop)
        self.broker.start()

    def stop(self) -> None:
        self.broker.stop()
