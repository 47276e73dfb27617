from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from feeder_bridge.lib.settings import BridgeSettings

ENV_OVERRIDES = ("MQTT_HOST", "MQTT_PORT", "MQTT_PROTOCOL", "MQTT_USERNAME",
                 "MQTT_PASSWORD", "PORT", "LOG_LEVEL", "BRIDGE_CONFIG")


class FakeClock:
    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeBroker:
    """Stands in for BrokerClient: records publishes, delivers messages by hand."""

    def __init__(self, connected: bool = True, fail: Optional[Exception] = None):
        self.connected = connected
        self.fail = fail
        self.published: List[Tuple[str, str, int]] = []
        self.queued: List[Tuple[str, str, int]] = []
        self.handlers: Dict[str, Callable[[str, Any], None]] = {}
        self.connect_listeners: List[Callable[[], None]] = []
        self.started = False

    def add_handler(self, topic, handler):
        self.handlers[topic] = handler

    def add_connect_listener(self, listener):
        self.connect_listeners.append(listener)

    def is_connected(self) -> bool:
        return self.connected

    def publish(self, topic, payload, qos=1, timeout=None) -> int:
        if self.fail is not None:
            raise self.fail
        self.published.append((topic, payload, qos))
        return len(self.published)

    def publish_nowait(self, topic, payload, qos=1) -> None:
        self.queued.append((topic, payload, qos))

    def start(self) -> None:
        self.started = True
        for listener in self.connect_listeners:
            listener()

    def stop(self) -> None:
        self.started = False

    def deliver(self, topic: str, payload: Any) -> None:
        self.handlers[topic](topic, payload)


class FakeSocket:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[Any] = []

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise ConnectionError("socket closed")
        self.sent.append(data)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> BridgeSettings:
    return BridgeSettings()


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()
