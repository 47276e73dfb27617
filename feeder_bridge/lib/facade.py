from datetime import datetime
from typing import Any, Callable, Dict, Protocol, Tuple

from feeder_bridge.lib.confirmations import ConfirmationLog
from feeder_bridge.lib.device_state import DeviceStateStore, utcnow
from feeder_bridge.lib.schemas import ConfirmationRecord, DeviceState


class ConnectionStatus(Protocol):
    def is_connected(self) -> bool: ...


class QueryFacade:
    """Read-only view used by the HTTP layer."""

    def __init__(self, store: DeviceStateStore, confirmations: ConfirmationLog,
                 broker: ConnectionStatus, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.confirmations = confirmations
        self.broker = broker
        self._clock = clock

    def get_state(self) -> DeviceState:
        return self.store.snapshot()

    def get_confirmations(self) -> Tuple[ConfirmationRecord, ...]:
        return self.confirmations.recent()

    def get_health(self) -> Dict[str, Any]:
        return {
            "status": "online",
            "transportConnected": bool(self.broker.is_connected()),
            "timestamp": self._clock().isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        }
