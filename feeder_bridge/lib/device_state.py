import logging
import threading

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from feeder_bridge.lib.payloads import StatusPayloadParser
from feeder_bridge.lib.schemas import DeviceState

LOG = logging.getLogger("feeder_bridge.state")

STALE_AFTER_S = 30.0

# acknowledgment token -> (relay field, new value)
ACKNOWLEDGMENTS: Dict[str, Tuple[str, bool]] = {
    "comida:dispensando": ("dispensing_food", True),
    "comida:completado": ("dispensing_food", False),
    "agua:activada": ("pump_active", True),
    "agua:desactivada": ("pump_active", False),
}

ONLINE_TOKEN = "online"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeviceStateStore:
    """
    Holds the one authoritative DeviceState of the feeder.

    Every update swaps in a new immutable DeviceState under the lock, so a
    reader always sees the fields of a single message. `connected` is derived
    again on each read: a snapshot older than `stale_after` seconds reports
    the device as disconnected, whatever the last connectivity message said.
    """

    def __init__(self, parser: Optional[StatusPayloadParser] = None,
                 stale_after: float = STALE_AFTER_S,
                 clock: Callable[[], datetime] = utcnow):
        self.parser = parser or StatusPayloadParser()
        self.stale_after = stale_after
        self._clock = clock
        self._lock = threading.Lock()
        self._state = DeviceState()

    def _is_stale(self, state: DeviceState, now: datetime) -> bool:
        if state.last_updated is None:
            return True
        return (now - state.last_updated).total_seconds() > self.stale_after

    def _snapshot_locked(self, now: datetime) -> DeviceState:
        state = self._state
        if state.connected and self._is_stale(state, now):
            return state.model_copy(update={"connected": False})
        return state

    def apply_state_message(self, payload: Any) -> DeviceState:
        """
        Replace every reading with the payload's values and mark the device
        connected. Raises MalformedPayload, leaving the state untouched, when
        the payload cannot be parsed.
        """
        readings = self.parser.parse(payload)
        now = self._clock()
        with self._lock:
            self._state = DeviceState(**readings.model_dump(), last_updated=now, connected=True)
            snapshot = self._snapshot_locked(now)
        LOG.debug("State updated: %s", readings.model_dump(by_alias=True))
        return snapshot

    def apply_acknowledgment(self, token: str) -> bool:
        """Flip the relay named by `token`. Returns False for unknown tokens."""
        ack = ACKNOWLEDGMENTS.get(token.strip())
        if ack is None:
            LOG.debug("Unrecognized acknowledgment %r; no state change", token)
            return False
        field, value = ack
        with self._lock:
            if getattr(self._state, field) != value:
                self._state = self._state.model_copy(update={field: value})
        return True

    def apply_connectivity_message(self, token: str) -> bool:
        online = token.strip() == ONLINE_TOKEN
        with self._lock:
            self._state = self._state.model_copy(update={"connected": online})
        LOG.info("Device connectivity: %s", token.strip())
        return online

    def snapshot(self) -> DeviceState:
        now = self._clock()
        with self._lock:
            return self._snapshot_locked(now)
