import logging
import threading

from collections import deque
from datetime import datetime
from typing import Callable, Deque, Tuple

from feeder_bridge.lib.device_state import utcnow
from feeder_bridge.lib.schemas import ConfirmationRecord

LOG = logging.getLogger("feeder_bridge.confirmations")

MAX_CONFIRMATIONS = 10


class ConfirmationLog:
    """Most recent device acknowledgments, newest first."""

    def __init__(self, capacity: int = MAX_CONFIRMATIONS,
                 clock: Callable[[], datetime] = utcnow):
        if capacity <= 0:
            raise ValueError("capacity must be a positive integer")
        self.capacity = capacity
        self._clock = clock
        self._lock = threading.Lock()
        # appendleft on a bounded deque drops the oldest entry from the right
        self._records: Deque[ConfirmationRecord] = deque(maxlen=capacity)

    def record(self, message: str) -> ConfirmationRecord:
        entry = ConfirmationRecord(message=message, timestamp=self._clock())
        with self._lock:
            self._records.appendleft(entry)
        return entry

    def recent(self) -> Tuple[ConfirmationRecord, ...]:
        with self._lock:
            return tuple(self._records)
