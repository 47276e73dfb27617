import asyncio
import logging

from concurrent.futures import Future
from typing import Any, Dict, Optional, Protocol, Set

from feeder_bridge.lib.schemas import DeviceState

LOG = logging.getLogger("feeder_bridge.notifier")

STATE_CHANGED = "stateChanged"


class Subscriber(Protocol):
    async def send_json(self, data: Any) -> None: ...


def state_event(state: DeviceState) -> Dict[str, Any]:
    return {"event": STATE_CHANGED, "data": state.to_json()}


class StateNotifier:
    """
    Pushes `stateChanged` events to connected clients.

    The subscriber set belongs to the event loop; other threads go through
    `broadcast_threadsafe`. Delivery is at most once per event: a client that
    was not connected during a broadcast never sees it.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._subscribers: Set[Subscriber] = set()

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def subscribe(self, subscriber: Subscriber, snapshot: DeviceState) -> bool:
        """Register and push `snapshot`. Returns False if that first push failed."""
        self._subscribers.add(subscriber)
        LOG.info("Push subscriber connected (%d total)", len(self._subscribers))
        try:
            await subscriber.send_json(state_event(snapshot))
        except Exception as e:
            LOG.warning("Initial push failed, dropping subscriber: %s", e)
            self.unsubscribe(subscriber)
            return False
        return True

    def unsubscribe(self, subscriber: Subscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.discard(subscriber)
            LOG.info("Push subscriber disconnected (%d left)", len(self._subscribers))

    async def broadcast(self, state: DeviceState) -> int:
        """Send `state` to every subscriber. Returns how many got it."""
        sockets = list(self._subscribers)
        if not sockets:
            return 0
        data = state_event(state)
        # Send concurrently to avoid one slow client blocking others
        results = await asyncio.gather(
            *(ws.send_json(data) for ws in sockets),
            return_exceptions=True,
        )
        delivered = 0
        for ws, res in zip(sockets, results):
            if isinstance(res, Exception):
                LOG.debug("Dropping subscriber after failed push: %s", res)
                self._subscribers.discard(ws)
            else:
                delivered += 1
        return delivered

    def broadcast_threadsafe(self, state: DeviceState) -> Optional[Future]:
        if self._loop is None or self._loop.is_closed():
            LOG.debug("No event loop bound; skipping broadcast")
            return None
        return asyncio.run_coroutine_threadsafe(self.broadcast(state), self._loop)
