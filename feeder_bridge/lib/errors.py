"""Exception hierarchy for the feeder bridge."""


class BridgeError(Exception):
    """Base exception for all bridge errors."""


class MalformedPayload(BridgeError):
    """A broker message body does not have the expected structure."""

    def __init__(self, message: str, topic: str = "") -> None:
        self.topic = topic
        super().__init__(message)


class InvalidCommand(BridgeError):
    """A client command is empty or not in the allow-list."""

    def __init__(self, message: str, command: str = "") -> None:
        self.command = command
        super().__init__(message)


class DeliveryFailed(BridgeError):
    """The transport could not hand off an outbound message."""

    def __init__(self, message: str, topic: str = "", rc: int | None = None) -> None:
        self.topic = topic
        self.rc = rc
        super().__init__(message)


class TransportDisconnected(DeliveryFailed):
    """The broker connection is down."""
