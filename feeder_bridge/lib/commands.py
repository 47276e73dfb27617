import logging

from typing import Iterable, Optional, Protocol

from pydantic import BaseModel, ConfigDict

from feeder_bridge.lib.configparser import DEFAULT_COMMANDS
from feeder_bridge.lib.errors import DeliveryFailed, InvalidCommand

LOG = logging.getLogger("feeder_bridge.commands")


class Publisher(Protocol):
    def publish(self, topic: str, payload: str, qos: int = 1,
                timeout: Optional[float] = None) -> int: ...


class Command(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str


class CommandDispatcher:
    """
    Validates client commands and forwards them to the device.

    Only names in `allowed` are published. A command is reported as sent once
    the transport confirms the hand-off, which says nothing about the device
    having acted on it: state changes arrive later as acknowledgments.
    """

    def __init__(self, broker: Publisher, topic: str = "dispensador/comandos",
                 allowed: Iterable[str] = DEFAULT_COMMANDS, qos: int = 1,
                 timeout: float = 5.0):
        self.broker = broker
        self.topic = topic
        self.allowed = frozenset(allowed)
        self.qos = qos
        self.timeout = timeout

    def validate(self, command_name: Optional[str]) -> Command:
        if not isinstance(command_name, str) or not command_name.strip():
            raise InvalidCommand("Command not specified", command="")
        name = command_name.strip()
        if name not in self.allowed:
            raise InvalidCommand(f"Command not allowed: {name}", command=name)
        return Command(name=name)

    def submit(self, command_name: Optional[str]) -> Command:
        command = self.validate(command_name)
        try:
            mid = self.broker.publish(self.topic, command.name, qos=self.qos, timeout=self.timeout)
        except DeliveryFailed as e:
            LOG.error("Failed to publish command %s: %s", command.name, e)
            raise
        LOG.info("Command %s published to %s (mid=%s)", command.name, self.topic, mid)
        return command
