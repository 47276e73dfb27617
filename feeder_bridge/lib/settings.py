import logging
import secrets

from pathlib import Path
from typing import Dict, List, Optional

from feeder_bridge.lib.configparser import BridgeParser, DEFAULT_COMMANDS, DEFAULT_FIELD_MAP

LOG = logging.getLogger("feeder_bridge.settings")

PROTOCOLS = ("mqtt", "mqtts", "ws", "wss")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class BridgeSettings:
    def __init__(self, config_file: str = "config.ini"):
        self.config_file = config_file

        self._broker_host: str = "localhost"
        self._broker_port: int = 8883
        self._protocol: str = "mqtts"
        self.username: Optional[str] = None
        self.password: Optional[str] = None
        self.client_id: str = "render-bridge"
        self.keepalive: int = 60
        self.reconnect_min_delay: int = 1
        self.reconnect_max_delay: int = 120

        self.state_topic: str = "dispensador/estado"
        self.confirmation_topic: str = "dispensador/confirmacion"
        self.connection_topic: str = "dispensador/conexion"
        self.command_topic: str = "dispensador/comandos"

        self._qos: int = 1
        self._publish_timeout: float = 5.0
        self._stale_after: float = 30.0
        self._max_confirmations: int = 10
        self.request_status_on_connect: bool = True
        self.validate_schema: bool = False
        self.schema_path: Optional[Path] = None
        self.log_messages: bool = False

        self._allowed_commands: List[str] = list(DEFAULT_COMMANDS)
        self.field_map: Dict[str, str] = dict(DEFAULT_FIELD_MAP)

        self.http_host: str = "0.0.0.0"
        self.http_port: int = 3000
        self.cors_origins: List[str] = ["*"]
        self._log_level: str = "INFO"

    @property
    def broker_host(self) -> str:
        return self._broker_host

    @broker_host.setter
    def broker_host(self, val: str) -> None:
        if not isinstance(val, str) or not val.strip():
            raise TypeError("broker_host must be a non-empty string")
        self._broker_host = val

    @property
    def broker_port(self) -> int:
        return self._broker_port

    @broker_port.setter
    def broker_port(self, val: int) -> None:
        if not isinstance(val, int) or val <= 0:
            raise TypeError("broker_port must be a positive integer")
        self._broker_port = val

    @property
    def protocol(self) -> str:
        return self._protocol

    @protocol.setter
    def protocol(self, val: str) -> None:
        if val not in PROTOCOLS:
            raise ValueError(f"protocol must be one of {', '.join(PROTOCOLS)}")
        self._protocol = val

    @property
    def use_tls(self) -> bool:
        return self._protocol in ("mqtts", "wss")

    @property
    def transport(self) -> str:
        return "websockets" if self._protocol in ("ws", "wss") else "tcp"

    @property
    def qos(self) -> int:
        return self._qos

    @qos.setter
    def qos(self, val: int) -> None:
        if val not in (0, 1, 2):
            raise ValueError("qos must be 0, 1 or 2")
        self._qos = val

    @property
    def publish_timeout(self) -> float:
        return self._publish_timeout

    @publish_timeout.setter
    def publish_timeout(self, val: float) -> None:
        if not isinstance(val, (int, float)) or val <= 0:
            raise ValueError("publish_timeout must be a positive number")
        self._publish_timeout = float(val)

    @property
    def stale_after(self) -> float:
        return self._stale_after

    @stale_after.setter
    def stale_after(self, val: float) -> None:
        if not isinstance(val, (int, float)) or val <= 0:
            raise ValueError("stale_after must be a positive number")
        self._stale_after = float(val)

    @property
    def max_confirmations(self) -> int:
        return self._max_confirmations

    @max_confirmations.setter
    def max_confirmations(self, val: int) -> None:
        if not isinstance(val, int) or val <= 0:
            raise ValueError("max_confirmations must be a positive integer")
        self._max_confirmations = val

    @property
    def allowed_commands(self) -> List[str]:
        return list(self._allowed_commands)

    @allowed_commands.setter
    def allowed_commands(self, val: List[str]) -> None:
        if not val or not all(isinstance(c, str) and c for c in val):
            raise ValueError("allowed_commands must be a non-empty list of strings")
        self._allowed_commands = list(val)

    @property
    def log_level(self) -> str:
        return self._log_level

    @log_level.setter
    def log_level(self, val: str) -> None:
        if val not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        self._log_level = val

    def read_config(self) -> None:
        parser = BridgeParser(self.config_file)

        broker = parser.get_broker_cfg()
        self.broker_host = broker["host"]
        self.broker_port = broker["port"]
        self.protocol = broker["protocol"]
        self.username = broker["username"]
        self.password = broker["password"]
        self.client_id = f"{parser.parse_client_id_prefix()}-{secrets.token_hex(3)}"
        self.keepalive = parser.parse_keepalive()
        self.reconnect_min_delay = parser.parse_reconnect_min_delay()
        self.reconnect_max_delay = parser.parse_reconnect_max_delay()

        topics = parser.get_topics_map()
        self.state_topic = topics["state"]
        self.confirmation_topic = topics["confirmation"]
        self.connection_topic = topics["connection"]
        self.command_topic = topics["command"]

        self.qos = parser.parse_qos()
        self.publish_timeout = parser.parse_publish_timeout()
        self.stale_after = parser.parse_stale_after()
        self.max_confirmations = parser.parse_max_confirmations()
        self.request_status_on_connect = parser.parse_request_status_on_connect()
        self.validate_schema = parser.parse_validate_schema()
        schema_path = Path(parser.parse_schema_path())
        if not schema_path.is_absolute():
            schema_path = (Path(self.config_file).resolve().parent / schema_path).resolve()
        self.schema_path = schema_path
        self.log_messages = parser.parse_log_messages()

        self.allowed_commands = parser.parse_allowed_commands()
        self.field_map = parser.parse_field_map()

        self.http_host = parser.parse_http_host()
        self.http_port = parser.parse_http_port()
        self.cors_origins = parser.parse_cors_origins()
        self.log_level = parser.parse_log_level()

        LOG.debug(
            "Config loaded: host=%s port=%s protocol=%s client_id=%s qos=%s commands=%s",
            self.broker_host,
            self.broker_port,
            self.protocol,
            self.client_id,
            self.qos,
            ",".join(self._allowed_commands),
        )
