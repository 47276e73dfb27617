import configparser
import os

from pathlib import Path
from typing import Dict, List, Optional


DEFAULT_COMMANDS = ["dispensar_comida", "activar_agua", "status"]

DEFAULT_FIELD_MAP = {
    "food_level": "nivelComida",
    "water_level": "nivelAgua",
    "food_weight": "pesoComida",
    "water_weight": "pesoAgua",
    "pump_active": "bombaActiva",
    "dispensing_food": "dispensandoComida",
}


def _env(name: str) -> Optional[str]:
    val = os.getenv(name)
    if val is None or not val.strip():
        return None
    return val.strip()


class BridgeParser:
    """Reads the bridge INI file. Environment variables win over the file."""

    def __init__(self, filename: str = "config.ini"):
        self.config = configparser.ConfigParser(inline_comment_prefixes=(";",))
        self.config.read(Path(filename))

    def _sec(self, name: str) -> Optional[configparser.SectionProxy]:
        if self.config.has_section(name):
            return self.config[name]
        return None

    def _get(self, section: str, key: str, fallback: str) -> str:
        sec = self._sec(section)
        if sec is None:
            return fallback
        return sec.get(key, fallback=fallback)

    def _getint(self, section: str, key: str, fallback: int) -> int:
        sec = self._sec(section)
        if sec is None:
            return fallback
        return sec.getint(key, fallback=fallback)

    def _getfloat(self, section: str, key: str, fallback: float) -> float:
        sec = self._sec(section)
        if sec is None:
            return fallback
        return sec.getfloat(key, fallback=fallback)

    def _getboolean(self, section: str, key: str, fallback: bool) -> bool:
        sec = self._sec(section)
        if sec is None:
            return fallback
        return sec.getboolean(key, fallback=fallback)

    #  Broker
    def parse_broker_host(self) -> str:
        return _env("MQTT_HOST") or self._get("broker", "host", "localhost")

    def parse_broker_port(self) -> int:
        env_port = _env("MQTT_PORT")
        if env_port is not None:
            return int(env_port)
        return self._getint("broker", "port", 8883)

    def parse_broker_protocol(self) -> str:
        return (_env("MQTT_PROTOCOL") or self._get("broker", "protocol", "mqtts")).lower()

    def parse_broker_username(self) -> Optional[str]:
        return _env("MQTT_USERNAME") or self._get("broker", "username", "") or None

    def parse_broker_password(self) -> Optional[str]:
        return _env("MQTT_PASSWORD") or self._get("broker", "password", "") or None

    def parse_client_id_prefix(self) -> str:
        return self._get("broker", "client_id_prefix", "render-bridge")

    def parse_keepalive(self) -> int:
        return self._getint("broker", "keepalive", 60)

    def parse_reconnect_min_delay(self) -> int:
        return self._getint("broker", "reconnect_min_delay_s", 1)

    def parse_reconnect_max_delay(self) -> int:
        return self._getint("broker", "reconnect_max_delay_s", 120)

    #  Topics
    def parse_state_topic(self) -> str:
        return self._get("topics", "state", "dispensador/estado")

    def parse_confirmation_topic(self) -> str:
        return self._get("topics", "confirmation", "dispensador/confirmacion")

    def parse_connection_topic(self) -> str:
        return self._get("topics", "connection", "dispensador/conexion")

    def parse_command_topic(self) -> str:
        return self._get("topics", "command", "dispensador/comandos")

    #  Bridge behaviour
    def parse_qos(self) -> int:
        return self._getint("bridge", "qos", 1)

    def parse_publish_timeout(self) -> float:
        return self._getfloat("bridge", "publish_timeout_s", 5.0)

    def parse_stale_after(self) -> float:
        return self._getfloat("bridge", "stale_after_s", 30.0)

    def parse_max_confirmations(self) -> int:
        return self._getint("bridge", "max_confirmations", 10)

    def parse_request_status_on_connect(self) -> bool:
        return self._getboolean("bridge", "request_status_on_connect", True)

    def parse_validate_schema(self) -> bool:
        return self._getboolean("bridge", "validate_schema", False)

    def parse_schema_path(self) -> str:
        return self._get("bridge", "schema_path", "shared/mqtt_topics.json")

    def parse_log_messages(self) -> bool:
        return self._getboolean("bridge", "log_messages", False)

    #  Commands
    def parse_allowed_commands(self) -> List[str]:
        raw = self._get("commands", "allowed", "")
        parts = [p.strip() for p in raw.split(",") if p.strip()]
        return parts if parts else list(DEFAULT_COMMANDS)

    #  Wire field names of the device state payload
    def parse_field_map(self) -> Dict[str, str]:
        fields = dict(DEFAULT_FIELD_MAP)
        sec = self._sec("fields")
        if sec is None:
            return fields
        for name in DEFAULT_FIELD_MAP:
            wire = sec.get(name, fallback="").strip()
            if wire:
                fields[name] = wire
        return fields

    #  HTTP
    def parse_http_host(self) -> str:
        return self._get("http", "host", "0.0.0.0")

    def parse_http_port(self) -> int:
        env_port = _env("PORT")
        if env_port is not None:
            return int(env_port)
        return self._getint("http", "port", 3000)

    def parse_cors_origins(self) -> List[str]:
        raw = self._get("http", "cors_origins", "*")
        return [p.strip() for p in raw.split(",") if p.strip()] or ["*"]

    #  Logging
    def parse_log_level(self) -> str:
        return (_env("LOG_LEVEL") or self._get("logging", "level", "INFO")).upper()

    def get_broker_cfg(self) -> Dict[str, object]:
        return {
            "host": self.parse_broker_host(),
            "port": self.parse_broker_port(),
            "protocol": self.parse_broker_protocol(),
            "username": self.parse_broker_username(),
            "password": self.parse_broker_password(),
        }

    def get_topics_map(self) -> Dict[str, str]:
        return {
            "state": self.parse_state_topic(),
            "confirmation": self.parse_confirmation_topic(),
            "connection": self.parse_connection_topic(),
            "command": self.parse_command_topic(),
        }
