import json
import logging

from pathlib import Path
from typing import Any, Dict, Optional

from jsonschema import Draft7Validator
from jsonschema.exceptions import ValidationError as SchemaValidationError
from pydantic import ValidationError

from feeder_bridge.lib.configparser import DEFAULT_FIELD_MAP
from feeder_bridge.lib.schemas import DeviceReadings
from feeder_bridge.lib.errors import MalformedPayload

LOG = logging.getLogger("feeder_bridge.payloads")


def decode_text(payload: Any, topic: str = "") -> str:
    if isinstance(payload, str):
        return payload
    try:
        return bytes(payload).decode("utf-8")
    except (TypeError, UnicodeDecodeError) as e:
        raise MalformedPayload(f"payload is not UTF-8 text: {e}", topic=topic) from e


def load_topic_schema(schema_path: Optional[Path], topic: str) -> Optional[Dict[str, Any]]:
    """
    Load the JSON schema registered for `topic` in a topics file shaped as
    {"topics": {"<topic>": {"schema": {...}}}}. Returns None when the file or
    the entry is missing, so the caller can run without validation.
    """
    if not schema_path:
        LOG.error("validate_schema requested but schema_path not provided")
        return None

    try:
        with Path(schema_path).open("r", encoding="utf-8") as fh:
            top_spec = json.load(fh)
    except (OSError, ValueError) as e:
        LOG.error("Failed to open schema file '%s': %s. Disabling schema validation.", schema_path, e)
        return None

    tinfo = top_spec.get("topics", {}).get(topic)
    if not tinfo:
        LOG.error("Schema file does not contain topic %s. Disabling validation.", topic)
        return None

    schema = tinfo.get("schema")
    if not schema:
        LOG.error("No 'schema' entry for topic %s in schema file. Disabling validation.", topic)
        return None

    LOG.info("Loaded schema for topic %s from %s", topic, schema_path)
    return schema


class StatusPayloadParser:
    """Turns a device status body into `DeviceReadings`.

    The device publishes its own field names; `field_map` maps each reading
    to the wire key it arrives under. Keys outside the map are ignored and
    null values fall back to the reading's default.
    """

    def __init__(self, field_map: Optional[Dict[str, str]] = None,
                 schema: Optional[Dict[str, Any]] = None, topic: str = ""):
        self.field_map = dict(field_map or DEFAULT_FIELD_MAP)
        unknown = set(self.field_map) - set(DeviceReadings.model_fields)
        if unknown:
            raise ValueError(f"unknown reading names in field map: {', '.join(sorted(unknown))}")
        self.topic = topic
        self._validator: Optional[Draft7Validator] = Draft7Validator(schema) if schema else None

    @property
    def validates_schema(self) -> bool:
        return self._validator is not None

    def parse(self, payload: Any) -> DeviceReadings:
        text = decode_text(payload, self.topic)
        try:
            data = json.loads(text)
        except ValueError as e:
            raise MalformedPayload(f"payload is not JSON: {e}", topic=self.topic) from e
        if not isinstance(data, dict):
            raise MalformedPayload("payload is not a JSON object", topic=self.topic)

        if self._validator is not None:
            try:
                self._validator.validate(data)
            except SchemaValidationError as ve:
                raise MalformedPayload(f"schema validation failed: {ve.message}", topic=self.topic) from ve

        values = {}
        for name, wire in self.field_map.items():
            if data.get(wire) is not None:
                values[name] = data[wire]
        try:
            return DeviceReadings.model_validate(values)
        except ValidationError as e:
            raise MalformedPayload(f"invalid readings: {e.error_count()} error(s)", topic=self.topic) from e
