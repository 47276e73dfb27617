"""Pydantic data models for device readings, state and acknowledgments."""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class DeviceReadings(BaseModel):
    """Sensor and relay values carried by one device status message."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    food_level: Optional[float] = None
    water_level: Optional[float] = None
    food_weight: Optional[float] = None
    water_weight: Optional[float] = None
    pump_active: bool = False
    dispensing_food: bool = False


class DeviceState(DeviceReadings):
    """Readings plus bridge-side bookkeeping. Instances are never mutated."""

    last_updated: Optional[datetime] = None
    connected: bool = False

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ConfirmationRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    timestamp: datetime

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
