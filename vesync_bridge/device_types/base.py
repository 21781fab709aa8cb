"""Capability descriptors shared by every device family."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class DeviceFamily(str, Enum):
    """Device categories that decide which characteristics apply."""

    AIR_PURIFIER = "air_purifier"
    HUMIDIFIER = "humidifier"
    FAN = "fan"
    BULB = "bulb"
    OUTLET = "outlet"
    SWITCH = "switch"

    @property
    def has_variable_speed(self) -> bool:
        """Return True for families driven by a discrete speed level."""

        return self in _VARIABLE_SPEED_FAMILIES


_VARIABLE_SPEED_FAMILIES = frozenset(
    {DeviceFamily.AIR_PURIFIER, DeviceFamily.HUMIDIFIER, DeviceFamily.FAN}
)


class FilterLifeFormat(str, Enum):
    """Shape of the filter life field reported by a model."""

    NUMBER = "number"
    PERCENT_OBJECT = "percent_object"
    ABSENT = "absent"


@dataclass(frozen=True)
class CapabilityDescriptor:
    """Immutable feature set derived from a device type string."""

    family: DeviceFamily
    speed_levels: int = 1
    supports_air_quality: bool = False
    supports_pm10: bool = False
    supports_filter_life: bool = False
    filter_life_format: FilterLifeFormat = FilterLifeFormat.ABSENT
    supports_color_temperature: bool = False
    supports_color: bool = False
    supports_power_metering: bool = False
    is_fallback: bool = False

    def __post_init__(self) -> None:
        if self.speed_levels < 1:
            msg = f"speed_levels must be at least 1, got {self.speed_levels}"
            raise ValueError(msg)

    @property
    def has_variable_speed(self) -> bool:
        """Return True when speed commands map onto more than one level."""

        return self.family.has_variable_speed


FALLBACK_DESCRIPTOR = CapabilityDescriptor(family=DeviceFamily.OUTLET, is_fallback=True)
