"""Interfaces for the home-automation host that exposes accessories."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Mapping
from enum import Enum, IntEnum
from typing import Any, Protocol


class Characteristic(str, Enum):
    """Characteristic slots written by the bridge."""

    ACTIVE = "Active"
    ON = "On"
    CURRENT_AIR_PURIFIER_STATE = "CurrentAirPurifierState"
    TARGET_AIR_PURIFIER_STATE = "TargetAirPurifierState"
    CURRENT_HUMIDIFIER_STATE = "CurrentHumidifierDehumidifierState"
    TARGET_HUMIDIFIER_STATE = "TargetHumidifierDehumidifierState"
    CURRENT_FAN_STATE = "CurrentFanState"
    TARGET_FAN_STATE = "TargetFanState"
    ROTATION_SPEED = "RotationSpeed"
    SWING_MODE = "SwingMode"
    LOCK_PHYSICAL_CONTROLS = "LockPhysicalControls"
    AIR_QUALITY = "AirQuality"
    PM2_5_DENSITY = "PM2_5Density"
    PM10_DENSITY = "PM10Density"
    FILTER_LIFE_LEVEL = "FilterLifeLevel"
    FILTER_CHANGE_INDICATION = "FilterChangeIndication"
    CURRENT_RELATIVE_HUMIDITY = "CurrentRelativeHumidity"
    HUMIDITY_THRESHOLD = "RelativeHumidityHumidifierThreshold"
    WATER_LEVEL = "WaterLevel"
    BRIGHTNESS = "Brightness"
    COLOR_TEMPERATURE = "ColorTemperature"
    HUE = "Hue"
    SATURATION = "Saturation"
    OUTLET_IN_USE = "OutletInUse"
    POWER = "Power"
    VOLTAGE = "Voltage"
    ENERGY = "Energy"


class AirPurifierState(IntEnum):
    """Values of ``CurrentAirPurifierState``."""

    INACTIVE = 0
    IDLE = 1
    PURIFYING_AIR = 2


class TargetState(IntEnum):
    """Values shared by the purifier and fan target state slots."""

    MANUAL = 0
    AUTO = 1


class HumidifierState(IntEnum):
    """Values of ``CurrentHumidifierDehumidifierState``."""

    INACTIVE = 0
    IDLE = 1
    HUMIDIFYING = 2


class FanState(IntEnum):
    """Values of ``CurrentFanState``."""

    INACTIVE = 0
    IDLE = 1
    BLOWING_AIR = 2


ReadHandler = Callable[[], Awaitable[Any]]
WriteHandler = Callable[[Any], Awaitable[None]]


class HostAccessory(Protocol):
    """Accessory object owned by the host."""

    uuid: str
    display_name: str
    context: dict[str, Any]

    def update_characteristic(self, characteristic: Characteristic, value: Any) -> None:
        """Push ``value`` into a characteristic slot."""

    def on_get(self, characteristic: Characteristic, handler: ReadHandler) -> None:
        """Register a lazy read handler."""

    def on_set(self, characteristic: Characteristic, handler: WriteHandler) -> None:
        """Register a write handler invoked on user commands."""


class AccessoryHost(Protocol):
    """Registry that creates, updates and removes accessories by UUID.

    Methods may return awaitables; callers await them when they do.
    """

    def cached_accessories(self) -> Iterable[HostAccessory]:
        """Return accessories restored from the host's context store."""

    def create_accessory(
        self,
        uuid: str,
        display_name: str,
        characteristics: Iterable[Characteristic],
        context: Mapping[str, Any],
    ) -> HostAccessory | Awaitable[HostAccessory]:
        """Create and register a new accessory."""

    def update_accessory(self, accessory: HostAccessory) -> Any:
        """Persist an accessory whose context changed."""

    def remove_accessory(self, accessory: HostAccessory) -> Any:
        """Unregister an accessory."""
