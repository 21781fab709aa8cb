"""Per-family mapping from device snapshots to characteristic values."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from ..converters import (
    FILTER_LIFE_DEFAULT_FOR_LEVEL,
    FILTER_LIFE_DEFAULT_FOR_REPLACEMENT,
    AirQualityLevel,
    air_quality_label_to_level,
    as_finite_number,
    clamp_density,
    clamp_humidity,
    clamp_percentage,
    color_temp_percent_to_mired,
    needs_filter_replacement,
    normalize_filter_life,
    pm25_to_air_quality_level,
    speed_to_percentage,
)
from ..host import (
    AirPurifierState,
    Characteristic,
    FanState,
    HumidifierState,
    TargetState,
)
from ..vendor import Device
from .base import CapabilityDescriptor, DeviceFamily, FilterLifeFormat

DEFAULT_TARGET_HUMIDITY = 45


def _resolve_payload_value(
    payload: Mapping[str, Any], *keys: str, default: Any = None
) -> Any:
    """Return the first non-``None`` value for ``keys`` in ``payload``."""

    for key in keys:
        value = payload.get(key)
        if value is not None:
            return value
    return default


def _filter_life(payload: Mapping[str, Any], fmt: FilterLifeFormat) -> Any:
    """Read the filter life in the shape ``fmt`` declares; other shapes are unset."""

    value = _resolve_payload_value(payload, "filter_life", "filterLife")
    if fmt is FilterLifeFormat.PERCENT_OBJECT:
        return value if isinstance(value, Mapping) else None
    if fmt is FilterLifeFormat.NUMBER:
        return None if isinstance(value, Mapping) else value
    return None


def _flag(value: Any) -> int:
    """Coerce vendor booleans ("on", 1, True) into 0/1."""

    if isinstance(value, str):
        return 1 if value.strip().lower() in ("on", "true", "1") else 0
    return 1 if value else 0


class FamilyProfile:
    """Base profile; subclasses describe one device family."""

    family: DeviceFamily
    power_characteristic = Characteristic.ACTIVE
    speed_keys: tuple[str, ...] = ()
    modes: tuple[str, ...] = ()
    auto_mode: str | None = None
    manual_mode: str | None = None

    def characteristics(
        self, descriptor: CapabilityDescriptor
    ) -> tuple[Characteristic, ...]:
        """Return the characteristic slots exposed for ``descriptor``."""

        raise NotImplementedError

    def compute(
        self, device: Device, descriptor: CapabilityDescriptor
    ) -> dict[Characteristic, Any]:
        """Compute every characteristic value from a device snapshot."""

        raise NotImplementedError

    def speed_level(self, device: Device) -> int | None:
        """Return the discrete speed level reported by ``device``."""

        if not self.speed_keys:
            return None
        number = as_finite_number(_resolve_payload_value(device.raw, *self.speed_keys))
        if number is None:
            return None
        return int(number)

    def power_value(self, on: bool) -> int | bool:
        """Encode the power state for the family's power characteristic."""

        return int(on)

    def _rotation_speed(
        self, device: Device, descriptor: CapabilityDescriptor
    ) -> float:
        if not device.is_on:
            return 0.0
        return speed_to_percentage(self.speed_level(device), descriptor.speed_levels)


class AirPurifierProfile(FamilyProfile):
    """Air purifier with optional air quality and filter sensors."""

    family = DeviceFamily.AIR_PURIFIER
    speed_keys = ("speed", "fan_level", "level")
    modes = ("auto", "manual", "sleep", "turbo")
    auto_mode = "auto"
    manual_mode = "manual"

    def characteristics(
        self, descriptor: CapabilityDescriptor
    ) -> tuple[Characteristic, ...]:
        slots = [
            Characteristic.ACTIVE,
            Characteristic.CURRENT_AIR_PURIFIER_STATE,
            Characteristic.TARGET_AIR_PURIFIER_STATE,
            Characteristic.ROTATION_SPEED,
            Characteristic.LOCK_PHYSICAL_CONTROLS,
        ]
        if descriptor.supports_air_quality:
            slots += [Characteristic.AIR_QUALITY, Characteristic.PM2_5_DENSITY]
        if descriptor.supports_pm10:
            slots.append(Characteristic.PM10_DENSITY)
        if descriptor.supports_filter_life:
            slots += [
                Characteristic.FILTER_LIFE_LEVEL,
                Characteristic.FILTER_CHANGE_INDICATION,
            ]
        return tuple(slots)

    def compute(
        self, device: Device, descriptor: CapabilityDescriptor
    ) -> dict[Characteristic, Any]:
        raw = device.raw
        on = device.is_on
        mode = str(raw.get("mode") or "").lower()
        values: dict[Characteristic, Any] = {
            Characteristic.ACTIVE: int(on),
            Characteristic.CURRENT_AIR_PURIFIER_STATE: (
                AirPurifierState.PURIFYING_AIR if on else AirPurifierState.INACTIVE
            ),
            Characteristic.TARGET_AIR_PURIFIER_STATE: (
                TargetState.AUTO if mode == self.auto_mode else TargetState.MANUAL
            ),
            Characteristic.ROTATION_SPEED: self._rotation_speed(device, descriptor),
            Characteristic.LOCK_PHYSICAL_CONTROLS: _flag(
                _resolve_payload_value(raw, "child_lock", "display_lock", default=0)
            ),
        }
        if descriptor.supports_air_quality:
            pm25 = _resolve_payload_value(raw, "air_quality_value", "pm25")
            if as_finite_number(pm25) is not None:
                level = pm25_to_air_quality_level(pm25)
            else:
                level = air_quality_label_to_level(raw.get("air_quality"))
                if level is AirQualityLevel.UNKNOWN:
                    level = pm25_to_air_quality_level(0)
            values[Characteristic.AIR_QUALITY] = level
            values[Characteristic.PM2_5_DENSITY] = clamp_density(pm25)
        if descriptor.supports_pm10:
            values[Characteristic.PM10_DENSITY] = clamp_density(raw.get("pm10"))
        if descriptor.supports_filter_life:
            filter_life = _filter_life(raw, descriptor.filter_life_format)
            level = normalize_filter_life(
                filter_life, default=FILTER_LIFE_DEFAULT_FOR_LEVEL
            )
            remaining = normalize_filter_life(
                filter_life, default=FILTER_LIFE_DEFAULT_FOR_REPLACEMENT
            )
            values[Characteristic.FILTER_LIFE_LEVEL] = level
            values[Characteristic.FILTER_CHANGE_INDICATION] = int(
                needs_filter_replacement(remaining)
            )
        return values


class HumidifierProfile(FamilyProfile):
    """Humidifier exposing mist level as rotation speed."""

    family = DeviceFamily.HUMIDIFIER
    speed_keys = ("mist_virtual_level", "mist_level", "speed", "level")
    modes = ("auto", "manual", "sleep", "humidity")
    auto_mode = "auto"
    manual_mode = "manual"

    def characteristics(
        self, descriptor: CapabilityDescriptor
    ) -> tuple[Characteristic, ...]:
        return (
            Characteristic.ACTIVE,
            Characteristic.CURRENT_HUMIDIFIER_STATE,
            Characteristic.TARGET_HUMIDIFIER_STATE,
            Characteristic.ROTATION_SPEED,
            Characteristic.CURRENT_RELATIVE_HUMIDITY,
            Characteristic.HUMIDITY_THRESHOLD,
            Characteristic.WATER_LEVEL,
        )

    def compute(
        self, device: Device, descriptor: CapabilityDescriptor
    ) -> dict[Characteristic, Any]:
        raw = device.raw
        on = device.is_on
        configuration = raw.get("configuration")
        if not isinstance(configuration, Mapping):
            configuration = {}
        target = _resolve_payload_value(
            raw,
            "target_humidity",
            "targetHumidity",
            default=configuration.get("auto_target_humidity"),
        )
        water_level = raw.get("water_level")
        if as_finite_number(water_level) is None:
            water_level = 0 if _flag(raw.get("water_lacks")) else 100
        return {
            Characteristic.ACTIVE: int(on),
            Characteristic.CURRENT_HUMIDIFIER_STATE: (
                HumidifierState.HUMIDIFYING if on else HumidifierState.INACTIVE
            ),
            Characteristic.TARGET_HUMIDIFIER_STATE: 1,
            Characteristic.ROTATION_SPEED: self._rotation_speed(device, descriptor),
            Characteristic.CURRENT_RELATIVE_HUMIDITY: clamp_humidity(
                raw.get("humidity")
            ),
            Characteristic.HUMIDITY_THRESHOLD: clamp_humidity(
                target, default=DEFAULT_TARGET_HUMIDITY
            ),
            Characteristic.WATER_LEVEL: clamp_percentage(water_level),
        }


class FanProfile(FamilyProfile):
    """Tower fan with oscillation and child lock."""

    family = DeviceFamily.FAN
    speed_keys = ("fan_speed_level", "fan_level", "speed", "level")
    modes = ("normal", "auto", "sleep", "turbo")
    auto_mode = "auto"
    manual_mode = "normal"

    def characteristics(
        self, descriptor: CapabilityDescriptor
    ) -> tuple[Characteristic, ...]:
        return (
            Characteristic.ACTIVE,
            Characteristic.CURRENT_FAN_STATE,
            Characteristic.TARGET_FAN_STATE,
            Characteristic.ROTATION_SPEED,
            Characteristic.SWING_MODE,
            Characteristic.LOCK_PHYSICAL_CONTROLS,
        )

    def compute(
        self, device: Device, descriptor: CapabilityDescriptor
    ) -> dict[Characteristic, Any]:
        raw = device.raw
        on = device.is_on
        mode = str(raw.get("mode") or "").lower()
        return {
            Characteristic.ACTIVE: int(on),
            Characteristic.CURRENT_FAN_STATE: (
                FanState.BLOWING_AIR if on else FanState.INACTIVE
            ),
            Characteristic.TARGET_FAN_STATE: (
                TargetState.AUTO if mode == self.auto_mode else TargetState.MANUAL
            ),
            Characteristic.ROTATION_SPEED: self._rotation_speed(device, descriptor),
            Characteristic.SWING_MODE: _flag(
                _resolve_payload_value(
                    raw, "oscillation_state", "oscillation", "swing", default=0
                )
            ),
            Characteristic.LOCK_PHYSICAL_CONTROLS: _flag(
                _resolve_payload_value(raw, "child_lock", "screen_lock", default=0)
            ),
        }


class BulbProfile(FamilyProfile):
    """Dimmable, tunable or colour bulb."""

    family = DeviceFamily.BULB
    power_characteristic = Characteristic.ON

    def power_value(self, on: bool) -> int | bool:
        return on

    def characteristics(
        self, descriptor: CapabilityDescriptor
    ) -> tuple[Characteristic, ...]:
        slots = [Characteristic.ON, Characteristic.BRIGHTNESS]
        if descriptor.supports_color_temperature:
            slots.append(Characteristic.COLOR_TEMPERATURE)
        if descriptor.supports_color:
            slots += [Characteristic.HUE, Characteristic.SATURATION]
        return tuple(slots)

    def compute(
        self, device: Device, descriptor: CapabilityDescriptor
    ) -> dict[Characteristic, Any]:
        raw = device.raw
        values: dict[Characteristic, Any] = {
            Characteristic.ON: device.is_on,
            Characteristic.BRIGHTNESS: clamp_percentage(
                raw.get("brightness"), default=100
            ),
        }
        if descriptor.supports_color_temperature:
            values[Characteristic.COLOR_TEMPERATURE] = color_temp_percent_to_mired(
                _resolve_payload_value(raw, "color_temp", "colorTemp", default=0)
            )
        if descriptor.supports_color:
            color = raw.get("color")
            if not isinstance(color, Mapping):
                color = raw
            hue = as_finite_number(color.get("hue"))
            values[Characteristic.HUE] = (
                0 if hue is None else max(0, min(360, round(hue)))
            )
            values[Characteristic.SATURATION] = clamp_percentage(
                color.get("saturation")
            )
        return values


class OutletProfile(FamilyProfile):
    """Smart plug, optionally with power metering."""

    family = DeviceFamily.OUTLET
    power_characteristic = Characteristic.ON

    def power_value(self, on: bool) -> int | bool:
        return on

    def characteristics(
        self, descriptor: CapabilityDescriptor
    ) -> tuple[Characteristic, ...]:
        slots = [Characteristic.ON, Characteristic.OUTLET_IN_USE]
        if descriptor.supports_power_metering:
            slots += [
                Characteristic.POWER,
                Characteristic.VOLTAGE,
                Characteristic.ENERGY,
            ]
        return tuple(slots)

    def compute(
        self, device: Device, descriptor: CapabilityDescriptor
    ) -> dict[Characteristic, Any]:
        raw = device.raw
        power = as_finite_number(raw.get("power"))
        values: dict[Characteristic, Any] = {
            Characteristic.ON: device.is_on,
            Characteristic.OUTLET_IN_USE: device.is_on and (power is None or power > 0),
        }
        if descriptor.supports_power_metering:
            voltage = as_finite_number(raw.get("voltage"))
            energy = as_finite_number(
                _resolve_payload_value(raw, "energy", "energy_today")
            )
            values[Characteristic.POWER] = round(power or 0.0, 2)
            values[Characteristic.VOLTAGE] = round(voltage or 0.0, 2)
            values[Characteristic.ENERGY] = round(energy or 0.0, 3)
        return values


class SwitchProfile(FamilyProfile):
    """Wall switch or dimmer exposed as a simple on/off slot."""

    family = DeviceFamily.SWITCH
    power_characteristic = Characteristic.ON

    def power_value(self, on: bool) -> int | bool:
        return on

    def characteristics(
        self, descriptor: CapabilityDescriptor
    ) -> tuple[Characteristic, ...]:
        return (Characteristic.ON,)

    def compute(
        self, device: Device, descriptor: CapabilityDescriptor
    ) -> dict[Characteristic, Any]:
        return {Characteristic.ON: device.is_on}


_PROFILES: dict[DeviceFamily, FamilyProfile] = {
    profile.family: profile
    for profile in (
        AirPurifierProfile(),
        HumidifierProfile(),
        FanProfile(),
        BulbProfile(),
        OutletProfile(),
        SwitchProfile(),
    )
}


def profile_for(family: DeviceFamily) -> FamilyProfile:
    """Return the shared profile instance for ``family``."""

    return _PROFILES[family]
