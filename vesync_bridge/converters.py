"""Pure conversions between vendor encodings and characteristic values.

Every function here is total: it accepts any input, including ``None``,
``NaN`` and values of the wrong type, and returns a usable value without
raising.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from enum import IntEnum
from typing import Any

FILTER_LIFE_DEFAULT_FOR_REPLACEMENT = 100
FILTER_LIFE_DEFAULT_FOR_LEVEL = 0
FILTER_REPLACEMENT_THRESHOLD = 10

DENSITY_MAX = 1000

MIN_KELVIN = 2700
MAX_KELVIN = 6500
MIN_MIRED = 140
MAX_MIRED = 500

# Tolerance for percentages that were rounded to two decimals.
_LEVEL_EPSILON = 1e-3


class AirQualityLevel(IntEnum):
    """Five-step air quality scale exposed to the host."""

    UNKNOWN = 0
    EXCELLENT = 1
    GOOD = 2
    FAIR = 3
    INFERIOR = 4
    POOR = 5


_PM25_BUCKETS: tuple[tuple[float, AirQualityLevel], ...] = (
    (12, AirQualityLevel.EXCELLENT),
    (35, AirQualityLevel.GOOD),
    (55, AirQualityLevel.FAIR),
    (150, AirQualityLevel.INFERIOR),
)

_AIR_QUALITY_LABELS: dict[str, AirQualityLevel] = {
    "excellent": AirQualityLevel.EXCELLENT,
    "very good": AirQualityLevel.EXCELLENT,
    "good": AirQualityLevel.GOOD,
    "moderate": AirQualityLevel.FAIR,
    "fair": AirQualityLevel.FAIR,
    "inferior": AirQualityLevel.INFERIOR,
    "poor": AirQualityLevel.INFERIOR,
    "bad": AirQualityLevel.INFERIOR,
    "very poor": AirQualityLevel.POOR,
    "very bad": AirQualityLevel.POOR,
    "hazardous": AirQualityLevel.POOR,
}


def as_finite_number(value: Any) -> float | None:
    """Return ``value`` as a finite float, or ``None`` when it is not one."""

    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, (int, float)):
        return None
    number = float(value)
    if not math.isfinite(number):
        return None
    return number


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves rounded towards +inf."""

    return math.floor(value + 0.5)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def speed_to_percentage(level: Any, max_levels: int) -> float:
    """Map a discrete level in ``1..max_levels`` onto ``0..100``.

    ``max_levels=3`` yields 33.33, 66.67 and 100. Missing, non-positive or
    non-numeric levels map to 0.
    """

    number = as_finite_number(level)
    if number is None or number <= 0 or max_levels < 1:
        return 0.0
    number = min(number, max_levels)
    return round(number * 100 / max_levels, 2)


def percentage_to_speed(pct: Any, max_levels: int) -> int:
    """Map a percentage onto the discrete level whose bucket contains it.

    Level ``k`` covers the span ``((k - 1) * step, k * step]`` with
    ``step = 100 / max_levels``, so 80% on a three level device is level 3.
    Any positive percentage yields at least level 1; 0 yields 0.
    """

    number = as_finite_number(pct)
    if number is None or max_levels < 1:
        return 0
    number = _clamp(number, 0, 100)
    if number <= 0:
        return 0
    scaled = number * max_levels / 100
    level = math.ceil(scaled - _LEVEL_EPSILON)
    return int(_clamp(level, 1, max_levels))


def pm25_to_air_quality_level(pm25: Any) -> AirQualityLevel:
    """Bucket a PM2.5 density into the five-step air quality scale."""

    number = as_finite_number(pm25)
    if number is None or number < 0:
        number = 0.0
    for upper_bound, level in _PM25_BUCKETS:
        if number <= upper_bound:
            return level
    return AirQualityLevel.POOR


def air_quality_label_to_level(label: Any) -> AirQualityLevel:
    """Normalise a vendor air quality label or index into the scale."""

    number = as_finite_number(label)
    if number is not None:
        level = round_half_up(number)
        if AirQualityLevel.EXCELLENT <= level <= AirQualityLevel.POOR:
            return AirQualityLevel(level)
        return AirQualityLevel.UNKNOWN
    if isinstance(label, str):
        return _AIR_QUALITY_LABELS.get(label.strip().lower(), AirQualityLevel.UNKNOWN)
    return AirQualityLevel.UNKNOWN


def clamp_density(value: Any) -> int:
    """Round a particulate density and clamp it to ``0..1000``."""

    number = as_finite_number(value)
    if number is None:
        return 0
    return int(_clamp(round_half_up(number), 0, DENSITY_MAX))


def clamp_percentage(value: Any, default: int = 0) -> int:
    """Round and clamp ``value`` to ``0..100``; ``default`` when invalid."""

    number = as_finite_number(value)
    if number is None:
        return default
    return int(_clamp(round_half_up(number), 0, 100))


def normalize_filter_life(raw: Any, *, default: int) -> int:
    """Normalise a filter life payload to an integer percentage.

    Accepts a number or a mapping carrying ``percent``. Anything else
    yields ``default``: use ``FILTER_LIFE_DEFAULT_FOR_REPLACEMENT`` when
    deciding on a replacement and ``FILTER_LIFE_DEFAULT_FOR_LEVEL`` when
    reporting the level.
    """

    if isinstance(raw, Mapping):
        raw = raw.get("percent")
    return clamp_percentage(raw, default=default)


def needs_filter_replacement(normalized_percent: Any) -> bool:
    """Return True when the filter life is strictly below 10%."""

    number = as_finite_number(normalized_percent)
    if number is None:
        return False
    return number < FILTER_REPLACEMENT_THRESHOLD


def kelvin_to_mired(kelvin: Any) -> int:
    """Convert a colour temperature in kelvin to host mireds."""

    number = as_finite_number(kelvin)
    if number is None or number <= 0:
        return MAX_MIRED
    return int(_clamp(round_half_up(1_000_000 / number), MIN_MIRED, MAX_MIRED))


def mired_to_kelvin(mired: Any) -> int:
    """Convert host mireds to a device colour temperature in kelvin."""

    number = as_finite_number(mired)
    if number is None or number <= 0:
        return MIN_KELVIN
    return int(_clamp(round_half_up(1_000_000 / number), MIN_KELVIN, MAX_KELVIN))


def color_temp_percent_to_mired(percent: Any) -> int:
    """Convert a device colour temperature percentage (0 warm) to mireds."""

    pct = clamp_percentage(percent)
    kelvin = MIN_KELVIN + (MAX_KELVIN - MIN_KELVIN) * pct / 100
    return kelvin_to_mired(kelvin)


def mired_to_color_temp_percent(mired: Any) -> int:
    """Convert host mireds to a device colour temperature percentage."""

    kelvin = mired_to_kelvin(mired)
    return clamp_percentage((kelvin - MIN_KELVIN) * 100 / (MAX_KELVIN - MIN_KELVIN))


def clamp_humidity(value: Any, default: int = 0) -> int:
    """Clamp a relative humidity reading to ``0..100``."""

    return clamp_percentage(value, default=default)
