"""Tests for device classification and the model catalog."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from vesync_bridge.device_types import (
    DeviceClassifier,
    DeviceFamily,
    FilterLifeFormat,
)
from vesync_bridge.device_types.catalog import load_model_catalog
from vesync_bridge.exceptions import UnknownDeviceTypeError
from vesync_bridge.vendor import Device


@pytest.mark.parametrize(
    ("type_string", "family", "levels"),
    [
        ("Core200S", DeviceFamily.AIR_PURIFIER, 3),
        ("LAP-C201S-AUSR", DeviceFamily.AIR_PURIFIER, 3),
        ("Core300S", DeviceFamily.AIR_PURIFIER, 4),
        ("LAP-C601S-WUS", DeviceFamily.AIR_PURIFIER, 4),
        ("LV-PUR131S", DeviceFamily.AIR_PURIFIER, 3),
        ("LAP-V201S-AASR", DeviceFamily.AIR_PURIFIER, 4),
        ("LUH-A601S-WUSB", DeviceFamily.HUMIDIFIER, 9),
        ("Classic300S", DeviceFamily.HUMIDIFIER, 9),
        ("LEH-S601S-WUS", DeviceFamily.HUMIDIFIER, 9),
        ("LTF-F422S-KEU", DeviceFamily.FAN, 12),
        ("ESL100", DeviceFamily.BULB, 1),
        ("XYD0001", DeviceFamily.BULB, 1),
        ("ESWL01", DeviceFamily.SWITCH, 1),
        ("ESW15-USA", DeviceFamily.OUTLET, 1),
        ("wifi-switch-1.3", DeviceFamily.OUTLET, 1),
    ],
)
def test_classify_known_models(
    type_string: str, family: DeviceFamily, levels: int
) -> None:
    """Known type strings resolve to their family and speed tier."""

    descriptor = DeviceClassifier().classify(type_string)

    assert descriptor.family is family
    assert descriptor.speed_levels == levels
    assert descriptor.is_fallback is False


def test_classify_is_case_insensitive() -> None:
    """Lower-case identifiers classify like their canonical spelling."""

    classifier = DeviceClassifier()

    assert classifier.classify("lap-c301s-wjp") == classifier.classify("LAP-C301S-WJP")


def test_purifier_feature_flags_follow_model_tiers() -> None:
    """Air quality, PM10 and filter formats depend on the model."""

    classifier = DeviceClassifier()
    core200 = classifier.classify("Core200S")
    core600 = classifier.classify("Core600S")
    pur131 = classifier.classify("LV-PUR131S")

    assert core200.supports_air_quality is False
    assert core200.filter_life_format is FilterLifeFormat.NUMBER
    assert core600.supports_air_quality is True
    assert core600.supports_pm10 is True
    assert pur131.supports_air_quality is True
    assert pur131.filter_life_format is FilterLifeFormat.PERCENT_OBJECT
    assert all(d.supports_filter_life for d in (core200, core600, pur131))


def test_bulb_and_outlet_features() -> None:
    """Colour bulbs and metered outlets expose their extra capabilities."""

    classifier = DeviceClassifier()

    assert classifier.classify("ESL100MC").supports_color is True
    assert classifier.classify("ESL100CW").supports_color_temperature is True
    assert classifier.classify("ESL100").supports_color_temperature is False
    assert classifier.classify("ESO15-TB").supports_power_metering is True
    assert classifier.classify("wifi-switch-1.3").supports_power_metering is False


def test_unknown_type_falls_back_to_single_level_outlet(
    caplog: pytest.LogCaptureFixture,
) -> None:
    """Unrecognised models become outlets and are reported once."""

    classifier = DeviceClassifier()

    with caplog.at_level(logging.WARNING):
        first = classifier.classify("Mystery-9000")
        second = classifier.classify("mystery-9000")

    assert first is second
    assert first.family is DeviceFamily.OUTLET
    assert first.speed_levels == 1
    assert first.is_fallback is True
    assert sum("Mystery-9000" in record.getMessage() for record in caplog.records) == 1


def test_classify_strict_raises_for_unknown_types() -> None:
    """The strict variant surfaces the unknown type instead of falling back."""

    with pytest.raises(UnknownDeviceTypeError):
        DeviceClassifier().classify_strict("Mystery-9000")


def test_descriptor_is_cached_per_device_id() -> None:
    """A device keeps the descriptor computed at first sight."""

    classifier = DeviceClassifier()
    device = Device(
        cid="cid-1", type_string="Core300S", name="Bedroom", online=True, status="on"
    )

    first = classifier.descriptor_for(device)
    assert classifier.descriptor_for(device) is first

    classifier.forget(device.id)
    assert classifier.descriptor_for(device) == first


def test_custom_catalog_file(tmp_path: Path) -> None:
    """A catalog file can add families' models and tiers."""

    payload = {
        "families": [
            {"family": "air_purifier", "prefixes": ["AP-"], "default_speed_levels": 2},
            {"family": "humidifier"},
            {"family": "fan"},
            {"family": "bulb"},
            {"family": "switch"},
            {"family": "outlet", "models": ["PLUG"]},
        ],
        "tiers": [{"patterns": ["AP-MAX"], "speed_levels": 6}],
    }
    path = tmp_path / "models.json"
    path.write_text(json.dumps(payload), encoding="utf-8")

    classifier = DeviceClassifier(load_model_catalog(path))

    assert classifier.classify("AP-MINI").speed_levels == 2
    assert classifier.classify("AP-MAX-1").speed_levels == 6
    assert classifier.classify("SMART-PLUG").family is DeviceFamily.OUTLET
