"""Map vendor device type strings onto capability descriptors."""

from __future__ import annotations

import logging
from typing import Any

from ..exceptions import UnknownDeviceTypeError
from .base import FALLBACK_DESCRIPTOR, CapabilityDescriptor, DeviceFamily
from .catalog import ModelCatalog, default_model_catalog

_LOGGER = logging.getLogger(__name__)

# Families are tried in this order within each matching pass.
_FAMILY_ORDER: tuple[DeviceFamily, ...] = (
    DeviceFamily.AIR_PURIFIER,
    DeviceFamily.HUMIDIFIER,
    DeviceFamily.FAN,
    DeviceFamily.BULB,
    DeviceFamily.SWITCH,
    DeviceFamily.OUTLET,
)


class DeviceClassifier:
    """Classify device type strings, caching results per type and device."""

    def __init__(self, catalog: ModelCatalog | None = None) -> None:
        """Initialise the classifier with a model catalog."""

        self._catalog = catalog or default_model_catalog()
        self._by_type: dict[str, CapabilityDescriptor] = {}
        self._by_device: dict[str, CapabilityDescriptor] = {}
        self._reported_unknown: set[str] = set()

    def resolve_family(self, type_string: str) -> DeviceFamily | None:
        """Return the family of ``type_string`` or ``None`` when unknown."""

        for family in _FAMILY_ORDER:
            if self._catalog.family_rule(family).matches_prefix(type_string):
                return family
        for family in _FAMILY_ORDER:
            if self._catalog.family_rule(family).matches_model(type_string):
                return family
        return None

    def classify_strict(self, type_string: str) -> CapabilityDescriptor:
        """Classify ``type_string`` or raise ``UnknownDeviceTypeError``."""

        family = self.resolve_family(type_string.strip())
        if family is None:
            raise UnknownDeviceTypeError(type_string)
        return self._build_descriptor(type_string.strip(), family)

    def classify(self, type_string: str) -> CapabilityDescriptor:
        """Classify ``type_string``, falling back to a one-level outlet."""

        key = type_string.strip().upper()
        cached = self._by_type.get(key)
        if cached is not None:
            return cached
        try:
            descriptor = self.classify_strict(type_string)
        except UnknownDeviceTypeError as err:
            if key not in self._reported_unknown:
                self._reported_unknown.add(key)
                _LOGGER.warning("%s", err)
            descriptor = FALLBACK_DESCRIPTOR
        self._by_type[key] = descriptor
        return descriptor

    def descriptor_for(self, device: Any) -> CapabilityDescriptor:
        """Return the cached descriptor for a device snapshot."""

        descriptor = self._by_device.get(device.id)
        if descriptor is None:
            descriptor = self.classify(device.type_string)
            self._by_device[device.id] = descriptor
        return descriptor

    def forget(self, device_id: str) -> None:
        """Drop the cached descriptor of a removed device."""

        self._by_device.pop(device_id, None)

    def _build_descriptor(
        self, type_string: str, family: DeviceFamily
    ) -> CapabilityDescriptor:
        """Combine family defaults with the first matching model tier."""

        rule = self._catalog.family_rule(family)
        values: dict[str, Any] = {
            "speed_levels": rule.default_speed_levels,
            "supports_air_quality": rule.supports_air_quality,
            "supports_filter_life": rule.supports_filter_life,
            "filter_life_format": rule.filter_life_format,
        }
        tier = self._catalog.tier_for(type_string, family)
        if tier is not None:
            overrides = tier.model_dump(exclude={"patterns"}, exclude_none=True)
            values.update(overrides)
        if not family.has_variable_speed:
            values["speed_levels"] = 1
        return CapabilityDescriptor(family=family, **values)
