"""Data models for the device model catalog."""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field

from .base import DeviceFamily, FilterLifeFormat

_DEFAULT_DATA_PATH = (
    Path(__file__).resolve().parent.parent / "data" / "device_models.json"
)


class FamilyRule(BaseModel):
    """Match rules and defaults for one device family."""

    family: DeviceFamily
    prefixes: list[str] = Field(default_factory=list)
    exact: list[str] = Field(default_factory=list)
    models: list[str] = Field(default_factory=list)
    default_speed_levels: int = Field(default=1, ge=1)
    supports_air_quality: bool = False
    supports_filter_life: bool = False
    filter_life_format: FilterLifeFormat = FilterLifeFormat.ABSENT

    def matches_prefix(self, type_string: str) -> bool:
        """Return True when ``type_string`` starts with a family prefix."""

        upper = type_string.upper()
        if any(upper == exact.upper() for exact in self.exact):
            return True
        return any(upper.startswith(prefix.upper()) for prefix in self.prefixes)

    def matches_model(self, type_string: str) -> bool:
        """Return True when a known model name occurs in ``type_string``."""

        upper = type_string.upper()
        return any(model.upper() in upper for model in self.models)


class ModelTier(BaseModel):
    """Per-model overrides; the first tier with a matching pattern applies."""

    patterns: list[str]
    speed_levels: int | None = Field(default=None, ge=1)
    supports_air_quality: bool | None = None
    supports_pm10: bool | None = None
    filter_life_format: FilterLifeFormat | None = None
    supports_color_temperature: bool | None = None
    supports_color: bool | None = None
    supports_power_metering: bool | None = None

    def matches(self, type_string: str) -> bool:
        """Return True when any pattern occurs in ``type_string``."""

        upper = type_string.upper()
        return any(pattern.upper() in upper for pattern in self.patterns)


class ModelCatalog(BaseModel):
    """Collection of family rules and model tiers."""

    families: list[FamilyRule]
    tiers: list[ModelTier] = Field(default_factory=list)

    def family_rule(self, family: DeviceFamily) -> FamilyRule:
        """Retrieve the rule for ``family``."""

        for rule in self.families:
            if rule.family is family:
                return rule
        raise KeyError(family)

    def tier_for(self, type_string: str, family: DeviceFamily) -> ModelTier | None:
        """Return the first tier matching ``type_string`` for ``family``."""

        rule = self.family_rule(family)
        for tier in self.tiers:
            if not tier.matches(type_string):
                continue
            if any(
                rule.matches_model(pattern) or rule.matches_prefix(pattern)
                for pattern in tier.patterns
            ):
                return tier
        return None


def load_model_catalog(path: Path | None = None) -> ModelCatalog:
    """Load the model catalog definition from JSON."""

    data_path = path or _DEFAULT_DATA_PATH
    with data_path.open("r", encoding="utf-8") as fp:
        payload = json.load(fp)
    return ModelCatalog.model_validate(payload)


@lru_cache(maxsize=1)
def default_model_catalog() -> ModelCatalog:
    """Return the bundled catalog, parsed once per process."""

    return load_model_catalog()
