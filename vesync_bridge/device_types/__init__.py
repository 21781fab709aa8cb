"""Device classification and per-family characteristic profiles."""

from .base import (
    FALLBACK_DESCRIPTOR,
    CapabilityDescriptor,
    DeviceFamily,
    FilterLifeFormat,
)
from .classifier import DeviceClassifier
from .profiles import FamilyProfile, profile_for

__all__ = [
    "FALLBACK_DESCRIPTOR",
    "CapabilityDescriptor",
    "DeviceClassifier",
    "DeviceFamily",
    "FamilyProfile",
    "FilterLifeFormat",
    "profile_for",
]
