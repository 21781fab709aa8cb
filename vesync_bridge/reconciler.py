"""Diff the live device inventory against bound accessories."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import DeviceExclusion
from .const import CONTEXT_DEVICE_KEY, REMOVAL_THRESHOLD
from .device_types import CapabilityDescriptor, DeviceClassifier, DeviceFamily
from .host import Characteristic
from .vendor import Device

_LOGGER = logging.getLogger(__name__)

BRIDGE_NAMESPACE = uuid.UUID("5d1f6a52-8a3c-4c1e-9d7b-2f0b7c3e9a41")


def stable_uuid(device_id: str) -> str:
    """Return the deterministic accessory UUID for ``device_id``."""

    return str(uuid.uuid5(BRIDGE_NAMESPACE, device_id))


class SyncState(str, Enum):
    """Synchronisation state of one binding."""

    IDLE = "idle"
    FETCHING = "fetching"
    APPLYING = "applying"
    FAULTED = "faulted"


class DeviceContext(BaseModel):
    """Accessory context persisted by the host between restarts."""

    model_config = ConfigDict(extra="ignore")

    cid: str
    uuid: str
    device_type: str
    device_name: str = ""
    device_status: str = "off"
    device_region: str | None = None
    config_module: str | None = None
    mac_id: str | None = None
    device_category: str | None = None
    connection_status: str | None = None
    sub_device_no: int | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    config: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_device(cls, device: Device) -> DeviceContext:
        """Capture the identity and last known details of ``device``."""

        return cls(
            cid=device.cid,
            uuid=stable_uuid(device.id),
            device_type=device.type_string,
            device_name=device.name,
            device_status=device.status,
            device_region=device.region,
            config_module=device.config_module,
            mac_id=device.mac_id,
            device_category=device.category,
            connection_status=device.connection_status,
            sub_device_no=device.sub_device_no,
            details=dict(device.raw),
        )

    @classmethod
    def from_storage(cls, data: Mapping[str, Any]) -> DeviceContext | None:
        """Parse a stored context blob; ``None`` when it is unusable."""

        payload = data.get(CONTEXT_DEVICE_KEY, data)
        try:
            return cls.model_validate(payload)
        except ValidationError as err:
            _LOGGER.warning("Ignoring accessory with unreadable context: %s", err)
            return None

    def as_storage(self) -> dict[str, Any]:
        """Serialise the context for the host store."""

        return {CONTEXT_DEVICE_KEY: self.model_dump(mode="json")}

    def to_device(self) -> Device:
        """Rebuild a snapshot from the stored context."""

        return Device(
            cid=self.cid,
            type_string=self.device_type,
            name=self.device_name,
            online=(self.connection_status or "online") == "online",
            status=self.device_status,
            raw=dict(self.details),
            sub_device_no=self.sub_device_no,
            region=self.device_region,
            config_module=self.config_module,
            mac_id=self.mac_id,
            category=self.device_category,
            connection_status=self.connection_status,
        )


@dataclass(eq=False)
class AccessoryBinding:
    """Mutable per-accessory state; guard field updates with ``lock``."""

    device_id: str
    stable_uuid: str
    descriptor: CapabilityDescriptor
    device: Device
    accessory: Any = None
    last_commanded_speed_level: int | None = None
    last_commanded_percentage: float | None = None
    suppress_next_sync: bool = False
    command_sequence: int = 0
    sync_state: SyncState = SyncState.IDLE
    missed_fetches: int = 0
    values: dict[Characteristic, Any] = field(default_factory=dict)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def family(self) -> DeviceFamily:
        """Return the family of the bound device."""

        return self.descriptor.family

    @property
    def display_name(self) -> str:
        """Return the device name shown by the host."""

        return self.device.name or self.device_id

    def clear_commanded_speed(self) -> None:
        """Forget the last commanded speed level and percentage."""

        self.last_commanded_speed_level = None
        self.last_commanded_percentage = None

    def context(self) -> dict[str, Any]:
        """Return the context blob for the host store."""

        return DeviceContext.from_device(self.device).as_storage()


@dataclass(frozen=True)
class ReconcilePlan:
    """Result of one reconcile pass."""

    to_create: tuple[AccessoryBinding, ...] = ()
    to_update: tuple[tuple[AccessoryBinding, Device], ...] = ()
    to_remove: tuple[AccessoryBinding, ...] = ()

    @property
    def is_empty(self) -> bool:
        """Return True when nothing changes."""

        return not (self.to_create or self.to_update or self.to_remove)


class AccessoryReconciler:
    """Compute create, update and remove sets for accessory bindings."""

    def __init__(
        self,
        classifier: DeviceClassifier,
        *,
        exclusions: DeviceExclusion | None = None,
        removal_threshold: int = REMOVAL_THRESHOLD,
    ) -> None:
        """Initialise the reconciler."""

        self._classifier = classifier
        self._exclusions = exclusions or DeviceExclusion()
        self._removal_threshold = max(1, removal_threshold)

    def bind(self, device: Device) -> AccessoryBinding:
        """Create a binding for a newly discovered device."""

        return AccessoryBinding(
            device_id=device.id,
            stable_uuid=stable_uuid(device.id),
            descriptor=self._classifier.descriptor_for(device),
            device=device,
        )

    def restore(self, context: Mapping[str, Any]) -> AccessoryBinding | None:
        """Rebuild a binding from a host-cached accessory context."""

        stored = DeviceContext.from_storage(context)
        if stored is None:
            return None
        binding = self.bind(stored.to_device())
        if binding.stable_uuid != stored.uuid:
            _LOGGER.warning(
                "Cached accessory %s has a mismatched identity; ignoring it",
                stored.device_name or stored.cid,
            )
            return None
        return binding

    def filter_excluded(self, devices: Sequence[Device]) -> list[Device]:
        """Drop devices hidden by the exclusion rules."""

        kept: list[Device] = []
        for device in devices:
            if self._exclusions.excludes(
                device_id=device.id, type_string=device.type_string, name=device.name
            ):
                _LOGGER.info("Excluding %s (%s)", device.name, device.type_string)
                continue
            kept.append(device)
        return kept

    def reconcile(
        self,
        live_devices: Sequence[Device] | None,
        bindings: Mapping[str, AccessoryBinding],
    ) -> ReconcilePlan:
        """Diff ``live_devices`` against ``bindings``.

        ``None`` stands for a failed inventory fetch and never removes a
        binding. A binding missing from ``removal_threshold`` successful
        fetches in a row is queued for removal.
        """

        if live_devices is None:
            _LOGGER.warning(
                "Inventory fetch failed; keeping %s existing accessories",
                len(bindings),
            )
            return ReconcilePlan()

        live: dict[str, Device] = {}
        for device in self.filter_excluded(live_devices):
            if device.id in live:
                _LOGGER.warning("Duplicate device id %s in inventory", device.id)
                continue
            live[device.id] = device

        to_create = tuple(
            self.bind(device)
            for device_id, device in live.items()
            if device_id not in bindings
        )
        to_update: list[tuple[AccessoryBinding, Device]] = []
        to_remove: list[AccessoryBinding] = []
        for device_id, binding in bindings.items():
            device = live.get(device_id)
            if device is not None:
                binding.missed_fetches = 0
                to_update.append((binding, device))
                continue
            binding.missed_fetches += 1
            if binding.missed_fetches >= self._removal_threshold:
                to_remove.append(binding)
            else:
                _LOGGER.info(
                    "%s missing from inventory (%s/%s)",
                    binding.display_name,
                    binding.missed_fetches,
                    self._removal_threshold,
                )

        for binding in to_remove:
            self._classifier.forget(binding.device_id)
        return ReconcilePlan(
            to_create=to_create,
            to_update=tuple(to_update),
            to_remove=tuple(to_remove),
        )
