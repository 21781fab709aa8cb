"""Interfaces and snapshots for the vendor cloud client."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Protocol, runtime_checkable


class VendorDevice(Protocol):
    """Opaque async device handle exposed by the vendor client."""

    async def get_details(self) -> Mapping[str, Any] | bool:
        """Fetch the latest detail payload."""

    async def turn_on(self) -> bool:
        """Power the device on."""

    async def turn_off(self) -> bool:
        """Power the device off."""

    async def change_speed(self, level: int) -> bool:
        """Set the discrete speed or mist level."""

    async def set_mode(self, mode: str) -> bool:
        """Switch the operating mode."""


@runtime_checkable
class VendorClient(Protocol):
    """Account level client; ``fetch_inventory`` refreshes ``devices``."""

    devices: Sequence[VendorDevice]

    async def login(self) -> bool:
        """Authenticate against the cloud API."""

    async def fetch_inventory(self) -> bool:
        """Refresh the device list in place."""


def _attribute(source: Any, *names: str, default: Any = None) -> Any:
    """Return the first non-``None`` attribute or mapping key in ``names``."""

    for name in names:
        if isinstance(source, Mapping):
            value = source.get(name)
        else:
            value = getattr(source, name, None)
        if value is not None:
            return value
    return default


def device_identifier(cid: str, sub_device_no: int | None) -> str:
    """Return the bridge identifier for a device or one of its sub-devices."""

    if sub_device_no is None:
        return cid
    return f"{cid}_{sub_device_no}"


def _normalise_status(value: Any) -> str:
    """Coerce vendor power flags into ``"on"`` or ``"off"``."""

    if isinstance(value, bool):
        return "on" if value else "off"
    if isinstance(value, (int, float)):
        return "on" if value else "off"
    if isinstance(value, str) and value.strip().lower() in ("on", "true", "1"):
        return "on"
    return "off"


@dataclass(frozen=True)
class Device:
    """Read-only snapshot of a vendor device."""

    cid: str
    type_string: str
    name: str
    online: bool
    status: str
    raw: Mapping[str, Any] = field(default_factory=dict)
    sub_device_no: int | None = None
    region: str | None = None
    config_module: str | None = None
    mac_id: str | None = None
    category: str | None = None
    connection_status: str | None = None
    handle: VendorDevice | None = field(default=None, compare=False, repr=False)

    @property
    def id(self) -> str:
        """Return the identifier used to key bindings."""

        return device_identifier(self.cid, self.sub_device_no)

    @property
    def is_on(self) -> bool:
        """Return True when the device reported power on."""

        return self.status == "on"

    @classmethod
    def from_vendor(
        cls, handle: Any, details: Mapping[str, Any] | None = None
    ) -> Device:
        """Normalise a vendor device object (or payload) into a snapshot."""

        cid = _attribute(handle, "cid", "uuid")
        if cid is None:
            msg = "Vendor device is missing a cid"
            raise KeyError(msg)
        sub_device_no = _attribute(handle, "sub_device_no", "subDeviceNo")
        raw: dict[str, Any] = dict(_attribute(handle, "details", default={}) or {})
        if details:
            raw.update(details)
        connection_status = _attribute(
            raw, "connection_status", "connectionStatus"
        ) or _attribute(handle, "connection_status", "connectionStatus")
        status = _attribute(raw, "device_status", "deviceStatus") or _attribute(
            handle, "device_status", "deviceStatus", default="off"
        )
        name = _attribute(handle, "device_name", "deviceName", default=str(cid))
        return cls(
            cid=str(cid),
            type_string=str(
                _attribute(handle, "device_type", "deviceType", default="")
            ),
            name=str(name).strip(),
            online=(connection_status or "online") == "online",
            status=_normalise_status(status),
            raw=MappingProxyType(raw),
            sub_device_no=(int(sub_device_no) if sub_device_no is not None else None),
            region=_attribute(handle, "device_region", "deviceRegion"),
            config_module=_attribute(handle, "config_module", "configModule"),
            mac_id=_attribute(handle, "mac_id", "macId"),
            category=_attribute(handle, "device_category", "deviceCategory"),
            connection_status=connection_status,
            handle=handle,
        )
