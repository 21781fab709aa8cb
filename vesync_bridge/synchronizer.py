"""Per-accessory state synchronisation and write commands.

A sync pulls a detail snapshot from the vendor, converts it through the
family profile and writes every characteristic slot. Commands update the
slots optimistically and set ``suppress_next_sync`` so the next sync does
not overwrite them with a snapshot that predates the change. A command
issued while a fetch is in flight bumps ``command_sequence`` and the
fetched snapshot is discarded.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import replace
from datetime import timedelta
from typing import Any

from .const import SPEED_SETTLE_DELAY
from .converters import (
    MAX_MIRED,
    MIN_MIRED,
    mired_to_color_temp_percent,
    percentage_to_speed,
)
from .device_types import profile_for
from .exceptions import (
    AuthError,
    DeviceUnavailableError,
    TransientNetworkError,
    ValidationError,
    classify_error,
)
from .host import Characteristic, TargetState
from .quota import QuotaManager
from .reconciler import AccessoryBinding, SyncState
from .retry import RetryContext, RetryPolicy
from .throttle import CallThrottle
from .vendor import Device

_LOGGER = logging.getLogger(__name__)

WRITE_COMMANDS: dict[Characteristic, str] = {
    Characteristic.ACTIVE: "command_active",
    Characteristic.ON: "command_on",
    Characteristic.ROTATION_SPEED: "command_speed",
    Characteristic.TARGET_AIR_PURIFIER_STATE: "command_target_state",
    Characteristic.TARGET_FAN_STATE: "command_target_state",
    Characteristic.HUMIDITY_THRESHOLD: "command_target_humidity",
    Characteristic.BRIGHTNESS: "command_brightness",
    Characteristic.COLOR_TEMPERATURE: "command_color_temperature",
    Characteristic.HUE: "command_hue",
    Characteristic.SATURATION: "command_saturation",
    Characteristic.SWING_MODE: "command_swing",
    Characteristic.LOCK_PHYSICAL_CONTROLS: "command_child_lock",
}


def _validate_number(value: Any, low: float, high: float, *, name: str) -> float:
    """Return ``value`` as a float inside ``[low, high]`` or raise."""

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        msg = f"{name} must be a number, got {value!r}"
        raise ValidationError(msg)
    number = float(value)
    if number != number or number in (float("inf"), float("-inf")):
        msg = f"{name} must be finite, got {value!r}"
        raise ValidationError(msg)
    if not low <= number <= high:
        msg = f"{name} must be between {low:g} and {high:g}, got {value!r}"
        raise ValidationError(msg)
    return number


def _validate_flag(value: Any, *, name: str) -> bool:
    """Return ``value`` as a bool when it is a bool, 0 or 1."""

    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    msg = f"{name} must be 0 or 1, got {value!r}"
    raise ValidationError(msg)


class DeviceStateSynchronizer:
    """Drive the sync state machine and write path of every binding."""

    def __init__(
        self,
        *,
        retry: RetryPolicy,
        is_initialized: Callable[[], bool],
        quota: QuotaManager | None = None,
        throttle: CallThrottle | None = None,
        speed_settle_delay: timedelta = SPEED_SETTLE_DELAY,
        on_auth_error: Callable[[], None] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialise the synchronizer with its collaborators."""

        self._retry = retry
        self._is_initialized = is_initialized
        self._quota = quota
        self._throttle = throttle
        self._settle_delay = speed_settle_delay
        self._on_auth_error = on_auth_error
        self._sleep = sleep

    # Read path

    async def sync(self, binding: AccessoryBinding) -> bool:
        """Refresh one accessory from the vendor; never raises."""

        if not self._is_initialized():
            _LOGGER.debug(
                "Skipping sync of %s before initialisation", binding.display_name
            )
            return False
        if binding.sync_state is SyncState.FAULTED:
            _LOGGER.debug("Skipping sync of faulted %s", binding.display_name)
            return False

        async with binding.lock:
            binding.sync_state = SyncState.FETCHING
            sequence = binding.command_sequence

        try:
            details = await self._call(binding, "get_details", operation="get details")
            snapshot = self._snapshot(binding, details)
        except Exception as err:  # noqa: BLE001 - sync failures are logged only
            await self._sync_failed(binding, err)
            return False

        async with binding.lock:
            if binding.suppress_next_sync:
                binding.suppress_next_sync = False
                binding.sync_state = SyncState.IDLE
                _LOGGER.debug(
                    "Skipping update of %s after a recent command", binding.display_name
                )
                return True
            if binding.command_sequence != sequence:
                binding.sync_state = SyncState.IDLE
                _LOGGER.debug(
                    "Discarding snapshot of %s fetched across a command",
                    binding.display_name,
                )
                return True

            binding.sync_state = SyncState.APPLYING
            try:
                values = self._compute(binding, snapshot)
            except Exception as err:  # noqa: BLE001 - payload faults are terminal
                binding.sync_state = SyncState.FAULTED
                _LOGGER.error(
                    "Unable to apply details of %s; marking it faulted: %s",
                    binding.display_name,
                    err,
                )
                return False
            binding.device = snapshot
            self._write(binding, values)
            binding.sync_state = SyncState.IDLE
        return True

    def read(self, binding: AccessoryBinding, characteristic: Characteristic) -> Any:
        """Return the current value of a slot, computing it when unset."""

        if characteristic not in binding.values:
            values = self._compute(binding, binding.device)
            for key, value in values.items():
                binding.values.setdefault(key, value)
        return binding.values.get(characteristic)

    def reset_fault(self, binding: AccessoryBinding) -> None:
        """Return a faulted binding to ``Idle`` so syncing resumes."""

        if binding.sync_state is SyncState.FAULTED:
            _LOGGER.info("Resuming sync of %s", binding.display_name)
            binding.sync_state = SyncState.IDLE

    def _snapshot(self, binding: AccessoryBinding, details: Any) -> Device:
        """Build a snapshot from a detail payload or the refreshed handle."""

        handle = binding.device.handle
        if isinstance(details, Mapping):
            return Device.from_vendor(handle, details)
        return Device.from_vendor(handle)

    def _compute(
        self, binding: AccessoryBinding, snapshot: Device
    ) -> dict[Characteristic, Any]:
        """Compute slot values, preferring the last commanded percentage."""

        profile = profile_for(binding.family)
        values = profile.compute(snapshot, binding.descriptor)
        if not binding.descriptor.has_variable_speed:
            return values
        if not snapshot.is_on:
            binding.clear_commanded_speed()
            return values
        if (
            binding.last_commanded_speed_level is not None
            and binding.last_commanded_percentage is not None
            and profile.speed_level(snapshot) == binding.last_commanded_speed_level
        ):
            values[Characteristic.ROTATION_SPEED] = binding.last_commanded_percentage
        return values

    def _write(
        self, binding: AccessoryBinding, values: Mapping[Characteristic, Any]
    ) -> None:
        """Store values on the binding and push them to the host accessory."""

        for characteristic, value in values.items():
            binding.values[characteristic] = value
            if binding.accessory is not None:
                binding.accessory.update_characteristic(characteristic, value)

    async def _sync_failed(self, binding: AccessoryBinding, err: Exception) -> None:
        """Log a sync failure and move the binding to its next state."""

        classified = classify_error(err)

        async with binding.lock:
            if isinstance(classified, DeviceUnavailableError):
                binding.sync_state = SyncState.IDLE
                _LOGGER.warning(
                    "%s is unavailable; keeping its last known state: %s",
                    binding.display_name,
                    err,
                )
            elif isinstance(classified, AuthError):
                binding.sync_state = SyncState.IDLE
                _LOGGER.warning(
                    "Session rejected while syncing %s: %s", binding.display_name, err
                )
                if self._on_auth_error is not None:
                    self._on_auth_error()
            elif isinstance(classified, TransientNetworkError):
                binding.sync_state = SyncState.IDLE
                _LOGGER.error("Failed to sync %s: %s", binding.display_name, err)
            else:
                binding.sync_state = SyncState.FAULTED
                _LOGGER.error(
                    "Failed to sync %s; marking it faulted: %s",
                    binding.display_name,
                    err,
                )

    # Write path

    async def command_speed(self, binding: AccessoryBinding, percentage: Any) -> None:
        """Set the rotation speed (or mist level) from a percentage."""

        pct = _validate_number(percentage, 0, 100, name="Rotation speed")
        if not binding.descriptor.has_variable_speed:
            msg = f"{binding.display_name} does not support speed control"
            raise ValidationError(msg)

        if pct == 0:
            async with binding.lock:
                binding.clear_commanded_speed()
            await self._set_power(binding, False)
            return

        if not binding.device.is_on:
            await self._set_power(binding, True)
            delay = self._settle_delay.total_seconds()
            if delay > 0:
                await self._sleep(delay)

        level = percentage_to_speed(pct, binding.descriptor.speed_levels)
        async with binding.lock:
            binding.suppress_next_sync = True
            binding.command_sequence += 1
            self._write(binding, {Characteristic.ROTATION_SPEED: pct})
            binding.last_commanded_speed_level = level
            binding.last_commanded_percentage = pct

        operation = f"change speed to level {level}"
        try:
            await self._call(binding, "change_speed", level, operation=operation)
        except Exception as err:
            async with binding.lock:
                binding.clear_commanded_speed()
                binding.suppress_next_sync = False
            _LOGGER.error(
                "Failed to %s for %s: %s", operation, binding.display_name, err
            )
            raise

    async def command_active(self, binding: AccessoryBinding, value: Any) -> None:
        """Handle writes to ``Active``."""

        await self._set_power(binding, _validate_flag(value, name="Active"))

    async def command_on(self, binding: AccessoryBinding, value: Any) -> None:
        """Handle writes to ``On``."""

        await self._set_power(binding, _validate_flag(value, name="On"))

    async def command_mode(self, binding: AccessoryBinding, mode: Any) -> None:
        """Switch to one of the family's named modes."""

        profile = profile_for(binding.family)
        normalized = str(mode).strip().lower() if isinstance(mode, str) else None
        if normalized not in profile.modes:
            msg = f"{binding.display_name} does not support mode {mode!r}"
            raise ValidationError(msg)

        optimistic: dict[Characteristic, Any] = {}
        target = (
            TargetState.AUTO if normalized == profile.auto_mode else TargetState.MANUAL
        )
        for characteristic in (
            Characteristic.TARGET_AIR_PURIFIER_STATE,
            Characteristic.TARGET_FAN_STATE,
        ):
            if characteristic in profile.characteristics(binding.descriptor):
                optimistic[characteristic] = target
        await self._command(
            binding,
            "set_mode",
            normalized,
            operation=f"set mode to {normalized}",
            optimistic=optimistic,
        )

    async def command_target_state(self, binding: AccessoryBinding, value: Any) -> None:
        """Map an auto/manual target state write onto a mode change."""

        auto = _validate_flag(value, name="Target state")
        profile = profile_for(binding.family)
        mode = profile.auto_mode if auto else profile.manual_mode
        if mode is None:
            msg = f"{binding.display_name} has no automatic mode"
            raise ValidationError(msg)
        await self.command_mode(binding, mode)

    async def command_target_humidity(
        self, binding: AccessoryBinding, value: Any
    ) -> None:
        """Set the humidifier target humidity."""

        humidity = round(_validate_number(value, 0, 100, name="Target humidity"))
        await self._command(
            binding,
            "set_target_humidity",
            humidity,
            operation=f"set target humidity to {humidity}%",
            optimistic={Characteristic.HUMIDITY_THRESHOLD: humidity},
        )

    async def command_brightness(self, binding: AccessoryBinding, value: Any) -> None:
        """Set bulb brightness; 0 turns the bulb off."""

        brightness = round(_validate_number(value, 0, 100, name="Brightness"))
        if brightness == 0:
            await self._set_power(binding, False)
            return
        await self._command(
            binding,
            "set_brightness",
            brightness,
            operation=f"set brightness to {brightness}%",
            optimistic={Characteristic.BRIGHTNESS: brightness},
        )

    async def command_color_temperature(
        self, binding: AccessoryBinding, value: Any
    ) -> None:
        """Set the colour temperature from host mireds."""

        mired = round(
            _validate_number(value, MIN_MIRED, MAX_MIRED, name="Color temperature")
        )
        percent = mired_to_color_temp_percent(mired)
        await self._command(
            binding,
            "set_color_temperature",
            percent,
            operation=f"set color temperature to {mired} mired",
            optimistic={Characteristic.COLOR_TEMPERATURE: mired},
        )

    async def command_hue(self, binding: AccessoryBinding, value: Any) -> None:
        """Set the hue while keeping the current saturation."""

        hue = round(_validate_number(value, 0, 360, name="Hue"))
        saturation = binding.values.get(Characteristic.SATURATION, 100)
        await self._set_color(binding, hue, saturation)

    async def command_saturation(self, binding: AccessoryBinding, value: Any) -> None:
        """Set the saturation while keeping the current hue."""

        saturation = round(_validate_number(value, 0, 100, name="Saturation"))
        hue = binding.values.get(Characteristic.HUE, 0)
        await self._set_color(binding, hue, saturation)

    async def command_swing(self, binding: AccessoryBinding, value: Any) -> None:
        """Enable or disable oscillation."""

        enabled = _validate_flag(value, name="Swing mode")
        await self._command(
            binding,
            "set_oscillation",
            enabled,
            operation=f"turn oscillation {'on' if enabled else 'off'}",
            optimistic={Characteristic.SWING_MODE: int(enabled)},
        )

    async def command_child_lock(self, binding: AccessoryBinding, value: Any) -> None:
        """Enable or disable the physical control lock."""

        enabled = _validate_flag(value, name="Lock physical controls")
        await self._command(
            binding,
            "set_child_lock",
            enabled,
            operation=f"turn child lock {'on' if enabled else 'off'}",
            optimistic={Characteristic.LOCK_PHYSICAL_CONTROLS: int(enabled)},
        )

    async def _set_color(
        self, binding: AccessoryBinding, hue: int, saturation: int
    ) -> None:
        await self._command(
            binding,
            "set_color",
            hue,
            saturation,
            operation=f"set color to hue {hue} saturation {saturation}",
            optimistic={Characteristic.HUE: hue, Characteristic.SATURATION: saturation},
        )

    async def _set_power(self, binding: AccessoryBinding, on: bool) -> None:
        """Turn the device on or off with an optimistic power update."""

        profile = profile_for(binding.family)
        optimistic: dict[Characteristic, Any] = {
            profile.power_characteristic: profile.power_value(on)
        }
        if not on and binding.descriptor.has_variable_speed:
            optimistic[Characteristic.ROTATION_SPEED] = 0
        await self._command(
            binding,
            "turn_on" if on else "turn_off",
            operation=f"turn {'on' if on else 'off'}",
            optimistic=optimistic,
            status="on" if on else "off",
        )

    async def _command(
        self,
        binding: AccessoryBinding,
        method: str,
        *args: Any,
        operation: str,
        optimistic: Mapping[Characteristic, Any],
        status: str | None = None,
    ) -> None:
        """Apply ``optimistic`` locally, then issue the vendor call."""

        async with binding.lock:
            binding.suppress_next_sync = True
            binding.command_sequence += 1
            self._write(binding, optimistic)
            if status is not None:
                binding.device = replace(binding.device, status=status)
        try:
            await self._call(binding, method, *args, operation=operation)
        except Exception as err:
            async with binding.lock:
                binding.suppress_next_sync = False
            _LOGGER.error(
                "Failed to %s for %s: %s", operation, binding.display_name, err
            )
            raise

    async def _call(
        self, binding: AccessoryBinding, method: str, *args: Any, operation: str
    ) -> Any:
        """Invoke a vendor method through the throttle and retry policy."""

        handle = binding.device.handle
        if handle is None:
            msg = f"{binding.display_name} is not in the current device inventory"
            raise DeviceUnavailableError(msg)
        function = getattr(handle, method, None)
        if not callable(function):
            msg = f"{binding.display_name} does not support {method}"
            raise ValidationError(msg)
        if self._quota is not None and not self._quota.can_make_call(method):
            msg = f"Daily API quota exhausted; skipped {operation}"
            raise TransientNetworkError(msg)

        async def _attempt() -> Any:
            if self._throttle is not None:
                await self._throttle.wait_turn(method)
            if self._quota is not None:
                self._quota.record_call(method)
            result = await function(*args)
            if result is False:
                msg = f"{method} reported failure"
                raise TransientNetworkError(msg)
            return result

        async def _retried() -> Any:
            return await self._retry.execute(
                _attempt, RetryContext(binding.display_name, operation)
            )

        if self._throttle is None:
            return await _retried()
        return await self._throttle.share((binding.device_id, method, args), _retried)
