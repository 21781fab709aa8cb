"""Coordinator tying the session, inventory, reconciler and syncs together."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import replace
from datetime import date
from typing import Any

from .config import BridgeConfig
from .device_types import DeviceClassifier, profile_for
from .exceptions import (
    InitializationError,
    RetryExhaustedError,
    TransientNetworkError,
    is_auth_error,
)
from .host import AccessoryHost, Characteristic, HostAccessory
from .quota import QuotaManager
from .reconciler import AccessoryBinding, AccessoryReconciler, ReconcilePlan
from .retry import RetryContext, RetryPolicy
from .session import BackoffLimits, SessionManager
from .synchronizer import WRITE_COMMANDS, DeviceStateSynchronizer
from .throttle import CallThrottle
from .vendor import Device, VendorClient

_LOGGER = logging.getLogger(__name__)

_INVENTORY_CONTEXT = RetryContext("device inventory", "fetch devices")


async def _maybe_await(result: Any) -> Any:
    """Await ``result`` when the host returned an awaitable."""

    if inspect.isawaitable(result):
        return await result
    return result


class BridgeCoordinator:
    """Own the accessory bindings and drive initialisation and refreshes."""

    def __init__(
        self,
        *,
        client: VendorClient,
        host: AccessoryHost,
        config: BridgeConfig,
        classifier: DeviceClassifier | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        today: Callable[[], date] = date.today,
    ) -> None:
        """Initialise the coordinator with its collaborators."""

        config.apply_logging()
        self._client = client
        self._host = host
        self._config = config
        self._loop = loop
        self._sleep = sleep
        self.quota = QuotaManager(
            enabled=config.quota_enabled,
            buffer_percentage=config.quota_buffer_percentage,
            today=today,
        )
        self.throttle = CallThrottle(config.min_call_interval, clock=clock, sleep=sleep)
        self.session = SessionManager(
            client,
            freshness_window=config.freshness_window,
            limits=BackoffLimits(
                base_ms=config.base_backoff_ms,
                max_ms=config.max_backoff_ms,
                auth_ceiling_ms=config.auth_backoff_ceiling_ms,
            ),
            clock=clock,
            sleep=sleep,
            quota=self.quota,
        )
        self.retry = RetryPolicy(config.max_retries)
        self.classifier = classifier or DeviceClassifier()
        self.reconciler = AccessoryReconciler(
            self.classifier,
            exclusions=config.exclude,
            removal_threshold=config.removal_threshold,
        )
        self.synchronizer = DeviceStateSynchronizer(
            retry=self.retry,
            is_initialized=lambda: self._initialized,
            quota=self.quota,
            throttle=self.throttle,
            speed_settle_delay=config.speed_settle_delay,
            on_auth_error=self.session.invalidate,
            sleep=sleep,
        )
        self.bindings: dict[str, AccessoryBinding] = {}
        self._initialized = False
        self._restored = False
        self._ready = asyncio.Event()
        self._ready_result = False
        self._refresh_lock = asyncio.Lock()
        self._refresh_task: asyncio.TimerHandle | None = None
        self._pending_tasks: set[asyncio.Task[Any]] = set()

    @property
    def is_initialized(self) -> bool:
        """Return True once the first inventory has been reconciled."""

        return self._initialized

    @property
    def is_refreshing(self) -> bool:
        """Return True while a refresh holds the lock or a tick is still running."""

        return self._refresh_lock.locked() or bool(self._pending_tasks)

    async def is_ready(self) -> bool:
        """Wait for initialisation to finish; return True when it succeeded."""

        await self._ready.wait()
        return self._ready_result

    async def async_initialize(self) -> bool:
        """Run login, inventory, reconcile and the first sync pass.

        The periodic refresh is scheduled afterwards whether or not the
        sequence succeeded, so a failed start is retried on the next tick.
        """

        try:
            async with self._refresh_lock:
                await self._async_restore_cached_accessories()
                if not await self.session.ensure_login():
                    msg = "Unable to log in to the vendor API"
                    raise InitializationError(msg)
                if not await self._async_refresh_inventory():
                    msg = "Unable to fetch the device inventory"
                    raise InitializationError(msg)
                await self._async_sync_all()
        except Exception as err:  # noqa: BLE001 - reported through is_ready
            _LOGGER.error("Initialisation of %s failed: %s", self._config.name, err)
            self._finish_initialization(False)
        else:
            _LOGGER.info(
                "%s initialised with %s accessories",
                self._config.name,
                len(self.bindings),
            )
            self._finish_initialization(True)
        self.async_schedule_refresh(self.async_refresh)
        return self._ready_result

    async def async_refresh(self) -> bool:
        """Run one timer tick: login, inventory, reconcile and syncs."""

        async with self._refresh_lock:
            if not await self.session.ensure_login():
                _LOGGER.warning("Skipping refresh; not logged in")
                return False
            fetched = await self._async_refresh_inventory()
            if not self._initialized:
                return False
            await self._async_sync_all()
            if fetched and not self._ready_result:
                self._finish_initialization(True)
            return fetched

    def async_schedule_refresh(
        self, callback: Callable[[], Awaitable[Any] | None]
    ) -> asyncio.TimerHandle:
        """Schedule recurring refresh callbacks."""

        loop = self._loop or asyncio.get_running_loop()
        interval = self._config.update_interval.total_seconds()

        def _wrapper() -> None:
            self._refresh_task = loop.call_later(interval, _wrapper)
            if self.is_refreshing:
                _LOGGER.debug("Skipping refresh tick; previous refresh still running")
                return
            task = callback()
            if isinstance(task, Coroutine):
                task_obj = loop.create_task(task)
                self._pending_tasks.add(task_obj)
                task_obj.add_done_callback(self._pending_tasks.discard)

        if self._refresh_task is not None:
            self._refresh_task.cancel()
        self._refresh_task = loop.call_later(interval, _wrapper)
        return self._refresh_task

    def cancel_refresh(self) -> None:
        """Cancel any scheduled refresh callbacks."""

        if self._refresh_task is not None:
            self._refresh_task.cancel()
            self._refresh_task = None

    async def async_shutdown(self) -> None:
        """Stop the timer and let in-flight refreshes finish."""

        self.cancel_refresh()
        if self._pending_tasks:
            await asyncio.gather(*self._pending_tasks, return_exceptions=True)

    def _finish_initialization(self, success: bool) -> None:
        self._ready_result = success
        self._ready.set()

    async def _async_refresh_inventory(self) -> bool:
        """Fetch the inventory and apply the reconcile plan."""

        devices = await self._async_fetch_inventory()
        plan = self.reconciler.reconcile(devices, self.bindings)
        await self._async_apply_plan(plan)
        if devices is None:
            return False
        self._initialized = True
        return True

    async def _async_fetch_inventory(self) -> list[Device] | None:
        """Return the live devices, or ``None`` when the fetch failed."""

        try:
            handles = await self._fetch_with_session_recovery()
        except Exception as err:  # noqa: BLE001 - a failed fetch is not fatal
            _LOGGER.error("Failed to fetch the device inventory: %s", err)
            return None

        devices: list[Device] = []
        for handle in handles:
            try:
                devices.append(Device.from_vendor(handle))
            except (KeyError, ValueError, TypeError) as err:
                _LOGGER.warning("Skipping inventory entry without identity: %s", err)
        self.quota.set_device_count(len(devices))
        _LOGGER.debug("Inventory returned %s devices", len(devices))
        return devices

    async def _fetch_with_session_recovery(self) -> list[Any]:
        """Fetch devices; on an expired session log in again and retry once."""

        async def _fetch() -> list[Any]:
            await self.throttle.wait_turn("fetch_inventory")
            self.quota.record_call("fetch_inventory")
            if not await self._client.fetch_inventory():
                msg = "Device inventory fetch reported failure"
                raise TransientNetworkError(msg)
            return list(self._client.devices)

        try:
            return await self.retry.execute(_fetch, _INVENTORY_CONTEXT)
        except Exception as err:
            cause = err.last_error if isinstance(err, RetryExhaustedError) else err
            if cause is None or not is_auth_error(cause):
                raise
            _LOGGER.warning("Session expired while fetching devices; logging in again")
            self.session.invalidate()
            if not await self.session.ensure_login(force=True):
                raise
            return await self.retry.execute(_fetch, _INVENTORY_CONTEXT)

    async def _async_restore_cached_accessories(self) -> None:
        """Bind accessories the host restored from its context store."""

        if self._restored:
            return
        self._restored = True
        for accessory in list(self._host.cached_accessories()):
            binding = self.reconciler.restore(accessory.context)
            if binding is None or binding.stable_uuid != accessory.uuid:
                _LOGGER.warning(
                    "Removing cached accessory %s with unusable context",
                    accessory.display_name,
                )
                await _maybe_await(self._host.remove_accessory(accessory))
                continue
            binding.accessory = accessory
            self._register_handlers(binding)
            self.bindings[binding.device_id] = binding
            _LOGGER.debug("Restored cached accessory %s", binding.display_name)

    async def _async_apply_plan(self, plan: ReconcilePlan) -> None:
        """Create, update and remove host accessories for ``plan``."""

        for binding in plan.to_remove:
            self.bindings.pop(binding.device_id, None)
            if binding.accessory is not None:
                await _maybe_await(self._host.remove_accessory(binding.accessory))
            _LOGGER.info("Removed accessory %s", binding.display_name)

        for binding, device in plan.to_update:
            async with binding.lock:
                if binding.suppress_next_sync:
                    # Keep the commanded power state until the next sync settles it.
                    device = replace(device, status=binding.device.status)
                binding.device = device
            self.synchronizer.reset_fault(binding)
            if binding.accessory is not None:
                binding.accessory.context.update(binding.context())
                await _maybe_await(self._host.update_accessory(binding.accessory))

        for binding in plan.to_create:
            profile = profile_for(binding.family)
            binding.accessory = await _maybe_await(
                self._host.create_accessory(
                    binding.stable_uuid,
                    binding.display_name,
                    profile.characteristics(binding.descriptor),
                    binding.context(),
                )
            )
            self._register_handlers(binding)
            self.bindings[binding.device_id] = binding
            _LOGGER.info(
                "Added %s accessory %s", binding.family.value, binding.display_name
            )

    def _register_handlers(self, binding: AccessoryBinding) -> None:
        """Attach read and write handlers for every exposed characteristic."""

        accessory: HostAccessory = binding.accessory
        profile = profile_for(binding.family)
        for characteristic in profile.characteristics(binding.descriptor):
            accessory.on_get(
                characteristic, self._read_handler(binding, characteristic)
            )
            command = WRITE_COMMANDS.get(characteristic)
            if command is not None:
                accessory.on_set(characteristic, self._write_handler(binding, command))

    def _read_handler(
        self, binding: AccessoryBinding, characteristic: Characteristic
    ) -> Callable[[], Awaitable[Any]]:
        async def _read() -> Any:
            return self.synchronizer.read(binding, characteristic)

        return _read

    def _write_handler(
        self, binding: AccessoryBinding, command: str
    ) -> Callable[[Any], Awaitable[None]]:
        handler = getattr(self.synchronizer, command)

        async def _write(value: Any) -> None:
            if not await self.is_ready():
                msg = f"{self._config.name} failed to initialise"
                raise InitializationError(msg)
            await handler(binding, value)

        return _write

    async def _async_sync_all(self) -> None:
        """Sync every binding in bounded batches."""

        bindings = list(self.bindings.values())
        size = self._config.batch_size
        delay = self._config.batch_delay.total_seconds()
        for start in range(0, len(bindings), size):
            if not self.quota.can_make_call("get_details"):
                _LOGGER.warning(
                    "Daily API quota reached; skipping %s device updates",
                    len(bindings) - start,
                )
                return
            if start and delay > 0:
                await self._sleep(delay)
            batch = bindings[start : start + size]
            await asyncio.gather(*(self.synchronizer.sync(item) for item in batch))
