"""Integration tests for the bridge coordinator."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from fakes import (
    FakeAccessory,
    FakeClient,
    FakeHost,
    FakeVendorDevice,
    SleepRecorder,
)
from vesync_bridge.config import BridgeConfig
from vesync_bridge.coordinator import BridgeCoordinator
from vesync_bridge.device_types import DeviceClassifier
from vesync_bridge.exceptions import AuthError, InitializationError
from vesync_bridge.host import Characteristic
from vesync_bridge.reconciler import AccessoryReconciler, stable_uuid
from vesync_bridge.vendor import Device


def _config(**overrides: object) -> BridgeConfig:
    values: dict[str, object] = {
        "username": "user@example.com",
        "password": "secret",
        "speed_settle_delay": timedelta(0),
        "min_call_interval": timedelta(0),
    }
    values.update(overrides)
    return BridgeConfig(**values)


def _coordinator(
    client: FakeClient,
    host: FakeHost,
    sleep: SleepRecorder | None = None,
    **overrides: object,
) -> BridgeCoordinator:
    return BridgeCoordinator(
        client=client,
        host=host,
        config=_config(**overrides),
        sleep=sleep or SleepRecorder(),
    )


@pytest.mark.asyncio
async def test_initialize_creates_and_syncs_accessories() -> None:
    """Login, inventory, reconcile and the first sync run in order."""

    purifier = FakeVendorDevice(
        "p1", "Core300S", name=" Bedroom ", details={"speed": 4}
    )
    bulb = FakeVendorDevice("b1", "ESL100", status="off")
    client = FakeClient([purifier, bulb])
    host = FakeHost()
    coordinator = _coordinator(client, host)

    assert await coordinator.async_initialize() is True
    assert await coordinator.is_ready() is True
    coordinator.cancel_refresh()

    assert client.login_calls == 1
    assert client.fetch_calls == 1
    assert coordinator.is_initialized is True
    assert {a.uuid for a in host.created} == {stable_uuid("p1"), stable_uuid("b1")}
    bedroom = host.accessories[stable_uuid("p1")]
    assert bedroom.display_name == "Bedroom"
    assert bedroom.context["device"]["cid"] == "p1"
    assert bedroom.values[Characteristic.ROTATION_SPEED] == 100.0
    assert Characteristic.ROTATION_SPEED in bedroom.setters
    assert Characteristic.AIR_QUALITY in bedroom.getters
    assert Characteristic.AIR_QUALITY not in bedroom.setters
    assert purifier.count("get_details") == 1
    assert bulb.count("get_details") == 1


@pytest.mark.asyncio
async def test_initial_sync_runs_in_delayed_batches() -> None:
    """Five devices sync two at a time with a delay between batches."""

    devices = [FakeVendorDevice(f"s{i}", "ESWL01") for i in range(5)]
    sleep = SleepRecorder()
    coordinator = _coordinator(
        FakeClient(devices), FakeHost(), sleep, batch_delay=timedelta(seconds=5)
    )

    await coordinator.async_initialize()
    coordinator.cancel_refresh()

    assert sleep.delays == [5.0, 5.0]
    assert all(device.count("get_details") == 1 for device in devices)


@pytest.mark.asyncio
async def test_failed_login_reports_not_ready() -> None:
    """A login failure resolves readiness as failed and skips the inventory."""

    client = FakeClient([FakeVendorDevice("p1", "Core300S")])
    client.login_outcomes = [False]
    coordinator = _coordinator(client, FakeHost())

    assert await coordinator.async_initialize() is False
    coordinator.cancel_refresh()

    assert await coordinator.is_ready() is False
    assert client.fetch_calls == 0
    assert coordinator.is_initialized is False


@pytest.mark.asyncio
async def test_refresh_recovers_after_failed_initialisation() -> None:
    """A later tick completes the start-up and opens the readiness gate."""

    client = FakeClient([FakeVendorDevice("p1", "Core300S")])
    client.login_outcomes = [False]
    sleep = SleepRecorder()
    coordinator = BridgeCoordinator(
        client=client,
        host=FakeHost(),
        config=_config(),
        clock=lambda: 100.0,
        sleep=sleep,
    )
    await coordinator.async_initialize()
    coordinator.cancel_refresh()

    assert await coordinator.async_refresh() is True
    assert await coordinator.is_ready() is True
    assert sleep.delays == [2.0]
    assert client.login_calls == 2


@pytest.mark.asyncio
async def test_expired_session_during_inventory_logs_in_again() -> None:
    """A "not logged in" inventory error forces one re-login and one retry."""

    client = FakeClient([FakeVendorDevice("p1", "Core300S")])
    client.fetch_outcomes = [AuthError("Not logged in")]
    host = FakeHost()
    coordinator = _coordinator(client, host)

    assert await coordinator.async_initialize() is True
    coordinator.cancel_refresh()

    assert client.login_calls == 2
    assert client.fetch_calls == 2
    assert len(host.created) == 1


@pytest.mark.asyncio
async def test_failed_fetch_keeps_accessories_and_empty_fetch_removes_them() -> None:
    """Only a successful inventory can remove accessories."""

    client = FakeClient(
        [FakeVendorDevice("p1", "Core300S"), FakeVendorDevice("o1", "ESW15-USA")]
    )
    host = FakeHost()
    coordinator = _coordinator(client, host)
    await coordinator.async_initialize()
    coordinator.cancel_refresh()

    client.fetch_outcomes = [False, False, False]
    assert await coordinator.async_refresh() is False
    assert host.removed == []
    assert len(coordinator.bindings) == 2

    client.inventory = []
    assert await coordinator.async_refresh() is True
    assert len(host.removed) == 2
    assert coordinator.bindings == {}
    assert host.accessories == {}


@pytest.mark.asyncio
async def test_cached_accessories_are_restored_not_recreated() -> None:
    """Accessories from the host store keep their UUID across restarts."""

    vendor = FakeVendorDevice("p1", "Core300S")
    binding = AccessoryReconciler(DeviceClassifier()).bind(Device.from_vendor(vendor))
    cached = FakeAccessory(binding.stable_uuid, "Bedroom", context=binding.context())
    broken = FakeAccessory("not-a-device", "Broken", context={"device": {}})
    host = FakeHost([cached, broken])
    coordinator = _coordinator(FakeClient([vendor]), host)

    await coordinator.async_initialize()
    coordinator.cancel_refresh()

    assert host.created == []
    assert host.updated == [cached]
    assert host.removed == [broken]
    assert Characteristic.ACTIVE in cached.setters
    assert cached.values[Characteristic.ACTIVE] == 1


@pytest.mark.asyncio
async def test_host_handlers_route_through_synchronizer() -> None:
    """Write handlers issue vendor commands; read handlers return slot values."""

    vendor = FakeVendorDevice("p1", "Core200S", details={"speed": 1})
    host = FakeHost()
    coordinator = _coordinator(FakeClient([vendor]), host)
    await coordinator.async_initialize()
    coordinator.cancel_refresh()
    accessory = host.accessories[stable_uuid("p1")]

    await accessory.setters[Characteristic.ROTATION_SPEED](80)
    await coordinator.async_refresh()
    await coordinator.async_refresh()

    assert vendor.args("change_speed") == [(3,)]
    assert await accessory.getters[Characteristic.ROTATION_SPEED]() == 80


@pytest.mark.asyncio
async def test_write_handler_refuses_commands_when_not_ready() -> None:
    """Commands fail loudly when initialisation never succeeded."""

    vendor = FakeVendorDevice("p1", "Core300S")
    binding = AccessoryReconciler(DeviceClassifier()).bind(Device.from_vendor(vendor))
    cached = FakeAccessory(binding.stable_uuid, "Bedroom", context=binding.context())
    client = FakeClient([vendor])
    client.login_outcomes = [False]
    coordinator = _coordinator(client, FakeHost([cached]))
    await coordinator.async_initialize()
    coordinator.cancel_refresh()

    with pytest.raises(InitializationError):
        await cached.setters[Characteristic.ACTIVE](1)
    assert vendor.calls == []


@pytest.mark.asyncio
async def test_refresh_schedule_uses_update_interval() -> None:
    """The periodic refresh timer fires after the configured interval."""

    coordinator = _coordinator(
        FakeClient(), FakeHost(), update_interval=timedelta(seconds=45)
    )

    calls: list[bool] = []
    handle = coordinator.async_schedule_refresh(lambda: calls.append(True))
    delay = handle.when() - asyncio.get_running_loop().time()

    assert 44 <= delay <= 45
    await coordinator.async_shutdown()
    assert handle.cancelled()


class LaggingListDevice(FakeVendorDevice):
    """Device whose listed status stays stale after a power command."""

    async def turn_on(self) -> bool:
        return await self._record("turn_on")


@pytest.mark.asyncio
async def test_refresh_tick_skipped_while_previous_refresh_runs() -> None:
    """Ticks landing during a long refresh are dropped instead of queued."""

    coordinator = _coordinator(
        FakeClient(), FakeHost(), update_interval=timedelta(milliseconds=10)
    )
    gate = asyncio.Event()
    started: list[bool] = []

    async def _slow_refresh() -> None:
        started.append(True)
        await gate.wait()

    coordinator.async_schedule_refresh(_slow_refresh)
    await asyncio.sleep(0.1)

    assert started == [True]
    assert coordinator.is_refreshing

    gate.set()
    await asyncio.sleep(0.1)
    await coordinator.async_shutdown()

    assert len(started) > 1
    assert not coordinator.is_refreshing


@pytest.mark.asyncio
async def test_inventory_update_keeps_commanded_power_state() -> None:
    """A stale listing does not undo a power command awaiting its echo."""

    vendor = LaggingListDevice("p1", "Core200S", status="off", details={"speed": 1})
    host = FakeHost()
    coordinator = _coordinator(FakeClient([vendor]), host)
    await coordinator.async_initialize()
    coordinator.cancel_refresh()
    accessory = host.accessories[stable_uuid("p1")]
    binding = coordinator.bindings["p1"]

    await accessory.setters[Characteristic.ACTIVE](1)
    await coordinator.async_refresh()

    assert binding.device.is_on is True
    assert accessory.values[Characteristic.ACTIVE] == 1

    await accessory.setters[Characteristic.ROTATION_SPEED](50)

    assert vendor.count("turn_on") == 1
    assert vendor.args("change_speed") == [(2,)]


@pytest.mark.asyncio
async def test_quota_counts_logins_and_inventory_fetches() -> None:
    """Every vendor request, not only device calls, is charged to the quota."""

    vendor = FakeVendorDevice("p1", "Core300S")
    client = FakeClient([vendor])
    coordinator = _coordinator(client, FakeHost())
    await coordinator.async_initialize()
    coordinator.cancel_refresh()
    for _ in range(3):
        await coordinator.async_refresh()

    assert client.login_calls == 1
    assert client.fetch_calls == 4
    assert vendor.count("get_details") == 4
    assert coordinator.quota.calls == 9


@pytest.mark.asyncio
async def test_inventory_calls_are_spaced_by_the_throttle() -> None:
    """Consecutive vendor calls wait out the minimum call interval."""

    sleep = SleepRecorder()
    coordinator = BridgeCoordinator(
        client=FakeClient([FakeVendorDevice("s1", "ESWL01")]),
        host=FakeHost(),
        config=_config(min_call_interval=timedelta(milliseconds=500)),
        clock=lambda: 100.0,
        sleep=sleep,
    )

    await coordinator.async_initialize()
    coordinator.cancel_refresh()

    assert sleep.delays == [0.5]


@pytest.mark.asyncio
async def test_malformed_inventory_entry_is_skipped() -> None:
    """One bad sub-device number does not abort the whole inventory."""

    good = FakeVendorDevice("p1", "Core300S")
    bad = FakeVendorDevice("p2", "Core300S", sub_device_no="left")
    host = FakeHost()
    coordinator = _coordinator(FakeClient([bad, good]), host)

    assert await coordinator.async_initialize() is True
    coordinator.cancel_refresh()

    assert [accessory.uuid for accessory in host.created] == [stable_uuid("p1")]
