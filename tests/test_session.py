"""Tests for the session manager and its backoff state."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import httpx
import pytest

from fakes import FakeClient, SleepRecorder
from vesync_bridge.exceptions import AuthError
from vesync_bridge.session import BackoffLimits, SessionManager, SessionState


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _manager(
    client: FakeClient, clock: FakeClock, sleep: SleepRecorder
) -> SessionManager:
    return SessionManager(
        client,
        freshness_window=timedelta(minutes=30),
        limits=BackoffLimits(base_ms=1_000, max_ms=300_000, auth_ceiling_ms=5_000),
        clock=clock,
        sleep=sleep,
    )


@pytest.mark.asyncio
async def test_ensure_login_twice_logs_in_once() -> None:
    """A fresh session skips the network on the second call."""

    client = FakeClient()
    manager = _manager(client, FakeClock(), SleepRecorder())

    assert await manager.ensure_login() is True
    assert await manager.ensure_login() is True
    assert client.login_calls == 1


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_login() -> None:
    """Callers waiting on the lock see the session the first caller made."""

    client = FakeClient()
    manager = _manager(client, FakeClock(), SleepRecorder())

    results = await asyncio.gather(*(manager.ensure_login() for _ in range(5)))

    assert results == [True] * 5
    assert client.login_calls == 1


@pytest.mark.asyncio
async def test_force_and_expiry_trigger_new_logins() -> None:
    """Forcing, invalidating or ageing out the session logs in again."""

    client = FakeClient()
    clock = FakeClock()
    manager = _manager(client, clock, SleepRecorder())

    await manager.ensure_login()
    await manager.ensure_login(force=True)
    assert client.login_calls == 2

    manager.invalidate()
    await manager.ensure_login()
    assert client.login_calls == 3

    clock.advance(31 * 60)
    await manager.ensure_login()
    assert client.login_calls == 4


@pytest.mark.asyncio
async def test_failures_double_backoff_up_to_maximum() -> None:
    """Transient failures double the backoff and never exceed the cap."""

    client = FakeClient()
    client.login_outcomes = [httpx.ConnectError("reset")] * 12
    manager = _manager(client, FakeClock(), SleepRecorder())

    backoffs = []
    for _ in range(12):
        assert await manager.ensure_login() is False
        backoffs.append(manager.state.backoff_ms)

    assert backoffs[:3] == [2_000, 4_000, 8_000]
    assert backoffs[-1] == 300_000
    assert all(1_000 <= value <= 300_000 for value in backoffs)


@pytest.mark.asyncio
async def test_soft_failure_counts_as_failure() -> None:
    """A ``False`` login result grows the backoff without raising."""

    client = FakeClient()
    client.login_outcomes = [False]
    manager = _manager(client, FakeClock(), SleepRecorder())

    assert await manager.ensure_login() is False
    assert manager.state.backoff_ms == 2_000
    assert manager.is_logged_in is False


@pytest.mark.asyncio
async def test_auth_failures_clamp_backoff_and_success_resets() -> None:
    """Auth errors keep the backoff short; success returns it to base."""

    client = FakeClient()
    client.login_outcomes = [TimeoutError("slow")] * 5 + [AuthError("Not logged in")]
    manager = _manager(client, FakeClock(), SleepRecorder())

    for _ in range(5):
        await manager.ensure_login()
    assert manager.state.backoff_ms == 32_000

    await manager.ensure_login()
    assert manager.state.backoff_ms == 5_000

    assert await manager.ensure_login() is True
    assert manager.state.backoff_ms == 1_000
    assert manager.state.is_logged_in is True


@pytest.mark.asyncio
async def test_waits_out_remaining_backoff() -> None:
    """A retry soon after a failure sleeps for the rest of the window."""

    client = FakeClient()
    client.login_outcomes = [False]
    clock = FakeClock()
    sleep = SleepRecorder()
    manager = _manager(client, clock, sleep)

    await manager.ensure_login()
    clock.advance(0.5)
    assert await manager.ensure_login() is True

    assert sleep.delays == [pytest.approx(1.5)]


def test_session_state_transitions_are_pure() -> None:
    """Transitions return new values and leave the original untouched."""

    limits = BackoffLimits()
    state = SessionState.initial(limits)
    attempted = state.with_attempt(10.0)
    failed = attempted.after_failure(limits, auth_failure=False)
    succeeded = failed.after_success(11.0, limits)

    assert state.last_login_attempt_at is None
    assert failed.backoff_ms == 2_000
    assert succeeded.backoff_ms == limits.base_ms
    assert succeeded.is_fresh(12.0, timedelta(minutes=1)) is True
    assert succeeded.expired().is_fresh(12.0, timedelta(minutes=1)) is False
    assert failed.remaining_backoff(10.5) == pytest.approx(1.5)
