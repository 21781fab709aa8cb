"""Tests for the bounded retry policy."""

from __future__ import annotations

import logging

import pytest

from vesync_bridge.exceptions import (
    AuthError,
    DeviceUnavailableError,
    RetryExhaustedError,
    TransientNetworkError,
    ValidationError,
)
from vesync_bridge.retry import RetryContext, RetryPolicy

CONTEXT = RetryContext("Living Room Purifier", "change speed")


class FlakyOperation:
    """Fail a fixed number of times before returning a value."""

    def __init__(self, failures: int, error: Exception | None = None) -> None:
        self.failures = failures
        self.error = error or TransientNetworkError("timeout")
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "done"


@pytest.mark.asyncio
async def test_execute_returns_after_transient_failures() -> None:
    """Two failures followed by success stay within three attempts."""

    operation = FlakyOperation(failures=2)

    assert await RetryPolicy().execute(operation, CONTEXT) == "done"
    assert operation.calls == 3


@pytest.mark.asyncio
async def test_execute_raises_exhaustion_naming_device_and_operation(
    caplog: pytest.LogCaptureFixture,
) -> None:
    """The final error names the device, the operation and the cause."""

    cause = RuntimeError("socket closed")
    operation = FlakyOperation(failures=5, error=cause)

    with caplog.at_level(logging.WARNING):
        with pytest.raises(RetryExhaustedError) as excinfo:
            await RetryPolicy(max_retries=3).execute(operation, CONTEXT)

    err = excinfo.value
    assert operation.calls == 3
    assert err.last_error is cause
    assert err.__cause__ is cause
    assert "Living Room Purifier" in str(err)
    assert "change speed" in str(err)
    attempts = [r for r in caplog.records if "Attempt" in r.getMessage()]
    assert len(attempts) == 3


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        ValidationError("speed out of range"),
        DeviceUnavailableError("device not found"),
        AuthError("Not logged in"),
    ],
)
async def test_execute_does_not_retry_terminal_errors(error: Exception) -> None:
    """Errors that retrying cannot fix are raised on the first attempt."""

    operation = FlakyOperation(failures=5, error=error)

    with pytest.raises(type(error)):
        await RetryPolicy().execute(operation, CONTEXT)
    assert operation.calls == 1


def test_max_retries_must_be_positive() -> None:
    """A policy needs at least one attempt."""

    with pytest.raises(ValueError):
        RetryPolicy(max_retries=0)
