"""Spacing and in-flight sharing of vendor API calls."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Hashable
from datetime import timedelta
from typing import Any, TypeVar

from .const import MIN_CALL_INTERVAL

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class CallThrottle:
    """Keep vendor calls apart and collapse identical concurrent calls.

    ``wait_turn`` serialises callers so consecutive calls start at least
    ``min_interval`` apart. ``share`` runs an operation once per key; callers
    arriving while it is in flight await the same result.
    """

    def __init__(
        self,
        min_interval: timedelta = MIN_CALL_INTERVAL,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialise the throttle with an empty in-flight table."""

        self._min_interval = min_interval.total_seconds()
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_call_at: float | None = None
        self._last_method = ""
        self._in_flight: dict[Hashable, asyncio.Future[Any]] = {}

    @property
    def in_flight(self) -> int:
        """Return the number of shared operations currently running."""

        return len(self._in_flight)

    async def wait_turn(self, method: str) -> None:
        """Wait until ``method`` may be sent."""

        if self._min_interval <= 0:
            return
        async with self._lock:
            if self._last_call_at is not None:
                elapsed = self._clock() - self._last_call_at
                wait = self._min_interval - elapsed
                if wait > 0:
                    _LOGGER.debug(
                        "Delaying %s by %.3fs (previous call %s)",
                        method,
                        wait,
                        self._last_method,
                    )
                    await self._sleep(wait)
            self._last_call_at = self._clock()
            self._last_method = method

    async def share(self, key: Hashable, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` unless an identical call is already in flight."""

        pending = self._in_flight.get(key)
        if pending is not None:
            _LOGGER.debug("Joining in-flight call %s", key)
            return await asyncio.shield(pending)

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._in_flight[key] = future
        try:
            result = await operation()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as err:
            future.set_exception(err)
            # Mark the exception retrieved when nobody joined the call.
            future.exception()
            raise
        else:
            future.set_result(result)
            return result
        finally:
            self._in_flight.pop(key, None)
