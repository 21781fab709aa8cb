"""Daily API call budget for the vendor cloud."""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from datetime import date

from .const import (
    QUOTA_BASE_CALLS,
    QUOTA_BUFFER_PERCENTAGE,
    QUOTA_CALLS_PER_DEVICE,
    QUOTA_PRIORITY_METHODS,
    QUOTA_WARNING_THRESHOLDS,
)

_LOGGER = logging.getLogger(__name__)


def daily_quota(
    device_count: int, buffer_percentage: int = QUOTA_BUFFER_PERCENTAGE
) -> int:
    """Return the usable daily call budget for ``device_count`` devices."""

    total = QUOTA_BASE_CALLS + QUOTA_CALLS_PER_DEVICE * max(0, device_count)
    return math.floor(total * buffer_percentage / 100)


class QuotaManager:
    """Count vendor calls per day and gate low-priority ones."""

    def __init__(
        self,
        *,
        enabled: bool = True,
        buffer_percentage: int = QUOTA_BUFFER_PERCENTAGE,
        priority_methods: frozenset[str] = QUOTA_PRIORITY_METHODS,
        today: Callable[[], date] = date.today,
    ) -> None:
        """Initialise an empty counter for the current day."""

        self._enabled = enabled
        self._buffer_percentage = buffer_percentage
        self._priority_methods = priority_methods
        self._today = today
        self._day = today()
        self._calls = 0
        self._device_count = 0
        self._warned: set[int] = set()
        self._exceeded_logged = False

    @property
    def calls(self) -> int:
        """Return the calls recorded today."""

        self._roll_over()
        return self._calls

    @property
    def limit(self) -> int:
        """Return today's call budget."""

        return daily_quota(self._device_count, self._buffer_percentage)

    def set_device_count(self, count: int) -> None:
        """Update the number of devices the budget is sized for."""

        self._device_count = max(0, count)

    def is_priority(self, method: str) -> bool:
        """Return True for user-facing commands that bypass the budget."""

        return method in self._priority_methods

    def can_make_call(self, method: str) -> bool:
        """Return True when ``method`` may be issued now."""

        if not self._enabled or self.is_priority(method):
            return True
        self._roll_over()
        return self._calls < self.limit

    def record_call(self, method: str) -> None:
        """Count one call and log threshold crossings."""

        self._roll_over()
        self._calls += 1
        if not self._enabled:
            return
        limit = self.limit
        usage = self._calls * 100 / limit if limit else 100.0
        if usage > 100:
            if not self._exceeded_logged:
                self._exceeded_logged = True
                _LOGGER.error(
                    "Daily API quota exceeded (%s/%s calls); only commands are sent",
                    self._calls,
                    limit,
                )
            return
        for threshold in QUOTA_WARNING_THRESHOLDS:
            if usage >= threshold and threshold not in self._warned:
                self._warned.add(threshold)
                _LOGGER.warning(
                    "API quota at %s%% (%s/%s calls, last %s)",
                    threshold,
                    self._calls,
                    limit,
                    method,
                )

    def _roll_over(self) -> None:
        """Reset the counter when the date changed."""

        today = self._today()
        if today != self._day:
            _LOGGER.debug("Resetting API quota counter for %s", today)
            self._day = today
            self._calls = 0
            self._warned.clear()
            self._exceeded_logged = False
