"""Bounded retry wrapper for vendor calls."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from .const import DEFAULT_MAX_RETRIES
from .exceptions import NON_RETRYABLE_ERRORS, RetryExhaustedError, classify_error

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryContext:
    """Identify the device and operation being retried for log records."""

    device_name: str
    operation: str


class RetryPolicy:
    """Execute an operation up to ``max_retries`` times without delay.

    ``max_retries`` counts total attempts. Errors classified as validation
    or device-unavailable failures are raised on the first attempt.
    """

    def __init__(self, max_retries: int = DEFAULT_MAX_RETRIES) -> None:
        """Store the attempt limit."""

        if max_retries < 1:
            msg = "max_retries must be at least 1"
            raise ValueError(msg)
        self.max_retries = max_retries

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        context: RetryContext,
    ) -> T:
        """Await ``operation`` until it succeeds or the attempts run out."""

        last_error: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                return await operation()
            except Exception as err:  # noqa: BLE001 - classified below
                classified = classify_error(err)
                if isinstance(classified, NON_RETRYABLE_ERRORS):
                    _LOGGER.warning(
                        "%s for %s failed without retry: %s",
                        context.operation,
                        context.device_name,
                        err,
                    )
                    raise
                last_error = err
                _LOGGER.warning(
                    "Attempt %s/%s to %s for %s failed: %s",
                    attempt,
                    self.max_retries,
                    context.operation,
                    context.device_name,
                    err,
                )

        _LOGGER.error(
            "Giving up on %s for %s after %s attempts",
            context.operation,
            context.device_name,
            self.max_retries,
        )
        raise RetryExhaustedError(
            context.device_name, context.operation, self.max_retries, last_error
        ) from last_error
