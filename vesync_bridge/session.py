"""Session management for the vendor cloud API."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from datetime import timedelta

from .const import (
    AUTH_BACKOFF_CEILING_MS,
    BASE_BACKOFF_MS,
    MAX_BACKOFF_MS,
    SESSION_FRESHNESS_WINDOW,
)
from .exceptions import error_message, is_auth_error
from .quota import QuotaManager
from .vendor import VendorClient

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackoffLimits:
    """Bounds applied to the login backoff."""

    base_ms: int = BASE_BACKOFF_MS
    max_ms: int = MAX_BACKOFF_MS
    auth_ceiling_ms: int = AUTH_BACKOFF_CEILING_MS


@dataclass(frozen=True)
class SessionState:
    """Login bookkeeping; timestamps are monotonic seconds."""

    last_login_at: float | None = None
    last_login_attempt_at: float | None = None
    backoff_ms: int = BASE_BACKOFF_MS
    is_logged_in: bool = False

    @classmethod
    def initial(cls, limits: BackoffLimits) -> SessionState:
        """Return the state of a session that never logged in."""

        return cls(backoff_ms=limits.base_ms)

    def is_fresh(self, now: float, window: timedelta) -> bool:
        """Return True while the last successful login is inside ``window``."""

        if not self.is_logged_in or self.last_login_at is None:
            return False
        return now - self.last_login_at < window.total_seconds()

    def remaining_backoff(self, now: float) -> float:
        """Return the seconds left before another attempt is allowed."""

        if self.last_login_attempt_at is None:
            return 0.0
        elapsed_ms = (now - self.last_login_attempt_at) * 1000
        return max(0.0, (self.backoff_ms - elapsed_ms) / 1000)

    def with_attempt(self, now: float) -> SessionState:
        """Return a copy recording a login attempt at ``now``."""

        return replace(self, last_login_attempt_at=now)

    def after_success(self, now: float, limits: BackoffLimits) -> SessionState:
        """Return a copy for a successful login."""

        return replace(
            self,
            last_login_at=now,
            backoff_ms=limits.base_ms,
            is_logged_in=True,
        )

    def after_failure(
        self, limits: BackoffLimits, *, auth_failure: bool
    ) -> SessionState:
        """Return a copy with the backoff grown or clamped for the failure."""

        if auth_failure:
            backoff = min(self.backoff_ms, limits.auth_ceiling_ms)
        else:
            backoff = min(self.backoff_ms * 2, limits.max_ms)
        return replace(
            self,
            backoff_ms=max(limits.base_ms, backoff),
            is_logged_in=False,
        )

    def expired(self) -> SessionState:
        """Return a copy that forces the next ``ensure_login`` to log in."""

        return replace(self, is_logged_in=False, last_login_at=None)


class SessionManager:
    """Own the login state and serialise login attempts."""

    def __init__(
        self,
        client: VendorClient,
        *,
        freshness_window: timedelta = SESSION_FRESHNESS_WINDOW,
        limits: BackoffLimits | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        quota: QuotaManager | None = None,
    ) -> None:
        """Initialise the manager for ``client``."""

        self._client = client
        self._freshness_window = freshness_window
        self._limits = limits or BackoffLimits()
        self._clock = clock
        self._sleep = sleep
        self._quota = quota
        self._state = SessionState.initial(self._limits)
        self._lock = asyncio.Lock()

    @property
    def state(self) -> SessionState:
        """Return the current session state."""

        return self._state

    @property
    def is_logged_in(self) -> bool:
        """Return True when the last login attempt succeeded."""

        return self._state.is_logged_in

    def invalidate(self) -> None:
        """Mark the session expired after the API rejected it."""

        _LOGGER.debug("Session invalidated; next ensure_login will log in")
        self._state = self._state.expired()

    async def ensure_login(self, force: bool = False) -> bool:
        """Log in unless a fresh session exists; return True when logged in."""

        async with self._lock:
            self._state = await self._ensure_login(self._state, force)
            return self._state.is_logged_in

    async def _ensure_login(self, state: SessionState, force: bool) -> SessionState:
        """Run one login decision against ``state`` and return the next state."""

        if not force and state.is_fresh(self._clock(), self._freshness_window):
            return state

        wait = state.remaining_backoff(self._clock())
        if wait > 0:
            _LOGGER.debug("Waiting %.1fs before the next login attempt", wait)
            await self._sleep(wait)

        state = state.with_attempt(self._clock())
        if self._quota is not None:
            self._quota.record_call("login")
        try:
            success = await self._client.login()
        except Exception as err:  # noqa: BLE001 - transport errors become failures
            auth_failure = is_auth_error(err)
            next_state = state.after_failure(self._limits, auth_failure=auth_failure)
            _LOGGER.error(
                "Login failed (%s): %s; next attempt in %sms",
                "auth" if auth_failure else "transient",
                error_message(err),
                next_state.backoff_ms,
            )
            return next_state

        if not success:
            next_state = state.after_failure(self._limits, auth_failure=False)
            _LOGGER.error(
                "Login rejected by the API; next attempt in %sms",
                next_state.backoff_ms,
            )
            return next_state

        _LOGGER.debug("Login succeeded")
        return state.after_success(self._clock(), self._limits)
