"""Error taxonomy and classification for the VeSync bridge."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping

import httpx

DEVICE_NOT_FOUND_CODE = 4041008
INTERNAL_ERROR_CODE = -11102086

_AUTH_MARKERS = (
    "not logged in",
    "auth",
    "token expired",
    "invalid token",
    "credential",
)
_UNAVAILABLE_MARKERS = ("device not found", "device offline", "device is offline")


class VeSyncBridgeError(Exception):
    """Base class for every error raised by the bridge."""


class AuthError(VeSyncBridgeError):
    """Bad credentials or an expired session; recoverable by logging in again."""


class TransientNetworkError(VeSyncBridgeError):
    """Timeout, reset or rate limit; safe to retry."""


class RetryExhaustedError(TransientNetworkError):
    """Raised when every attempt of a retried operation failed."""

    def __init__(
        self,
        device_name: str,
        operation: str,
        attempts: int,
        last_error: BaseException | None = None,
    ) -> None:
        self.device_name = device_name
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Failed to {operation} for {device_name} after {attempts} attempts: "
            f"{last_error}"
        )


class DeviceUnavailableError(VeSyncBridgeError):
    """The device reported not-found or offline."""


class ValidationError(VeSyncBridgeError, ValueError):
    """A command value was out of range or not finite."""


class UnknownDeviceTypeError(VeSyncBridgeError):
    """No classification rule matched a device type string."""

    def __init__(self, type_string: str) -> None:
        self.type_string = type_string
        super().__init__(
            f"Unknown device type {type_string!r}; using conservative outlet defaults"
        )


class ConfigError(VeSyncBridgeError):
    """The bridge configuration failed validation."""


class InitializationError(VeSyncBridgeError):
    """The login, inventory and reconcile sequence could not complete."""


NON_RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    AuthError,
    ValidationError,
    DeviceUnavailableError,
)


def _error_code(err: BaseException) -> int | None:
    """Extract a vendor result code carried by ``err`` when present."""

    for candidate in (err, *err.args):
        if isinstance(candidate, Mapping):
            code = candidate.get("code")
            if code is None and isinstance(candidate.get("error"), Mapping):
                code = candidate["error"].get("code")
        else:
            code = getattr(candidate, "code", None)
        if isinstance(code, int) and not isinstance(code, bool):
            return code
    return None


def error_message(err: BaseException) -> str:
    """Return a readable message for ``err`` including nested vendor payloads."""

    for arg in err.args:
        if isinstance(arg, Mapping):
            nested = arg.get("error")
            if isinstance(nested, Mapping) and nested.get("msg"):
                return str(nested["msg"])
            if arg.get("msg"):
                return str(arg["msg"])
    return str(err) or type(err).__name__


def is_auth_error(err: BaseException) -> bool:
    """Return True when ``err`` indicates bad credentials or an expired session."""

    return isinstance(classify_error(err), AuthError)


def classify_error(err: BaseException) -> VeSyncBridgeError | None:
    """Map ``err`` onto the bridge taxonomy.

    Returns ``err`` itself when it already belongs to the taxonomy and
    ``None`` when nothing identifies it, which callers treat as a
    non-retryable fault.
    """

    if isinstance(err, VeSyncBridgeError):
        return err

    message = error_message(err)
    if isinstance(err, httpx.HTTPStatusError):
        status = err.response.status_code
        if status in (401, 403):
            return AuthError(message)
        if status == 404:
            return DeviceUnavailableError(message)
        if status == 429 or status >= 500:
            return TransientNetworkError(message)
        return None
    if isinstance(err, (httpx.TimeoutException, httpx.TransportError)):
        return TransientNetworkError(message)
    if isinstance(err, (asyncio.TimeoutError, ConnectionError)):
        return TransientNetworkError(message)

    code = _error_code(err)
    if code == DEVICE_NOT_FOUND_CODE:
        return DeviceUnavailableError(message)
    if code == INTERNAL_ERROR_CODE:
        return TransientNetworkError(message)

    lowered = message.lower()
    if any(marker in lowered for marker in _AUTH_MARKERS):
        return AuthError(message)
    if any(marker in lowered for marker in _UNAVAILABLE_MARKERS):
        return DeviceUnavailableError(message)
    if isinstance(err, OSError):
        return TransientNetworkError(message)
    return None
