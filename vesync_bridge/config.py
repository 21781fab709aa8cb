"""Configuration loading and validation for the VeSync bridge."""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

import voluptuous as vol
import yaml

from .const import (
    AUTH_BACKOFF_CEILING_MS,
    BASE_BACKOFF_MS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_NAME,
    DEFAULT_UPDATE_INTERVAL,
    DOMAIN,
    MAX_BACKOFF_MS,
    MIN_CALL_INTERVAL,
    MIN_UPDATE_INTERVAL,
    QUOTA_BUFFER_PERCENTAGE,
    REMOVAL_THRESHOLD,
    SESSION_FRESHNESS_WINDOW,
    SPEED_SETTLE_DELAY,
    SYNC_BATCH_DELAY,
    SYNC_BATCH_SIZE,
)
from .exceptions import ConfigError

_LOGGER = logging.getLogger(__name__)


def _string_list(value: Any) -> list[str]:
    """Coerce a scalar or list into a list of stripped strings."""

    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        raise vol.Invalid("expected a string or a list of strings")
    return [str(item).strip() for item in value if str(item).strip()]


def _regex_list(value: Any) -> list[str]:
    """Validate that every entry compiles as a regular expression."""

    patterns = _string_list(value)
    for pattern in patterns:
        try:
            re.compile(pattern)
        except re.error as err:
            raise vol.Invalid(f"invalid name pattern {pattern!r}: {err}") from err
    return patterns


_EXCLUDE_SCHEMA = vol.Schema(
    {
        vol.Optional("type", default=list): _string_list,
        vol.Optional("model", default=list): _string_list,
        vol.Optional("name", default=list): _string_list,
        vol.Optional("name_pattern", default=list): _regex_list,
        vol.Optional("id", default=list): _string_list,
    }
)

_RETRY_SCHEMA = vol.Schema(
    {
        vol.Optional("max_retries", default=DEFAULT_MAX_RETRIES): vol.All(
            vol.Coerce(int), vol.Range(min=1, max=10)
        ),
    }
)

_SESSION_SCHEMA = vol.Schema(
    {
        vol.Optional(
            "freshness_minutes",
            default=SESSION_FRESHNESS_WINDOW.total_seconds() / 60,
        ): vol.All(vol.Coerce(float), vol.Range(min=0)),
        vol.Optional("base_backoff_ms", default=BASE_BACKOFF_MS): vol.All(
            vol.Coerce(int), vol.Range(min=1)
        ),
        vol.Optional("max_backoff_ms", default=MAX_BACKOFF_MS): vol.All(
            vol.Coerce(int), vol.Range(min=1)
        ),
        vol.Optional(
            "auth_backoff_ceiling_ms", default=AUTH_BACKOFF_CEILING_MS
        ): vol.All(vol.Coerce(int), vol.Range(min=1)),
    }
)

_SYNC_SCHEMA = vol.Schema(
    {
        vol.Optional("batch_size", default=SYNC_BATCH_SIZE): vol.All(
            vol.Coerce(int), vol.Range(min=1)
        ),
        vol.Optional(
            "batch_delay", default=SYNC_BATCH_DELAY.total_seconds()
        ): vol.All(vol.Coerce(float), vol.Range(min=0)),
        vol.Optional(
            "speed_settle_delay", default=SPEED_SETTLE_DELAY.total_seconds()
        ): vol.All(vol.Coerce(float), vol.Range(min=0)),
        vol.Optional(
            "min_call_interval", default=MIN_CALL_INTERVAL.total_seconds()
        ): vol.All(vol.Coerce(float), vol.Range(min=0)),
        vol.Optional("removal_threshold", default=REMOVAL_THRESHOLD): vol.All(
            vol.Coerce(int), vol.Range(min=1)
        ),
    }
)

_QUOTA_SCHEMA = vol.Schema(
    {
        vol.Optional("enabled", default=True): bool,
        vol.Optional("buffer_percentage", default=QUOTA_BUFFER_PERCENTAGE): vol.All(
            vol.Coerce(int), vol.Range(min=1, max=100)
        ),
    }
)

CONFIG_SCHEMA = vol.Schema(
    {
        vol.Required("username"): vol.All(str, vol.Length(min=1)),
        vol.Required("password"): vol.All(str, vol.Length(min=1)),
        vol.Optional("platform"): str,
        vol.Optional("name", default=DEFAULT_NAME): str,
        vol.Optional(
            "update_interval", default=DEFAULT_UPDATE_INTERVAL.total_seconds()
        ): vol.All(
            vol.Coerce(float),
            vol.Range(min=MIN_UPDATE_INTERVAL.total_seconds()),
        ),
        vol.Optional("debug", default=False): bool,
        vol.Optional("exclude", default=dict): _EXCLUDE_SCHEMA,
        vol.Optional("retry", default=dict): _RETRY_SCHEMA,
        vol.Optional("session", default=dict): _SESSION_SCHEMA,
        vol.Optional("sync", default=dict): _SYNC_SCHEMA,
        vol.Optional("quota", default=dict): _QUOTA_SCHEMA,
    }
)


@dataclass(frozen=True)
class DeviceExclusion:
    """Rules that hide devices from the host."""

    types: tuple[str, ...] = ()
    models: tuple[str, ...] = ()
    names: tuple[str, ...] = ()
    name_patterns: tuple[str, ...] = ()
    ids: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DeviceExclusion:
        """Build exclusions from a validated ``exclude`` section."""

        return cls(
            types=tuple(data.get("type", ())),
            models=tuple(data.get("model", ())),
            names=tuple(data.get("name", ())),
            name_patterns=tuple(data.get("name_pattern", ())),
            ids=tuple(data.get("id", ())),
        )

    def excludes(self, *, device_id: str, type_string: str, name: str) -> bool:
        """Return True when any rule matches the device."""

        type_lower = type_string.lower()
        if any(rule.lower() == type_lower for rule in self.types):
            return True
        if any(rule.lower() in type_lower for rule in self.models):
            return True
        if any(rule.lower() == name.lower() for rule in self.names):
            return True
        if any(re.search(pattern, name) for pattern in self.name_patterns):
            return True
        return device_id in self.ids


@dataclass(frozen=True)
class BridgeConfig:
    """Validated runtime configuration."""

    username: str
    password: str
    name: str = DEFAULT_NAME
    update_interval: timedelta = DEFAULT_UPDATE_INTERVAL
    debug: bool = False
    exclude: DeviceExclusion = field(default_factory=DeviceExclusion)
    max_retries: int = DEFAULT_MAX_RETRIES
    freshness_window: timedelta = SESSION_FRESHNESS_WINDOW
    base_backoff_ms: int = BASE_BACKOFF_MS
    max_backoff_ms: int = MAX_BACKOFF_MS
    auth_backoff_ceiling_ms: int = AUTH_BACKOFF_CEILING_MS
    batch_size: int = SYNC_BATCH_SIZE
    batch_delay: timedelta = SYNC_BATCH_DELAY
    speed_settle_delay: timedelta = SPEED_SETTLE_DELAY
    min_call_interval: timedelta = MIN_CALL_INTERVAL
    removal_threshold: int = REMOVAL_THRESHOLD
    quota_enabled: bool = True
    quota_buffer_percentage: int = QUOTA_BUFFER_PERCENTAGE

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BridgeConfig:
        """Validate ``data`` and build a configuration object."""

        try:
            validated = CONFIG_SCHEMA(dict(data))
        except vol.Invalid as err:
            msg = f"Invalid {DOMAIN} configuration: {err}"
            raise ConfigError(msg) from err

        session = validated["session"]
        if session["base_backoff_ms"] > session["max_backoff_ms"]:
            msg = "session.base_backoff_ms must not exceed session.max_backoff_ms"
            raise ConfigError(msg)
        sync = validated["sync"]
        return cls(
            username=validated["username"],
            password=validated["password"],
            name=validated["name"],
            update_interval=timedelta(seconds=validated["update_interval"]),
            debug=validated["debug"],
            exclude=DeviceExclusion.from_dict(validated["exclude"]),
            max_retries=validated["retry"]["max_retries"],
            freshness_window=timedelta(minutes=session["freshness_minutes"]),
            base_backoff_ms=session["base_backoff_ms"],
            max_backoff_ms=session["max_backoff_ms"],
            auth_backoff_ceiling_ms=session["auth_backoff_ceiling_ms"],
            batch_size=sync["batch_size"],
            batch_delay=timedelta(seconds=sync["batch_delay"]),
            speed_settle_delay=timedelta(seconds=sync["speed_settle_delay"]),
            min_call_interval=timedelta(seconds=sync["min_call_interval"]),
            removal_threshold=sync["removal_threshold"],
            quota_enabled=validated["quota"]["enabled"],
            quota_buffer_percentage=validated["quota"]["buffer_percentage"],
        )

    def apply_logging(self) -> None:
        """Lower the package logger to DEBUG when debugging is enabled."""

        if self.debug:
            logging.getLogger(__package__).setLevel(logging.DEBUG)
            _LOGGER.debug("Debug logging enabled for %s", self.name)


def load_config(path: Path | str) -> BridgeConfig:
    """Read a YAML configuration file and validate it."""

    config_path = Path(path)
    try:
        with config_path.open("r", encoding="utf-8") as fp:
            payload = yaml.safe_load(fp)
    except OSError as err:
        msg = f"Unable to read configuration file {config_path}: {err}"
        raise ConfigError(msg) from err
    except yaml.YAMLError as err:
        msg = f"Configuration file {config_path} is not valid YAML: {err}"
        raise ConfigError(msg) from err

    if not isinstance(payload, Mapping):
        msg = f"Configuration file {config_path} must contain a mapping"
        raise ConfigError(msg)
    section = payload.get(DOMAIN, payload)
    if not isinstance(section, Mapping):
        msg = f"The {DOMAIN} section of {config_path} must be a mapping"
        raise ConfigError(msg)
    return BridgeConfig.from_dict(section)
