"""Device state synchronisation layer bridging VeSync devices to a host."""

from .config import BridgeConfig, DeviceExclusion, load_config
from .const import DOMAIN
from .coordinator import BridgeCoordinator
from .device_types import CapabilityDescriptor, DeviceClassifier, DeviceFamily
from .exceptions import (
    AuthError,
    ConfigError,
    DeviceUnavailableError,
    InitializationError,
    RetryExhaustedError,
    TransientNetworkError,
    UnknownDeviceTypeError,
    ValidationError,
    VeSyncBridgeError,
)
from .reconciler import AccessoryBinding, AccessoryReconciler, ReconcilePlan
from .retry import RetryContext, RetryPolicy
from .session import SessionManager, SessionState
from .synchronizer import DeviceStateSynchronizer
from .throttle import CallThrottle

__version__ = "0.1.0"

__all__ = [
    "DOMAIN",
    "AccessoryBinding",
    "AccessoryReconciler",
    "AuthError",
    "BridgeConfig",
    "BridgeCoordinator",
    "CallThrottle",
    "CapabilityDescriptor",
    "ConfigError",
    "DeviceClassifier",
    "DeviceExclusion",
    "DeviceFamily",
    "DeviceStateSynchronizer",
    "DeviceUnavailableError",
    "InitializationError",
    "ReconcilePlan",
    "RetryContext",
    "RetryExhaustedError",
    "RetryPolicy",
    "SessionManager",
    "SessionState",
    "TransientNetworkError",
    "UnknownDeviceTypeError",
    "ValidationError",
    "VeSyncBridgeError",
    "load_config",
]
