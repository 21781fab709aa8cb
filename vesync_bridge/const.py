"""Constants for the VeSync bridge."""

from datetime import timedelta

DOMAIN = "vesync_bridge"
DEFAULT_NAME = "VeSync"

DEFAULT_UPDATE_INTERVAL = timedelta(seconds=30)
MIN_UPDATE_INTERVAL = timedelta(seconds=10)

SESSION_FRESHNESS_WINDOW = timedelta(minutes=30)
BASE_BACKOFF_MS = 1_000
MAX_BACKOFF_MS = 300_000
AUTH_BACKOFF_CEILING_MS = 5_000

DEFAULT_MAX_RETRIES = 3

SYNC_BATCH_SIZE = 2
SYNC_BATCH_DELAY = timedelta(seconds=5)
SPEED_SETTLE_DELAY = timedelta(seconds=1)
MIN_CALL_INTERVAL = timedelta(milliseconds=500)
REMOVAL_THRESHOLD = 1

QUOTA_BASE_CALLS = 3_200
QUOTA_CALLS_PER_DEVICE = 1_500
QUOTA_BUFFER_PERCENTAGE = 95
QUOTA_WARNING_THRESHOLDS = (90, 95)
QUOTA_PRIORITY_METHODS = frozenset(
    {
        "turn_on",
        "turn_off",
        "set_mode",
        "set_target_humidity",
        "set_brightness",
        "set_color_temperature",
        "set_color",
        "change_speed",
        "set_oscillation",
        "set_child_lock",
    }
)

CONTEXT_DEVICE_KEY = "device"
