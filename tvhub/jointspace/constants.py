"""JointSpace (Philips TV) API constants."""
from __future__ import annotations

from typing import Dict

API_VERSION = 6
HTTPS_PORT = 1926
HTTP_PORT = 1925  # plain-HTTP fallback, long-poll only

# Short calls
DEFAULT_TIMEOUT = 2.0
INTER_REQUEST_DELAY = 0.1

# notifychange long-poll
LONG_POLL_TIMEOUT = 60.0
RECONNECT_DELAY = 1.0
MAX_RECONNECT_DELAY = 30.0
MAX_CONSECUTIVE_FAILURES = 5
MIN_POLL_INTERVAL = 2.0

# activities/tv is pushed on a constant ~1s cadence whether or not anything
# changed; it keeps the long-poll alive but never proves it works.
SUBSCRIBED_RESOURCES: Dict[str, None] = {
    "activities/current": None,
    "activities/tv": None,
    "ambilight/currentconfiguration": None,
    "ambilight/power": None,
    "audio/volume": None,
    "powerstate": None,
}
NOISE_RESOURCES = frozenset({"activities/tv"})

WOL_WAKE_DELAY = 1.0

# Ambilight menu settings (node ids from the official app)
AMBILIGHT_BRIGHTNESS_NODE_ID = 2131230769
AMBILIGHT_SATURATION_NODE_ID = 2131230771
AMBILIGHT_SETTING_MIN = 0
AMBILIGHT_SETTING_MAX = 10

# Lounge light presets, sent as a static FOLLOW_COLOR
AMBILIGHT_LOUNGE_PRESETS: Dict[str, Dict[str, int]] = {
    "Hot lava": {"hue": 0, "saturation": 255, "brightness": 255},
    "Deep water": {"hue": 170, "saturation": 255, "brightness": 255},
    "Fresh nature": {"hue": 85, "saturation": 255, "brightness": 255},
    "Warm White": {"hue": 30, "saturation": 80, "brightness": 255},
    "Cool white": {"hue": 200, "saturation": 40, "brightness": 255},
}
DEFAULT_LOUNGE_PRESET = "Warm White"

HDMI_PASSTHROUGH_PREFIX = (
    "content://android.media.tv/passthrough/"
    "com.mediatek.tvinput%2F.hdmi.HDMIInputService%2F"
)
HDMI_SOURCES: Dict[str, str] = {
    f"{HDMI_PASSTHROUGH_PREFIX}HW5": "HDMI 1",
    f"{HDMI_PASSTHROUGH_PREFIX}HW6": "HDMI 2",
    f"{HDMI_PASSTHROUGH_PREFIX}HW7": "HDMI 3",
    f"{HDMI_PASSTHROUGH_PREFIX}HW8": "HDMI 4",
}
WATCH_TV_URI = "content://android.media.tv/channel"
CHANNEL_LIST_ID = "allcab"

SOURCE_SELECT_ACTION = "org.droidtv.playtv.SELECTURI"
PLAYTV_COMPONENT = {
    "packageName": "org.droidtv.playtv",
    "className": "org.droidtv.playtv.PlayTvActivity",
}

# Runtime (not pairing) wording for common device statuses
ERROR_MESSAGES: Dict[int, str] = {
    401: "Authentication rejected by the TV. Re-pair to refresh credentials.",
    403: "Access denied by the TV.",
    404: "Endpoint not supported by this TV.",
    408: "Request timeout. The TV took too long to respond.",
    500: "TV internal error.",
    503: "TV is temporarily unavailable.",
}
