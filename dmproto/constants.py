"""Protocol-wide constants for the danmaku feed wire format."""

ENCODING = "utf-8"
HEADER_LENGTH = 16
PROTOCOL_VERSION = 1
DEVICE_TAG = 1
ZLIB_MARKER = b"\x78\xda"
MAX_FRAME_SIZE = 16 * 1024 * 1024  # declared total length cap
MAX_NESTING_DEPTH = 8  # compressed frames inside compressed frames

# join handshake body
JOIN_PROTOVER = 2
JOIN_PLATFORM = "flash"
CLIENT_VERSION = "2.1.8-02af452c"

DEFAULT_SERVER_HOST = "livecmt-2.bilibili.com"
DEFAULT_SERVER_PORT = 2243
DEFAULT_ROOM_ID = 2
DEFAULT_HEARTBEAT_INTERVAL = 30  # seconds
DEFAULT_HEARTBEAT_TIMEOUT = 10  # seconds
DEFAULT_SESSION_LIFETIME = 180  # seconds, one-shot sessions only

__all__ = [
    "ENCODING",
    "HEADER_LENGTH",
    "PROTOCOL_VERSION",
    "DEVICE_TAG",
    "ZLIB_MARKER",
    "MAX_FRAME_SIZE",
    "MAX_NESTING_DEPTH",
    "JOIN_PROTOVER",
    "JOIN_PLATFORM",
    "CLIENT_VERSION",
    "DEFAULT_SERVER_HOST",
    "DEFAULT_SERVER_PORT",
    "DEFAULT_ROOM_ID",
    "DEFAULT_HEARTBEAT_INTERVAL",
    "DEFAULT_HEARTBEAT_TIMEOUT",
    "DEFAULT_SESSION_LIFETIME",
]
