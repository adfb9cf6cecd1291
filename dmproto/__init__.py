"""
Wire protocol of the danmaku feed: constants, opcodes, frame codec,
payload decompression, message bodies and outbound validation.
"""

from .commands import (
    POPULATION_OPCODES,
    FeedEventType,
    NotificationCmd,
    Opcode,
    is_notification_cmd,
    normalize_event,
)
from .compression import is_compressed, maybe_decompress
from .constants import ENCODING, HEADER_LENGTH, PROTOCOL_VERSION, ZLIB_MARKER
from .errors import DecompressError, ErrorCode, ProtocolError
from .framing import Frame, FrameDecoder, decode_frames, encode_frame
from .messages import HeartbeatBody, JoinBody, Notification
from .validator import load_schema, validate_body

__all__ = [
    "Opcode",
    "POPULATION_OPCODES",
    "NotificationCmd",
    "FeedEventType",
    "normalize_event",
    "is_notification_cmd",
    "ENCODING",
    "HEADER_LENGTH",
    "PROTOCOL_VERSION",
    "ZLIB_MARKER",
    "ErrorCode",
    "ProtocolError",
    "DecompressError",
    "Frame",
    "FrameDecoder",
    "encode_frame",
    "decode_frames",
    "is_compressed",
    "maybe_decompress",
    "JoinBody",
    "HeartbeatBody",
    "Notification",
    "load_schema",
    "validate_body",
]
