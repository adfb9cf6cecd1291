from __future__ import annotations

import json
import struct
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple, Union

from .constants import DEVICE_TAG, ENCODING, HEADER_LENGTH, MAX_FRAME_SIZE, PROTOCOL_VERSION
from .errors import ErrorCode, ProtocolError

# total length, header length, version, opcode, device tag
HEADER = struct.Struct(">IHHII")
LENGTH_PREFIX = 4

Body = Union[bytes, str, Dict[str, Any]]


@dataclass(frozen=True)
class Frame:
    """One decoded wire frame."""

    opcode: int
    body: bytes = b""
    version: int = PROTOCOL_VERSION
    device: int = DEVICE_TAG
    header_length: int = HEADER_LENGTH

    @property
    def total_length(self) -> int:
        return self.header_length + len(self.body)

    def text(self) -> str:
        return self.body.decode(ENCODING)

    def json(self) -> Any:
        """Decode the body as UTF-8 JSON."""
        try:
            return json.loads(self.text())
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ProtocolError(ErrorCode.BAD_PAYLOAD, message=f"Body is not JSON: {exc}") from exc


def _body_bytes(body: Body) -> bytes:
    if isinstance(body, bytes):
        return body
    if isinstance(body, str):
        return body.encode(ENCODING)
    try:
        return json.dumps(body, ensure_ascii=False, separators=(",", ":")).encode(ENCODING)
    except (TypeError, ValueError) as exc:
        raise ProtocolError(ErrorCode.BAD_PAYLOAD, message=f"Encode failed: {exc}") from exc


def encode_frame(
    opcode: int,
    body: Body = b"",
    device: int = DEVICE_TAG,
    version: int = PROTOCOL_VERSION,
) -> bytes:
    """Encode one frame: 16-byte big-endian header followed by the body."""
    data = _body_bytes(body)
    return HEADER.pack(HEADER_LENGTH + len(data), HEADER_LENGTH, version, int(opcode), device) + data


def _declared_length(buffer, offset: int, max_frame_size: int) -> int:
    total = int.from_bytes(buffer[offset : offset + LENGTH_PREFIX], "big")
    if total < HEADER_LENGTH:
        raise ProtocolError(ErrorCode.BAD_HEADER, message=f"Declared length {total} shorter than header")
    if total > max_frame_size:
        raise ProtocolError(ErrorCode.FRAME_TOO_LARGE, message=f"Declared length {total} exceeds {max_frame_size}")
    return total


def _scan(buffer: Union[bytes, bytearray], max_frame_size: int) -> Tuple[List[Frame], int]:
    """Parse complete frames from the start of `buffer`; returns them and the bytes consumed."""
    frames: List[Frame] = []
    size = len(buffer)
    offset = 0
    with memoryview(buffer) as view:
        while size - offset >= LENGTH_PREFIX:
            total = _declared_length(view, offset, max_frame_size)
            if size - offset < total:
                break
            _, header_length, version, opcode, device = HEADER.unpack_from(view, offset)
            if not HEADER_LENGTH <= header_length <= total:
                raise ProtocolError(ErrorCode.BAD_HEADER, message=f"Invalid header length {header_length}")
            body = view[offset + header_length : offset + total].tobytes()
            frames.append(Frame(opcode=opcode, body=body, version=version, device=device, header_length=header_length))
            offset += total
    return frames, offset


def decode_frames(buffer: bytes, max_frame_size: int = MAX_FRAME_SIZE) -> Tuple[List[Frame], bytes]:
    """
    Split `buffer` into every complete frame it holds plus the leftover tail.

    Truncated input is never an error: a buffer shorter than the length prefix,
    or shorter than the declared total length, is returned as leftover untouched.
    A length prefix that cannot belong to a valid frame raises a fatal ProtocolError.
    """
    frames, offset = _scan(buffer, max_frame_size)
    return frames, bytes(buffer[offset:])


class FrameDecoder:
    """
    Reassembles frames across reads; owns the pending partial-frame buffer.

    Once the length prefix of a partial frame is known, further reads only
    append until that many bytes are buffered, so a large frame arriving in
    small pieces is parsed once.
    """

    def __init__(self, max_frame_size: int = MAX_FRAME_SIZE) -> None:
        self.max_frame_size = max_frame_size
        self._buffer = bytearray()
        self._needed = LENGTH_PREFIX

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def feed(self, data: bytes) -> List[Frame]:
        self._buffer += data
        if len(self._buffer) < self._needed:
            return []
        frames, consumed = _scan(self._buffer, self.max_frame_size)
        del self._buffer[:consumed]
        if len(self._buffer) >= LENGTH_PREFIX:
            self._needed = _declared_length(self._buffer, 0, self.max_frame_size)
        else:
            self._needed = LENGTH_PREFIX
        return frames

    def reset(self) -> None:
        self._buffer.clear()
        self._needed = LENGTH_PREFIX


__all__ = ["Frame", "HEADER", "encode_frame", "decode_frames", "FrameDecoder"]
