from __future__ import annotations

import zlib
from collections import deque
from typing import Deque, List, Tuple

from .commands import Opcode
from .constants import MAX_FRAME_SIZE, MAX_NESTING_DEPTH, ZLIB_MARKER
from .errors import DecompressError, ProtocolError
from .framing import Frame, decode_frames


def is_compressed(frame: Frame) -> bool:
    """Notification bodies starting with the zlib marker carry nested frames."""
    return (
        frame.opcode == Opcode.NOTIFICATION
        and len(frame.body) > 4
        and frame.body[: len(ZLIB_MARKER)] == ZLIB_MARKER
    )


def inflate(data: bytes, max_size: int = MAX_FRAME_SIZE) -> bytes:
    """Inflate a zlib stream, refusing output larger than `max_size`."""
    inflater = zlib.decompressobj()
    try:
        out = inflater.decompress(data, max_size)
    except zlib.error as exc:
        raise DecompressError(f"Inflate failed: {exc}") from exc
    if inflater.unconsumed_tail:
        raise DecompressError(f"Inflated payload exceeds {max_size} bytes")
    if not inflater.eof:
        raise DecompressError("Compressed stream is truncated")
    return out


def maybe_decompress(frame: Frame, max_frame_size: int = MAX_FRAME_SIZE) -> List[Frame]:
    """
    Expand a compressed frame into the frames it carries, in stream order.

    Uncompressed frames come back unchanged as a one-element list. Nested
    compressed frames are expanded as well, up to MAX_NESTING_DEPTH levels.
    Raises DecompressError when the frame cannot be expanded.
    """
    if not is_compressed(frame):
        return [frame]

    result: List[Frame] = []
    pending: Deque[Tuple[Frame, int]] = deque([(frame, 0)])
    while pending:
        current, depth = pending.popleft()
        if not is_compressed(current):
            result.append(current)
            continue
        if depth >= MAX_NESTING_DEPTH:
            raise DecompressError(f"Compressed frames nested deeper than {MAX_NESTING_DEPTH}")
        try:
            inner, leftover = decode_frames(inflate(current.body, max_frame_size), max_frame_size)
        except DecompressError:
            raise
        except ProtocolError as exc:
            raise DecompressError(f"Inflated payload is not a frame stream: {exc.message}") from exc
        if leftover:
            raise DecompressError(f"Inflated payload ends with {len(leftover)} bytes of a partial frame")
        # Children go to the front so output keeps stream order.
        pending.extendleft((child, depth + 1) for child in reversed(inner))
    return result


__all__ = ["is_compressed", "inflate", "maybe_decompress"]
