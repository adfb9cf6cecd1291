from __future__ import annotations

from enum import IntEnum


class ErrorCode(IntEnum):
    """Error codes raised by the codec and the client."""

    BAD_HEADER = 1001
    FRAME_TOO_LARGE = 1002
    DECOMPRESS_FAILED = 1003
    BAD_PAYLOAD = 1004
    SCHEMA_INVALID = 1005
    NOT_CONNECTED = 2001
    CONNECT_FAILED = 2002
    SEND_FAILED = 2003


# Errors after which the byte stream can no longer be trusted.
FATAL_CODES = frozenset({ErrorCode.BAD_HEADER, ErrorCode.FRAME_TOO_LARGE})


class ProtocolError(Exception):
    """Structured protocol exception carrying code + message."""

    def __init__(self, code: ErrorCode, message: str = "") -> None:
        self.code = code
        self.message = message
        super().__init__(f"{code.name} ({int(code)}): {message}")

    @property
    def fatal(self) -> bool:
        """Whether the connection that produced this error must be dropped."""
        return self.code in FATAL_CODES


class DecompressError(ProtocolError):
    """A compressed body could not be expanded; only that frame is lost."""

    def __init__(self, message: str = "") -> None:
        super().__init__(ErrorCode.DECOMPRESS_FAILED, message)


__all__ = ["ErrorCode", "FATAL_CODES", "ProtocolError", "DecompressError"]
