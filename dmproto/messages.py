from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .constants import CLIENT_VERSION, JOIN_PLATFORM, JOIN_PROTOVER
from .errors import ErrorCode, ProtocolError


class JoinBody(BaseModel):
    """Body of the join frame sent right after the socket connects."""

    roomid: int = Field(..., description="Real room id, not the display short id")
    uid: int = Field(..., description="Random client id")
    protover: int = JOIN_PROTOVER
    platform: str = JOIN_PLATFORM
    clientver: str = CLIENT_VERSION


class HeartbeatBody(BaseModel):
    uid: int
    roomid: int


class Notification(BaseModel):
    """Envelope of a notification frame; every field besides `cmd` is kept as-is."""

    model_config = ConfigDict(extra="allow")

    cmd: str = Field(..., description="Discriminator such as DANMU_MSG")

    @classmethod
    def from_dict(cls, data: Any) -> "Notification":
        if not isinstance(data, dict):
            raise ProtocolError(ErrorCode.BAD_PAYLOAD, message=f"Notification is not an object: {type(data).__name__}")
        try:
            return cls(**data)
        except ValidationError as exc:
            raise ProtocolError(ErrorCode.BAD_PAYLOAD, message=f"Notification validation failed: {exc}") from exc


__all__ = ["JoinBody", "HeartbeatBody", "Notification"]
