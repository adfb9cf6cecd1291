from __future__ import annotations

from dataclasses import dataclass, field

from dmproto.messages import HeartbeatBody, JoinBody
from dmproto.utils import generate_client_uid, utc_timestamp


@dataclass(frozen=True)
class Session:
    """Identity of one room subscription; fixed for the life of its client."""

    room_id: int
    keep_alive: bool = True
    uid: int = field(default_factory=generate_client_uid)
    created_at: float = field(default_factory=utc_timestamp)

    def age(self) -> float:
        return utc_timestamp() - self.created_at

    def join_body(self) -> JoinBody:
        return JoinBody(roomid=self.room_id, uid=self.uid)

    def heartbeat_body(self) -> HeartbeatBody:
        return HeartbeatBody(uid=self.uid, roomid=self.room_id)
