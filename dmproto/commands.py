from __future__ import annotations

from enum import IntEnum, StrEnum
from typing import FrozenSet, Union


class Opcode(IntEnum):
    """Frame opcodes at header offset 8."""

    POPULATION = 1
    HEARTBEAT = 2  # outbound heartbeat, inbound population reply
    POPULATION_TOTAL = 3
    NOTIFICATION = 5
    JOIN = 7
    JOIN_ACK = 8


POPULATION_OPCODES: FrozenSet[int] = frozenset(
    {Opcode.POPULATION, Opcode.HEARTBEAT, Opcode.POPULATION_TOTAL}
)


class NotificationCmd(StrEnum):
    """
    Notification `cmd` values the client emits as named events.
    Anything else is surfaced as an unknown notification.
    """

    DANMU_MSG = "DANMU_MSG"  # chat message
    SEND_GIFT = "SEND_GIFT"
    WELCOME = "WELCOME"  # VIP entered the room
    WELCOME_GUARD = "WELCOME_GUARD"  # guard member entered the room
    GUARD_BUY = "GUARD_BUY"
    SYS_MSG = "SYS_MSG"  # site-wide notice, carries TV lottery announcements
    TV_START = "TV_START"
    TV_END = "TV_END"  # TV lottery result
    SYS_GIFT = "SYS_GIFT"  # site-wide gift notice, carries raffle announcements
    RAFFLE_START = "RAFFLE_START"
    RAFFLE_END = "RAFFLE_END"  # raffle result
    SPECIAL_GIFT = "SPECIAL_GIFT"
    WISH_BOTTLE = "WISH_BOTTLE"
    ACTIVITY_EVENT = "ACTIVITY_EVENT"
    WELCOME_ACTIVITY = "WELCOME_ACTIVITY"
    ROOM_BLOCK_MSG = "ROOM_BLOCK_MSG"  # user muted
    EVENT_CMD = "EVENT_CMD"
    PREPARING = "PREPARING"
    ROOM_SILENT_OFF = "ROOM_SILENT_OFF"


class FeedEventType(StrEnum):
    """Lifecycle and protocol events emitted alongside notification cmds."""

    CONNECT = "connect"
    JOINED = "joined"
    POPULATION_UPDATE = "populationUpdate"
    UNKNOWN_NOTIFICATION = "unknownNotification"
    DECODE_ERROR = "decodeError"
    CLOSE = "close"


def normalize_event(event: Union[str, NotificationCmd, FeedEventType]) -> str:
    """Convert enum/string into canonical event text."""
    return event.value if isinstance(event, (NotificationCmd, FeedEventType)) else str(event)


def is_notification_cmd(value: str) -> bool:
    """Check if `value` is a known notification cmd."""
    try:
        NotificationCmd(value)
        return True
    except ValueError:
        return False


__all__ = [
    "Opcode",
    "POPULATION_OPCODES",
    "NotificationCmd",
    "FeedEventType",
    "normalize_event",
    "is_notification_cmd",
]
