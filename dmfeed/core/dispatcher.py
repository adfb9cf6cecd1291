from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from dmproto.commands import (
    POPULATION_OPCODES,
    FeedEventType,
    NotificationCmd,
    Opcode,
    is_notification_cmd,
    normalize_event,
)
from dmproto.compression import maybe_decompress
from dmproto.constants import MAX_FRAME_SIZE
from dmproto.errors import ErrorCode, ProtocolError
from dmproto.framing import Frame
from dmproto.messages import Notification

logger = logging.getLogger(__name__)

# Handlers may be plain callables or coroutine functions.
EventHandler = Callable[[Any], Any]
EventName = Union[str, NotificationCmd, FeedEventType]


@dataclass(frozen=True)
class FeedEvent:
    """A classified frame: event name plus what its handlers receive."""

    name: str
    payload: Any = None
    liveness: bool = False


def parse_population(frame: Frame) -> int:
    if len(frame.body) < 4:
        raise ProtocolError(ErrorCode.BAD_PAYLOAD, message=f"Population body too short ({len(frame.body)} bytes)")
    return int.from_bytes(frame.body[:4], "big", signed=True)


def classify(frame: Frame) -> List[FeedEvent]:
    """Map one decompressed frame onto the events it produces."""
    opcode = frame.opcode
    if opcode == Opcode.JOIN_ACK:
        return [FeedEvent(FeedEventType.JOINED.value)]
    if opcode in POPULATION_OPCODES:
        liveness = FeedEvent(FeedEventType.POPULATION_UPDATE.value, liveness=True)
        try:
            count = parse_population(frame)
        except ProtocolError as exc:
            logger.warning("Heartbeat reply without population: %s", exc)
            return [liveness]
        return [FeedEvent(FeedEventType.POPULATION_UPDATE.value, count, liveness=True)]
    if opcode == Opcode.NOTIFICATION:
        raw = frame.json()
        notification = Notification.from_dict(raw)
        if is_notification_cmd(notification.cmd):
            return [FeedEvent(notification.cmd, raw)]
        return [FeedEvent(FeedEventType.UNKNOWN_NOTIFICATION.value, raw)]
    logger.debug("Ignoring frame with opcode %s (%s bytes)", opcode, frame.total_length)
    return []


class FrameDispatcher:
    """Classifies frames and fans events out to registered handlers, in order."""

    def __init__(
        self,
        session: Any = None,
        on_liveness: Optional[Callable[[], None]] = None,
        on_joined: Optional[Callable[[], None]] = None,
        max_frame_size: int = MAX_FRAME_SIZE,
        context: str = "",
    ) -> None:
        self._handlers: Dict[str, List[EventHandler]] = {}
        self.session = session
        self.on_liveness = on_liveness
        self.on_joined = on_joined
        self.max_frame_size = max_frame_size
        self.context = context

    def register_handler(self, event: EventName, handler: EventHandler) -> None:
        self._handlers.setdefault(normalize_event(event), []).append(handler)

    def unregister_handler(self, event: EventName, handler: EventHandler) -> None:
        handlers = self._handlers.get(normalize_event(event), [])
        if handler in handlers:
            handlers.remove(handler)

    async def emit(self, event: EventName, payload: Any = None) -> None:
        name = normalize_event(event)
        for handler in list(self._handlers.get(name, ())):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.exception("Handler error for %s: %s", name, exc)

    async def dispatch(self, frame: Frame) -> None:
        """Expand, classify and emit one frame; a bad frame is dropped, not raised."""
        try:
            frames = maybe_decompress(frame, self.max_frame_size)
        except ProtocolError as exc:
            await self._discard(frame, exc)
            return

        for inner in frames:
            try:
                events = classify(inner)
            except ProtocolError as exc:
                await self._discard(inner, exc)
                continue
            for event in events:
                await self._deliver(event)

    async def _deliver(self, event: FeedEvent) -> None:
        if event.liveness and self.on_liveness:
            self.on_liveness()
        if event.name == FeedEventType.JOINED:
            if self.on_joined:
                self.on_joined()
            await self.emit(event.name, self.session)
            return
        if event.name == FeedEventType.UNKNOWN_NOTIFICATION:
            logger.info("%sUnknown notification: %s", self.context, event.payload.get("cmd"))
        if event.liveness and event.payload is None:
            return
        await self.emit(event.name, event.payload)

    async def _discard(self, frame: Frame, exc: ProtocolError) -> None:
        logger.warning("%sDiscarding undecodable frame (opcode %s): %s", self.context, frame.opcode, exc)
        await self.emit(FeedEventType.DECODE_ERROR, exc)


__all__ = ["EventHandler", "EventName", "FeedEvent", "FrameDispatcher", "classify", "parse_population"]
