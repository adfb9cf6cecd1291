from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Dict, Optional

from dmfeed.core.network import FeedClient, NetworkError
from dmproto.commands import FeedEventType, NotificationCmd

logger = logging.getLogger(__name__)

ClientFactory = Callable[[int], FeedClient]


@dataclass(frozen=True)
class LotteryKind:
    """How one lottery type is announced on the main feed and settled in its room."""

    name: str
    announce_cmd: NotificationCmd
    pattern: "re.Pattern[str]"
    result_cmd: NotificationCmd


TV_LOTTERY = LotteryKind("tv", NotificationCmd.SYS_MSG, re.compile("小电视一个"), NotificationCmd.TV_END)
RAFFLE = LotteryKind("raffle", NotificationCmd.SYS_GIFT, re.compile("邂逅"), NotificationCmd.RAFFLE_END)


def format_winner(message: Dict[str, Any]) -> str:
    win = message["data"]["win"]
    return f"{win['uname']}获得{win['giftName']}×{win['giftNum']}"


@dataclass
class WatchedRoom:
    client: FeedClient
    pending: int = 1
    connect_task: Optional[asyncio.Task] = None


class LotteryWatcher:
    """
    Watches lottery announcements on a main client and opens a one-shot
    client in each announcing room until every announced draw has a result.
    """

    def __init__(self, client: FeedClient, client_factory: Optional[ClientFactory] = None) -> None:
        self.client = client
        self.client_factory = client_factory or self._default_factory
        self.kinds = (TV_LOTTERY, RAFFLE)
        self.rooms: Dict[str, Dict[int, WatchedRoom]] = {kind.name: {} for kind in self.kinds}
        for kind in self.kinds:
            client.register_handler(kind.announce_cmd, self._make_announce_handler(kind))

    def _default_factory(self, room_id: int) -> FeedClient:
        return FeedClient(room_id, keep_alive=False, config=self.client.config)

    def _make_announce_handler(self, kind: LotteryKind):
        async def handle(message: Dict[str, Any]) -> None:
            await self.on_announcement(kind, message)

        return handle

    async def on_announcement(self, kind: LotteryKind, message: Dict[str, Any]) -> None:
        if not kind.pattern.search(str(message.get("msg", ""))):
            return
        try:
            room_id = int(message["real_roomid"])
        except (KeyError, TypeError, ValueError):
            logger.warning("%s announcement without real_roomid: %s", kind.name, message.get("msg"))
            return

        rooms = self.rooms[kind.name]
        watched = rooms.get(room_id)
        if watched is not None and not watched.client.stopped:
            watched.pending += 1
            logger.debug("Room %s now has %s pending %s draws", room_id, watched.pending, kind.name)
            return

        watcher = self.client_factory(room_id)
        watched = rooms[room_id] = WatchedRoom(watcher)
        watcher.register_handler(kind.result_cmd, self._make_result_handler(kind, room_id, watched))
        watcher.register_handler(FeedEventType.CLOSE, self._make_close_handler(kind, room_id, watched))
        watched.connect_task = asyncio.create_task(self._connect(watcher), name=f"dmfeed-lottery-{room_id}")

    async def _connect(self, watcher: FeedClient) -> None:
        try:
            await watcher.connect()
        except NetworkError as exc:
            logger.warning("Cannot watch room %s: %s", watcher.room_id, exc)

    def _make_result_handler(self, kind: LotteryKind, room_id: int, watched: WatchedRoom):
        async def handle(message: Dict[str, Any]) -> None:
            try:
                logger.info("%s", format_winner(message))
            except (KeyError, TypeError) as exc:
                logger.warning("Malformed %s result in room %s: %s", kind.name, room_id, exc)
            watched.pending -= 1
            if watched.pending <= 0:
                await watched.client.close()

        return handle

    def _make_close_handler(self, kind: LotteryKind, room_id: int, watched: WatchedRoom):
        async def handle(_session) -> None:
            if not watched.client.stopped:
                return
            logger.info("已关闭直播间【%s】的弹幕客户端", room_id)
            if self.rooms[kind.name].get(room_id) is watched:
                del self.rooms[kind.name][room_id]

        return handle
