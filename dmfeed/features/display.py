from __future__ import annotations

import logging
from typing import Any, Dict

from dmfeed.core.network import FeedClient
from dmproto.commands import FeedEventType, NotificationCmd

logger = logging.getLogger(__name__)

GUARD_TITLES = ["", "总督", "提督", "舰长"]


def _guard_title(level: Any) -> str:
    try:
        return GUARD_TITLES[int(level)]
    except (TypeError, ValueError, IndexError):
        return ""


def format_danmu(message: Dict[str, Any]) -> str:
    info = message["info"]
    return f"{info[2][1]}: {info[1]}"


def format_gift(message: Dict[str, Any]) -> str:
    data = message["data"]
    return f"{data['uname']}赠送{data['giftName']}×{data['num']}"


def format_welcome(message: Dict[str, Any]) -> str:
    data = message["data"]
    prefix = "年费" if data.get("svip") else ""
    return f"【{prefix}老爷】{data['uname']}进入直播间"


def format_welcome_guard(message: Dict[str, Any]) -> str:
    data = message["data"]
    return f"【{_guard_title(data.get('guard_level'))}】{data['username']}进入直播间"


def format_guard_buy(message: Dict[str, Any]) -> str:
    data = message["data"]
    return f"{data['username']}购买{_guard_title(data.get('guard_level'))}"


def format_block(message: Dict[str, Any]) -> str:
    return f"{message['uname']}被禁言"


FORMATTERS = {
    NotificationCmd.DANMU_MSG: format_danmu,
    NotificationCmd.SEND_GIFT: format_gift,
    NotificationCmd.WELCOME: format_welcome,
    NotificationCmd.WELCOME_GUARD: format_welcome_guard,
    NotificationCmd.GUARD_BUY: format_guard_buy,
    NotificationCmd.ROOM_BLOCK_MSG: format_block,
}


class FeedPrinter:
    """Logs a readable line for chat, gifts and room notices of one client."""

    def __init__(self, client: FeedClient) -> None:
        self.client = client
        self.lines_logged = 0
        client.register_handler(FeedEventType.CONNECT, self._handle_connect)
        client.register_handler(FeedEventType.POPULATION_UPDATE, self._handle_population)
        for cmd in FORMATTERS:
            client.register_handler(cmd, self._make_handler(cmd))

    def _make_handler(self, cmd: NotificationCmd):
        formatter = FORMATTERS[cmd]

        async def handle(message: Dict[str, Any]) -> None:
            try:
                line = formatter(message)
            except (KeyError, IndexError, TypeError) as exc:
                logger.warning("Malformed %s notification: %s", cmd.value, exc)
                return
            self.lines_logged += 1
            logger.info("%s", line)

        return handle

    async def _handle_connect(self, session) -> None:
        logger.info("连接弹幕服务器成功 (room %s)", session.room_id)

    async def _handle_population(self, count: int) -> None:
        logger.info("【心跳反馈】直播间【%s】当前人气值: %s", self.client.room_id, count)
