from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Optional

from dmproto.constants import DEFAULT_HEARTBEAT_INTERVAL, DEFAULT_HEARTBEAT_TIMEOUT
from dmproto.errors import ProtocolError

logger = logging.getLogger(__name__)

SendHeartbeat = Callable[[], Awaitable[None]]
TimeoutCallback = Callable[[], None]


class HeartbeatMonitor:
    """
    Sends a heartbeat every `interval` seconds and arms a one-shot `timeout`
    after each send. A population reply calls `acknowledge()` and disarms it;
    otherwise `on_timeout` fires once for that heartbeat.
    """

    def __init__(
        self,
        send: SendHeartbeat,
        on_timeout: TimeoutCallback,
        interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        timeout: float = DEFAULT_HEARTBEAT_TIMEOUT,
    ) -> None:
        self._send = send
        self._on_timeout = on_timeout
        self.interval = interval
        self.timeout = timeout
        self._task: Optional[asyncio.Task] = None
        self._timeout_handle: Optional[asyncio.TimerHandle] = None
        self.sent = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def awaiting_reply(self) -> bool:
        return self._timeout_handle is not None

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="dmfeed-heartbeat")

    def stop(self) -> None:
        task, self._task = self._task, None
        self._cancel_timeout()
        if task and task is not asyncio.current_task():
            task.cancel()

    def acknowledge(self) -> None:
        if self._timeout_handle is not None:
            logger.debug("Heartbeat acknowledged")
        self._cancel_timeout()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self._send()
                self.sent += 1
            except asyncio.CancelledError:
                raise
            except (ProtocolError, OSError) as exc:
                logger.warning("Heartbeat send failed: %s", exc)
            self._arm_timeout()

    def _arm_timeout(self) -> None:
        # An unanswered earlier heartbeat keeps its deadline.
        if self._timeout_handle is not None:
            return
        loop = asyncio.get_running_loop()
        self._timeout_handle = loop.call_later(self.timeout, self._fire_timeout)

    def _fire_timeout(self) -> None:
        self._timeout_handle = None
        logger.info("Heartbeat timed out after %.1fs", self.timeout)
        self._on_timeout()

    def _cancel_timeout(self) -> None:
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None


__all__ = ["HeartbeatMonitor"]
