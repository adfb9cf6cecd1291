from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Optional

from dmproto.framing import FrameDecoder

from .heartbeat import HeartbeatMonitor


@dataclass
class ConnectionContext:
    """
    Everything tied to one TCP connection attempt. A reconnect throws the
    whole context away, so its buffer and timers never outlive the socket.
    """

    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter
    decoder: FrameDecoder
    heartbeat: HeartbeatMonitor
    peername: str = ""
    receive_task: Optional[asyncio.Task] = None
    joined: bool = False
    opened_at: float = field(default_factory=time.time)
