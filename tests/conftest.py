from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import pytest
import pytest_asyncio

from dmproto.commands import Opcode
from dmproto.framing import Frame, FrameDecoder, encode_frame


class FakeFeedServer:
    """In-process feed server speaking the wire format over loopback TCP."""

    def __init__(self) -> None:
        self.host = "127.0.0.1"
        self.port = 0
        self.population = 4242
        self.send_join_ack = True
        # 1-based connection numbers that never answer heartbeats
        self.silent_connections: Set[int] = set()
        self.connections = 0
        self.received: List[Tuple[int, Frame]] = []
        self.writers: List[asyncio.StreamWriter] = []
        self._server: Optional[asyncio.AbstractServer] = None

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._handle_client, self.host, 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self) -> None:
        self.drop_all()
        if self._server:
            self._server.close()
            await self._server.wait_closed()

    def frames(self, opcode: int) -> List[Frame]:
        return [frame for _, frame in self.received if frame.opcode == opcode]

    async def push(self, data: bytes) -> None:
        writer = self.writers[-1]
        writer.write(data)
        await writer.drain()

    def drop_all(self) -> None:
        for writer in self.writers:
            writer.close()

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        index = self.connections
        self.writers.append(writer)
        decoder = FrameDecoder()
        try:
            while True:
                data = await reader.read(65536)
                if not data:
                    break
                for frame in decoder.feed(data):
                    self.received.append((index, frame))
                    if frame.opcode == Opcode.JOIN and self.send_join_ack:
                        writer.write(encode_frame(Opcode.JOIN_ACK))
                    elif frame.opcode == Opcode.HEARTBEAT and index not in self.silent_connections:
                        writer.write(encode_frame(Opcode.POPULATION_TOTAL, self.population.to_bytes(4, "big")))
                await writer.drain()
        except (ConnectionError, OSError):
            pass
        finally:
            writer.close()


@pytest_asyncio.fixture
async def feed_server():
    server = FakeFeedServer()
    await server.start()
    yield server
    await server.stop()


def client_config(server: FakeFeedServer, **overrides: Any) -> Dict[str, Any]:
    """Fast timings so heartbeat and lifetime paths run in well under a second."""
    config: Dict[str, Any] = {
        "server_host": server.host,
        "server_port": server.port,
        "heartbeat_interval": 0.05,
        "heartbeat_timeout": 0.1,
        "session_lifetime": 30.0,
        "reconnect_backoff": 0.05,
        "max_reconnect_backoff": 0.2,
        "connect_timeout": 2.0,
    }
    config.update(overrides)
    return config


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(0.01)
    return predicate()


@pytest.fixture
def recorder():
    return EventRecorder()


class EventRecorder:
    """Collects (event, payload) pairs from client handlers."""

    def __init__(self) -> None:
        self.events: List[Tuple[str, Any]] = []

    def handler(self, name: str):
        def record(payload: Any) -> None:
            self.events.append((name, payload))

        return record

    def attach(self, client, *names: str) -> None:
        for name in names:
            client.register_handler(name, self.handler(name))

    def names(self) -> List[str]:
        return [name for name, _ in self.events]

    def count(self, name: str) -> int:
        return self.names().count(name)

    def payloads(self, name: str) -> List[Any]:
        return [payload for event, payload in self.events if event == name]
