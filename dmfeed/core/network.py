from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import Any, Dict, Optional, Tuple

from dmfeed.config import merge_config
from dmproto import validator
from dmproto.commands import FeedEventType, Opcode
from dmproto.errors import ErrorCode, ProtocolError
from dmproto.framing import Body, FrameDecoder, encode_frame

from .connection import ConnectionContext
from .dispatcher import EventHandler, EventName, FrameDispatcher
from .heartbeat import HeartbeatMonitor
from .session import Session

logger = logging.getLogger(__name__)

StreamPair = Tuple[asyncio.StreamReader, asyncio.StreamWriter]


class NetworkError(ProtocolError):
    """Network level error surfaced to higher layers."""

    pass


class FeedClient:
    """
    TCP client for one room's danmaku feed.

    Connecting sends the join frame and starts the heartbeat. Incoming bytes
    go through the frame decoder, the decompressor and the dispatcher, which
    emits events to registered handlers. Stream end, socket errors, corrupt
    framing and heartbeat timeouts all tear the connection down and open a
    new one. One-shot clients (``keep_alive=False``) close for good once
    ``session_lifetime`` seconds have passed since they were created.
    """

    def __init__(
        self,
        room_id: Optional[int] = None,
        keep_alive: Optional[bool] = None,
        config: Optional[Dict[str, Any]] = None,
        host: Optional[str] = None,
        port: Optional[int] = None,
    ) -> None:
        self.config = merge_config(config)
        self.session = Session(
            room_id=int(room_id if room_id is not None else self.config["room_id"]),
            keep_alive=bool(self.config["keep_alive"] if keep_alive is None else keep_alive),
        )
        self.host: str = host or self.config["server_host"]
        self.port: int = int(port or self.config["server_port"])
        self.heartbeat_interval = float(self.config["heartbeat_interval"])
        self.heartbeat_timeout = float(self.config["heartbeat_timeout"])
        self.session_lifetime = float(self.config["session_lifetime"])
        self.reconnect_delay = float(self.config["reconnect_delay"])
        self.backoff = float(self.config["reconnect_backoff"])
        self.max_backoff = float(self.config["max_reconnect_backoff"])
        self.max_retries = int(self.config["max_reconnect_retries"])
        self.connect_timeout = float(self.config["connect_timeout"])
        self.read_size = int(self.config["read_size"])
        self.max_frame_size = int(self.config["max_frame_size"])

        self.dispatcher = FrameDispatcher(
            session=self.session,
            on_liveness=self._on_liveness,
            on_joined=self._on_joined,
            max_frame_size=self.max_frame_size,
            context=f"[room {self.session.room_id}] ",
        )
        self.reconnects = 0
        self._ctx: Optional[ConnectionContext] = None
        self._connect_lock = asyncio.Lock()
        self._reconnect_task: Optional[asyncio.Task] = None
        self._close_task: Optional[asyncio.Task] = None
        self._lifetime_handle: Optional[asyncio.TimerHandle] = None
        self._stopped = False
        self._expired = False
        # set by connect(), cleared by the close() that stops the client
        self._active = False

    @property
    def room_id(self) -> int:
        return self.session.room_id

    @property
    def connected(self) -> bool:
        return self._ctx is not None

    @property
    def joined(self) -> bool:
        return self._ctx is not None and self._ctx.joined

    @property
    def expired(self) -> bool:
        return self._expired

    @property
    def stopped(self) -> bool:
        """Closed on purpose or past its lifetime; no reconnection will follow."""
        return self._stopped or self._expired

    def register_handler(self, event: EventName, handler: EventHandler) -> "FeedClient":
        self.dispatcher.register_handler(event, handler)
        return self

    def unregister_handler(self, event: EventName, handler: EventHandler) -> "FeedClient":
        self.dispatcher.unregister_handler(event, handler)
        return self

    async def connect(self, host: Optional[str] = None, port: Optional[int] = None) -> None:
        """Open the connection; a no-op if already connected or past the session lifetime."""
        if host:
            self.host = host
        if port:
            self.port = int(port)
        self._stopped = False
        self._active = True
        await self._connect()

    async def _connect(self) -> None:
        async with self._connect_lock:
            if self.connected or self._stopped:
                return
            if self._expired:
                logger.info("Room %s session expired; not reconnecting", self.room_id)
                return
            if not self.session.keep_alive:
                self._arm_lifetime()

            streams = await self._open_connection()
            if streams is None:
                return
            reader, writer = streams
            if self.stopped:
                writer.close()
                return
            ctx = self._build_context(reader, writer)
            self._ctx = ctx

        logger.info("Connected to %s for room %s", ctx.peername, self.room_id)
        await self.dispatcher.emit(FeedEventType.CONNECT, self.session)
        if ctx is not self._ctx:
            return
        try:
            await self._send_join(ctx)
        except ProtocolError as exc:
            logger.warning("Join request for room %s failed: %s", self.room_id, exc)
            self._schedule_reconnect(ctx, "join request failed")
            return
        ctx.heartbeat.start()
        ctx.receive_task = asyncio.create_task(self._receive_loop(ctx), name=f"dmfeed-recv-{self.room_id}")

    async def close(self) -> None:
        """Stop for good. A client that was started always emits one final `close`."""
        active, self._active = self._active, False
        self._stopped = True
        task = self._reconnect_task
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._cancel_lifetime()
        had_connection = await self._teardown()
        if active and not had_connection:
            logger.info("Room %s stopped while disconnected", self.room_id)
            await self.dispatcher.emit(FeedEventType.CLOSE, self.session)

    async def send_frame(self, opcode: int, body: Body = b"") -> None:
        ctx = self._ctx
        if ctx is None:
            raise NetworkError(ErrorCode.NOT_CONNECTED, message="Feed client is not connected")
        await self._write(ctx, encode_frame(opcode, body))

    async def _open_connection(self) -> Optional[StreamPair]:
        attempts = 0
        delay = self.backoff
        while not self.stopped:
            try:
                return await asyncio.wait_for(
                    asyncio.open_connection(self.host, self.port), timeout=self.connect_timeout
                )
            except (OSError, asyncio.TimeoutError) as exc:
                attempts += 1
                logger.warning("Connect attempt %s to %s:%s failed: %s", attempts, self.host, self.port, exc)
                if self.max_retries and attempts >= self.max_retries:
                    raise NetworkError(
                        ErrorCode.CONNECT_FAILED, message=f"Exceeded {self.max_retries} connect attempts"
                    ) from exc
                await asyncio.sleep(delay)
                delay = min(delay * 2, self.max_backoff)
        return None

    def _build_context(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> ConnectionContext:
        def send_heartbeat():
            return self._send_heartbeat(ctx)

        def on_timeout() -> None:
            self._schedule_reconnect(ctx, "heartbeat timeout")

        ctx = ConnectionContext(
            reader=reader,
            writer=writer,
            decoder=FrameDecoder(self.max_frame_size),
            heartbeat=HeartbeatMonitor(
                send_heartbeat,
                on_timeout,
                interval=self.heartbeat_interval,
                timeout=self.heartbeat_timeout,
            ),
            peername=str(writer.get_extra_info("peername")),
        )
        return ctx

    async def _send_join(self, ctx: ConnectionContext) -> None:
        body = self.session.join_body().model_dump()
        validator.validate_body(Opcode.JOIN, body)
        await self._write(ctx, encode_frame(Opcode.JOIN, body))
        logger.debug("Sent join request for room %s as uid %s", self.room_id, self.session.uid)

    async def _send_heartbeat(self, ctx: ConnectionContext) -> None:
        body = self.session.heartbeat_body().model_dump()
        validator.validate_body(Opcode.HEARTBEAT, body)
        await self._write(ctx, encode_frame(Opcode.HEARTBEAT, body))
        logger.debug("Sent heartbeat for room %s", self.room_id)

    async def _write(self, ctx: ConnectionContext, data: bytes) -> None:
        try:
            ctx.writer.write(data)
            await ctx.writer.drain()
        except (ConnectionError, OSError) as exc:
            raise NetworkError(ErrorCode.SEND_FAILED, message=f"Send failed: {exc}") from exc

    async def _receive_loop(self, ctx: ConnectionContext) -> None:
        reason = "connection closed by server"
        try:
            while ctx is self._ctx:
                data = await ctx.reader.read(self.read_size)
                if not data:
                    break
                for frame in ctx.decoder.feed(data):
                    if ctx is not self._ctx:
                        return
                    await self.dispatcher.dispatch(frame)
        except asyncio.CancelledError:
            raise
        except ProtocolError as exc:
            logger.warning("Room %s stream corrupted: %s", self.room_id, exc)
            reason = "corrupted stream"
        except (ConnectionError, OSError) as exc:
            logger.info("Room %s socket error: %s", self.room_id, exc)
            reason = f"socket error: {exc}"
        self._schedule_reconnect(ctx, reason)

    def _schedule_reconnect(self, ctx: ConnectionContext, reason: str) -> None:
        # Signals from a discarded connection must not touch the current one.
        if ctx is not self._ctx or self.stopped:
            return
        if self._reconnect_task and not self._reconnect_task.done():
            return
        logger.info("Reconnecting room %s (%s)", self.room_id, reason)
        self._reconnect_task = asyncio.create_task(self._reconnect(), name=f"dmfeed-reconnect-{self.room_id}")

    async def _reconnect(self) -> None:
        await self._teardown()
        self.reconnects += 1
        if self.reconnect_delay:
            await asyncio.sleep(self.reconnect_delay)
        try:
            await self._connect()
        except NetworkError as exc:
            logger.error("Giving up on room %s: %s", self.room_id, exc)

    async def _teardown(self) -> bool:
        ctx, self._ctx = self._ctx, None
        if ctx is None:
            return False
        ctx.heartbeat.stop()
        task = ctx.receive_task
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
        ctx.decoder.reset()
        try:
            ctx.writer.close()
            with contextlib.suppress(ConnectionError, OSError):
                await ctx.writer.wait_closed()
        finally:
            logger.info(
                "Closed connection to %s for room %s after %.1fs", ctx.peername, self.room_id, time.time() - ctx.opened_at
            )
            await self.dispatcher.emit(FeedEventType.CLOSE, self.session)
        return True

    def _on_liveness(self) -> None:
        if self._ctx is not None:
            self._ctx.heartbeat.acknowledge()

    def _on_joined(self) -> None:
        if self._ctx is not None:
            self._ctx.joined = True
            logger.info("Joined room %s", self.room_id)

    def _arm_lifetime(self) -> None:
        if self._lifetime_handle is not None or self._expired:
            return
        remaining = max(0.0, self.session_lifetime - self.session.age())
        self._lifetime_handle = asyncio.get_running_loop().call_later(remaining, self._expire)

    def _cancel_lifetime(self) -> None:
        if self._lifetime_handle is not None:
            self._lifetime_handle.cancel()
            self._lifetime_handle = None

    def _expire(self) -> None:
        self._lifetime_handle = None
        self._expired = True
        logger.info("Room %s session reached its %.0fs lifetime", self.room_id, self.session_lifetime)
        self._close_task = asyncio.create_task(self.close(), name=f"dmfeed-expire-{self.room_id}")
        self._close_task.add_done_callback(self._log_close_failure)

    def _log_close_failure(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Closing expired room %s failed: %r", self.room_id, exc)


__all__ = ["FeedClient", "NetworkError"]
