import asyncio
import json
import logging
import socket
import zlib

import pytest

from conftest import client_config, wait_until
from dmfeed.core.network import FeedClient, NetworkError
from dmfeed.features.lottery import TV_LOTTERY, LotteryWatcher
from dmproto import Opcode, encode_frame
from dmproto.errors import ErrorCode

LIFECYCLE = ("connect", "joined", "close", "populationUpdate")


def _free_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.mark.asyncio
async def test_connect_sends_join_and_gets_ack(feed_server, recorder):
    client = FeedClient(123, config=client_config(feed_server, heartbeat_interval=10.0))
    recorder.attach(client, *LIFECYCLE)
    try:
        await client.connect()
        assert await wait_until(lambda: client.joined)

        (join,) = feed_server.frames(Opcode.JOIN)
        body = json.loads(join.body)
        assert body["roomid"] == 123
        assert body["uid"] == client.session.uid
        assert body["clientver"] == "2.1.8-02af452c"
        assert recorder.names() == ["connect", "joined"]
        assert recorder.payloads("joined") == [client.session]
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_connect_when_connected_is_noop(feed_server):
    client = FeedClient(1, config=client_config(feed_server, heartbeat_interval=10.0))
    try:
        await asyncio.gather(client.connect(), client.connect())
        await client.connect()
        assert client.connected
        assert await wait_until(lambda: len(feed_server.frames(Opcode.JOIN)) == 1)
        assert feed_server.connections == 1
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_split_batched_and_compressed_notifications(feed_server, recorder):
    client = FeedClient(7, config=client_config(feed_server, heartbeat_interval=10.0))
    recorder.attach(client, "DANMU_MSG", "SEND_GIFT", "TV_END", "unknownNotification")
    try:
        await client.connect()
        assert await wait_until(lambda: client.joined)

        first = encode_frame(Opcode.NOTIFICATION, {"cmd": "DANMU_MSG", "info": [0, "hi", [1, "alice"]]})
        packed = zlib.compress(
            encode_frame(Opcode.NOTIFICATION, {"cmd": "SEND_GIFT", "seq": 2})
            + encode_frame(Opcode.NOTIFICATION, {"cmd": "NEW_CMD", "seq": 3}),
            9,
        )
        second = encode_frame(Opcode.NOTIFICATION, packed)
        third = encode_frame(Opcode.NOTIFICATION, {"cmd": "TV_END", "seq": 4})
        stream = first + second + third

        await feed_server.push(stream[:5])
        await asyncio.sleep(0.02)
        await feed_server.push(stream[5 : len(first) + 20])
        await asyncio.sleep(0.02)
        await feed_server.push(stream[len(first) + 20 :])

        assert await wait_until(lambda: len(recorder.events) == 4)
        assert recorder.names() == ["DANMU_MSG", "SEND_GIFT", "unknownNotification", "TV_END"]
        assert recorder.payloads("unknownNotification") == [{"cmd": "NEW_CMD", "seq": 3}]
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_answered_heartbeats_keep_connection(feed_server, recorder):
    client = FeedClient(9, config=client_config(feed_server))
    recorder.attach(client, *LIFECYCLE)
    try:
        await client.connect()
        await asyncio.sleep(0.5)

        assert client.reconnects == 0
        assert feed_server.connections == 1
        assert recorder.count("close") == 0
        assert recorder.count("populationUpdate") >= 3
        assert set(recorder.payloads("populationUpdate")) == {4242}
        heartbeat = feed_server.frames(Opcode.HEARTBEAT)[0]
        assert json.loads(heartbeat.body) == {"uid": client.session.uid, "roomid": 9}
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_missed_heartbeat_reconnects_once(feed_server, recorder):
    feed_server.silent_connections = {1}
    client = FeedClient(9, config=client_config(feed_server))
    recorder.attach(client, *LIFECYCLE)
    try:
        await client.connect()
        assert await wait_until(lambda: feed_server.connections == 2)
        await asyncio.sleep(0.4)

        assert client.reconnects == 1
        assert feed_server.connections == 2
        assert recorder.count("close") == 1
        assert recorder.count("connect") == 2
        assert client.connected and not client.stopped
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_server_drop_reconnects_immediately(feed_server, recorder):
    client = FeedClient(3, config=client_config(feed_server, heartbeat_interval=10.0))
    recorder.attach(client, *LIFECYCLE)
    try:
        await client.connect()
        assert await wait_until(lambda: client.joined)
        feed_server.drop_all()

        assert await wait_until(lambda: feed_server.connections == 2 and client.joined)
        assert recorder.names() == ["connect", "joined", "close", "connect", "joined"]
        assert len(feed_server.frames(Opcode.JOIN)) == 2
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_corrupt_length_prefix_drops_connection(feed_server, recorder):
    client = FeedClient(3, config=client_config(feed_server, heartbeat_interval=10.0))
    recorder.attach(client, *LIFECYCLE)
    try:
        await client.connect()
        assert await wait_until(lambda: client.joined)
        await feed_server.push(b"\x00\x00\x00\x05garbage-bytes")

        assert await wait_until(lambda: feed_server.connections == 2 and client.joined)
        assert client.reconnects == 1
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_close_is_idempotent(feed_server, recorder):
    idle = FeedClient(1, config=client_config(feed_server))
    recorder.attach(idle, *LIFECYCLE)
    await idle.close()
    await idle.close()
    assert recorder.events == []

    client = FeedClient(2, config=client_config(feed_server))
    recorder.attach(client, *LIFECYCLE)
    await client.connect()
    await client.close()
    await client.close()
    await asyncio.sleep(0.2)

    assert recorder.count("close") == 1
    assert not client.connected
    assert client.stopped
    assert feed_server.connections == 1


@pytest.mark.asyncio
async def test_handler_closing_client_stops_dispatch(feed_server, recorder):
    client = FeedClient(4, config=client_config(feed_server, heartbeat_interval=10.0))
    recorder.attach(client, "TV_END", "close")

    async def close_on_result(_payload):
        await client.close()

    client.register_handler("TV_END", close_on_result)
    try:
        await client.connect()
        assert await wait_until(lambda: client.joined)
        await feed_server.push(
            encode_frame(Opcode.NOTIFICATION, {"cmd": "TV_END"}) + encode_frame(Opcode.NOTIFICATION, {"cmd": "TV_END"})
        )

        assert await wait_until(lambda: recorder.count("close") == 1)
        await asyncio.sleep(0.1)
        assert recorder.names() == ["TV_END", "close"]
        assert feed_server.connections == 1
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_one_shot_session_closes_after_lifetime(feed_server, recorder):
    client = FeedClient(5, keep_alive=False, config=client_config(feed_server, session_lifetime=0.3))
    recorder.attach(client, *LIFECYCLE)
    try:
        await client.connect()
        assert await wait_until(lambda: recorder.count("close") == 1, timeout=1.5)

        assert client.session.age() < 1.0
        assert client.expired and client.stopped
        assert recorder.count("populationUpdate") >= 1
        await client.connect()
        assert not client.connected
        assert feed_server.connections == 1
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_send_frame_requires_connection(feed_server):
    client = FeedClient(1, config=client_config(feed_server))
    with pytest.raises(NetworkError) as excinfo:
        await client.send_frame(Opcode.HEARTBEAT, {"uid": 1, "roomid": 1})
    assert excinfo.value.code == ErrorCode.NOT_CONNECTED


@pytest.mark.asyncio
async def test_connect_gives_up_after_max_retries(feed_server):
    client = FeedClient(1, config=client_config(feed_server, server_port=_free_port(), max_reconnect_retries=2))

    with pytest.raises(NetworkError) as excinfo:
        await client.connect()

    assert excinfo.value.code == ErrorCode.CONNECT_FAILED
    assert not client.connected


@pytest.mark.asyncio
async def test_one_shot_session_expiring_while_reconnecting_emits_close(feed_server, recorder):
    main = FeedClient(2, config=client_config(feed_server, session_lifetime=0.5, heartbeat_interval=10.0))
    watcher = LotteryWatcher(main)
    await watcher.on_announcement(TV_LOTTERY, {"cmd": "SYS_MSG", "msg": "小电视一个", "real_roomid": 77})
    watched = watcher.rooms["tv"][77]
    recorder.attach(watched.client, "connect", "close")
    try:
        assert await wait_until(lambda: watched.client.joined)
        await feed_server.stop()

        assert await wait_until(lambda: 77 not in watcher.rooms["tv"], timeout=2.0)
        assert recorder.names() == ["connect", "close", "close"]
        assert watched.client.expired and not watched.client.connected
        await watched.client.close()
        assert recorder.count("close") == 2
    finally:
        await watched.client.close()


@pytest.mark.asyncio
async def test_one_shot_session_that_never_connects_still_closes(feed_server, recorder):
    client = FeedClient(
        6, keep_alive=False, config=client_config(feed_server, server_port=_free_port(), session_lifetime=0.3)
    )
    recorder.attach(client, *LIFECYCLE)

    await asyncio.wait_for(client.connect(), timeout=2.0)

    assert client.expired and client.stopped
    assert await wait_until(lambda: recorder.count("close") == 1)
    await client.close()
    await asyncio.sleep(0.05)
    assert recorder.names() == ["close"]


@pytest.mark.asyncio
async def test_failed_close_on_expiry_is_logged(feed_server, caplog, monkeypatch):
    client = FeedClient(8, keep_alive=False, config=client_config(feed_server))

    async def broken_teardown():
        raise RuntimeError("writer exploded")

    monkeypatch.setattr(client, "_teardown", broken_teardown)
    with caplog.at_level(logging.ERROR, logger="dmfeed.core.network"):
        client._expire()
        assert await wait_until(lambda: client._close_task.done())
        await asyncio.sleep(0.01)

    assert client.expired
    assert "Closing expired room 8 failed" in caplog.text
    assert "writer exploded" in caplog.text


@pytest.mark.asyncio
async def test_connection_logs_name_the_peer(feed_server, caplog):
    client = FeedClient(10, config=client_config(feed_server, heartbeat_interval=10.0))
    peer = f"('127.0.0.1', {feed_server.port})"
    with caplog.at_level(logging.INFO, logger="dmfeed.core.network"):
        await client.connect()
        assert await wait_until(lambda: client.joined)
        await client.close()

    assert f"Connected to {peer} for room 10" in caplog.text
    assert f"Closed connection to {peer} for room 10 after" in caplog.text
