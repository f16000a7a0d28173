import asyncio

import pytest
from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, InvalidStatus

from sigrelay.codec import decode, encode
from sigrelay.config import HubRuntimeConfig
from sigrelay.service import HubService


def run_with_hub(scenario, **overrides) -> HubService:
    """Run scenario(hub, port) against a relay listening on a free loopback port."""
    cfg = HubRuntimeConfig(
        host="127.0.0.1", port=0, ping_interval_s=0, ping_timeout_s=0, **overrides
    )
    hub = HubService(cfg)

    async def main() -> None:
        server = asyncio.create_task(hub.serve_forever())
        try:
            await asyncio.wait_for(hub.ready.wait(), 5)
            await scenario(hub, hub.bound_port)
        finally:
            hub.stop()
            await asyncio.wait_for(server, 5)

    asyncio.run(main())
    return hub


async def http_get(port: int, path: str) -> tuple[int, dict]:
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    writer.write(f"GET {path} HTTP/1.1\r\nHost: 127.0.0.1\r\n\r\n".encode("ascii"))
    await writer.drain()
    raw = await asyncio.wait_for(reader.read(), 5)
    writer.close()

    head, _, body = raw.partition(b"\r\n\r\n")
    status = int(head.split(b" ", 2)[1])
    assert b"application/json" in head
    return status, decode(body)


async def recv(ws) -> dict:
    return decode(await asyncio.wait_for(ws.recv(), 5))


async def join(ws, room: str = "r1") -> dict:
    await ws.send(encode({"type": "join", "app": "demo", "room": room}))
    return await recv(ws)


def test_healthz_and_stats_over_plain_http() -> None:
    async def scenario(hub, port):
        status, body = await http_get(port, "/healthz")
        assert status == 200
        assert body["ok"] is True
        assert body["now"].endswith("Z")

        async with connect(f"ws://127.0.0.1:{port}/ws") as ws:
            assert (await join(ws))["type"] == "welcome"

            status, body = await http_get(port, "/stats?pretty=1")
            assert status == 200
            assert body["clients"] == 1
            assert body["clients_joined"] == 1
            assert body["rooms"] == 1
            assert body["counters"]["joins"] == 1

    run_with_hub(scenario)


def test_other_paths_are_not_found() -> None:
    async def scenario(hub, port):
        status, body = await http_get(port, "/nope")
        assert status == 404
        assert body == {"error": "not-found"}

        with pytest.raises(InvalidStatus) as excinfo:
            async with connect(f"ws://127.0.0.1:{port}/elsewhere"):
                pass
        assert excinfo.value.response.status_code == 404
        assert hub.stats_manager.get("connections") == 0

    run_with_hub(scenario)


def test_custom_ws_path() -> None:
    async def scenario(hub, port):
        async with connect(f"ws://127.0.0.1:{port}/signal") as ws:
            assert (await join(ws))["type"] == "welcome"

    run_with_hub(scenario, ws_path="/signal")


def test_binary_frames_are_read_as_utf8_json() -> None:
    async def scenario(hub, port):
        async with connect(f"ws://127.0.0.1:{port}/ws") as ws:
            join_msg = {"type": "join", "app": "demo", "room": "r1", "meta": {"name": "Zoë"}}
            await ws.send(encode(join_msg).encode("utf-8"))
            welcome = await recv(ws)
            assert welcome["type"] == "welcome"
            assert welcome["meta"]["name"] == "Zoë"

            await ws.send(b"\xff\xfe")
            assert await recv(ws) == {"type": "error", "reason": "invalid-json"}

    run_with_hub(scenario)


def test_closing_a_socket_tears_down_membership() -> None:
    async def scenario(hub, port):
        url = f"ws://127.0.0.1:{port}/ws"
        async with connect(url) as b:
            async with connect(url) as a:
                a_id = (await join(a))["id"]
                assert (await join(b))["peers"] == [a_id]
                assert (await recv(a))["type"] == "peer-joined"

            assert await recv(b) == {"type": "peer-left", "id": a_id}
            snap = hub.stats_manager.snapshot()
            assert snap["clients"] == 1
            assert snap["memberships"] == 1
            assert snap["counters"]["parts"] == 1

        # Wait for the server side of b's close to run.
        for _ in range(100):
            if not hub.session_manager.clients:
                break
            await asyncio.sleep(0.01)
        assert hub.room_manager.rooms == {}

    run_with_hub(scenario)


def test_oversized_frame_closes_connection_and_notifies_peers() -> None:
    async def scenario(hub, port):
        url = f"ws://127.0.0.1:{port}/ws"
        async with connect(url) as a, connect(url) as b:
            await join(a)
            b_id = (await join(b))["id"]
            assert (await recv(a))["type"] == "peer-joined"

            await b.send(encode({"type": "broadcast", "payload": "x" * 4096}))
            with pytest.raises(ConnectionClosed) as excinfo:
                await recv(b)
            assert excinfo.value.rcvd.code == 1009

            assert await recv(a) == {"type": "peer-left", "id": b_id}

    run_with_hub(scenario, max_message_bytes=1024)


def test_lone_surrogate_broadcast_keeps_recipient_connected() -> None:
    async def scenario(hub, port):
        url = f"ws://127.0.0.1:{port}/ws"
        async with connect(url) as a, connect(url) as b:
            a_id = (await join(a))["id"]
            await join(b)
            assert (await recv(a))["type"] == "peer-joined"

            await a.send('{"type":"broadcast","payload":"\\ud800"}')
            assert await recv(b) == {
                "type": "broadcast",
                "from": a_id,
                "payload": "\ud800",
            }

            await b.send(encode({"type": "ping"}))
            assert (await recv(b))["type"] == "pong"
            assert hub.stats_manager.get("send_failures") == 0

    run_with_hub(scenario)


def test_deeply_nested_frame_gets_invalid_json() -> None:
    async def scenario(hub, port):
        async with connect(f"ws://127.0.0.1:{port}/ws") as ws:
            await ws.send("[" * 5000 + "]" * 5000)
            assert await recv(ws) == {"type": "error", "reason": "invalid-json"}
            assert (await join(ws))["type"] == "welcome"

    run_with_hub(scenario)


def test_stop_clears_state() -> None:
    async def scenario(hub, port):
        # Left open: the server closes it on stop.
        ws = await connect(f"ws://127.0.0.1:{port}/ws", ping_interval=None)
        await join(ws)
        assert hub.stats_manager.snapshot()["clients"] == 1

    hub = run_with_hub(scenario)
    assert hub.bound_port is None
    assert hub.session_manager.clients == {}
    assert hub.room_manager.rooms == {}
