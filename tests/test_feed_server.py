"""End-to-end tests: feed server, API clients and the token store."""

import asyncio
import json

import httpx
import pytest
import pytest_asyncio
import websockets
from conftest import FIXED_NOW

from token_scanner.api import ScannerApiClient, ScannerWebSocketClient, build_scanner_query
from token_scanner.config import Config
from token_scanner.feed import FeedServer, ScannerGenerator, StreamTiming
from token_scanner.main import ScannerWatcher
from token_scanner.state import SnapshotCommand, TokenStore, get_token, map_message

SEED = 42


@pytest_asyncio.fixture
async def server():
    feed = FeedServer(
        ScannerGenerator(SEED, page_size=10, clock=lambda: FIXED_NOW),
        host="127.0.0.1",
        port=0,
        timing=StreamTiming.fast(),
        bootstrap_count=2,
    )
    await feed.start()
    yield feed
    await feed.stop()


def _ws_url(server: FeedServer) -> str:
    return f"ws://127.0.0.1:{server.bound_port}/ws"


def _http_url(server: FeedServer) -> str:
    return f"http://127.0.0.1:{server.bound_port}"


async def _recv(ws, timeout: float = 2.0) -> dict:
    return json.loads(await asyncio.wait_for(ws.recv(), timeout))


async def _wait_for(predicate, timeout: float = 3.0):
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


@pytest.mark.asyncio
async def test_scanner_filter_bootstraps_streams(server):
    store = TokenStore()
    async with websockets.connect(_ws_url(server)) as ws:
        await ws.send(json.dumps({"event": "scanner-filter", "data": {"chain": "ETH", "page": 1}}))

        first = await _recv(ws)
        assert first["event"] == "scanner-pairs"
        items = first["data"]["scannerPairs"]
        assert len(items) == 10
        store.dispatch(map_message(first))

        ticked_pairs = set()
        while len(ticked_pairs) < 2:
            message = await _recv(ws)
            store.dispatch(map_message(message))
            if message["event"] == "tick":
                ticked_pairs.add(message["data"]["pair"]["pair"])

    assert ticked_pairs == {items[0]["pairAddress"], items[1]["pairAddress"]}
    for item in items[:2]:
        assert get_token(store.state, item["pairAddress"]).last_tick_at is not None
    assert get_token(store.state, items[5]["pairAddress"]).last_tick_at is None


@pytest.mark.asyncio
async def test_subscribe_unknown_pair_starts_stub_stream(server):
    async with websockets.connect(_ws_url(server)) as ws:
        await ws.send(json.dumps({"event": "subscribe-pair", "data": {"pair": "0xNEW", "token": "0xNEWT", "chain": "BSC"}}))
        message = await _recv(ws)

    assert message["event"] == "tick"
    swaps = message["data"]["swaps"]
    assert message["data"]["pair"] == {"pair": "0xNEW", "token": "0xNEWT", "chain": "56"}
    assert swaps[0]["token0Address"] == "0xWBNB"
    assert 0.97 <= float(swaps[1]["priceToken1Usd"]) <= 1.03


@pytest.mark.asyncio
async def test_subscribe_stats_only(server):
    async with websockets.connect(_ws_url(server)) as ws:
        await ws.send(
            json.dumps({"event": "subscribe-pair-stats", "data": {"pair": "0xNEW", "token": "0xNEWT", "chain": "ETH"}})
        )
        messages = [await _recv(ws) for _ in range(3)]

    assert {m["event"] for m in messages} == {"pair-stats"}


@pytest.mark.asyncio
async def test_unsubscribe_stops_stream(server):
    pair = {"pair": "0xNEW", "token": "0xNEWT", "chain": "ETH"}
    async with websockets.connect(_ws_url(server)) as ws:
        await ws.send(json.dumps({"event": "subscribe-pair", "data": pair}))
        await _recv(ws)
        await ws.send(json.dumps({"event": "unsubscribe-pair", "data": pair}))

        await _wait_for(lambda: all(not s.scheduler.active_pairs for s in server.sessions))


@pytest.mark.asyncio
async def test_disconnect_cancels_session(server):
    async with websockets.connect(_ws_url(server)) as ws:
        await ws.send(json.dumps({"event": "scanner-filter", "data": {"page": 1}}))
        await _recv(ws)
        await _wait_for(lambda: len(server.sessions) == 1)
        session = next(iter(server.sessions))
        assert session.scheduler.active_pairs

    await _wait_for(lambda: not server.sessions)
    assert not session.scheduler.active_pairs


@pytest.mark.asyncio
async def test_scanner_append():
    feed = FeedServer(
        ScannerGenerator(SEED, page_size=5, clock=lambda: FIXED_NOW),
        host="127.0.0.1",
        port=0,
        timing=StreamTiming.fast(),
        bootstrap_count=0,
        append_interval=0.02,
    )
    await feed.start()
    try:
        async with websockets.connect(_ws_url(feed)) as ws:
            await ws.send(json.dumps({"event": "scanner-filter", "data": {"chain": "ETH", "page": 1}}))
            initial = await _recv(ws)
            known = {i["pairAddress"] for i in initial["data"]["scannerPairs"]}

            message = await _recv(ws)
            while message["event"] != "scanner-append":
                message = await _recv(ws)
    finally:
        await feed.stop()

    command = map_message(message)
    assert isinstance(command, SnapshotCommand)
    assert command.append is True
    assert command.page == 1
    assert command.items[0].token.pair_address not in known


@pytest.mark.asyncio
async def test_http_scanner_matches_generator(server):
    client = ScannerApiClient(_http_url(server))
    try:
        result = await client.get_scanner_page({"chain": "ETH", "page": 2, "isNotHP": False})
        assert await client.health() is True
    finally:
        await client.close()

    expected = server.generator.generate({"chain": "ETH", "page": "2", "isNotHP": "false"})
    assert result.page == 2
    assert result.total_pages == 10
    assert result.items == expected.items
    assert isinstance(result.to_command(), SnapshotCommand)


@pytest.mark.asyncio
async def test_http_non_finite_page_serves_first_page(server):
    async with httpx.AsyncClient() as client:
        response = await client.get(f"{_http_url(server)}/scanner", params={"chain": "ETH", "page": "1e400"})
    assert response.status_code == 200
    assert response.json()["page"] == 1


@pytest.mark.asyncio
async def test_non_finite_page_keeps_session_alive(server):
    async with websockets.connect(_ws_url(server)) as ws:
        await ws.send('{"event": "scanner-filter", "data": {"chain": "ETH", "page": 1e400}}')
        first = await _recv(ws)
        assert first["event"] == "scanner-pairs"
        assert first["data"]["page"] == 1

        await ws.send('{"event": "unsubscribe-scanner-filter", "data": {"page": 1e400}}')
        await ws.send(json.dumps({"event": "scanner-filter", "data": {"chain": "ETH", "page": 2}}))
        message = await _recv(ws)
        while message["event"] != "scanner-pairs":
            message = await _recv(ws)
        assert message["data"]["page"] == 2


@pytest.mark.asyncio
async def test_http_unknown_path(server):
    async with httpx.AsyncClient() as client:
        response = await client.get(f"{_http_url(server)}/nope")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_api_client_raises_on_error_status():
    transport = httpx.MockTransport(lambda request: httpx.Response(500, text="down"))
    client = ScannerApiClient("http://scanner.test", client=httpx.AsyncClient(transport=transport))
    try:
        with pytest.raises(httpx.HTTPStatusError):
            await client.get_scanner_page({"page": 1})
    finally:
        await client.close()


def test_build_scanner_query():
    assert build_scanner_query(
        {"chain": "ETH", "page": 1, "isNotHP": True, "rankBy": None, "orderBy": "", "tags": ["a", "b"]}
    ) == [("chain", "ETH"), ("page", "1"), ("isNotHP", "true"), ("tags", "a"), ("tags", "b")]


@pytest.mark.asyncio
async def test_websocket_client_receives_snapshot(server):
    received: list[dict] = []

    async def on_message(message: dict):
        received.append(message)
        if message["event"] == "scanner-pairs":
            await client.subscribe_pairs(message["data"]["scannerPairs"][:3])

    client = ScannerWebSocketClient(
        url=_ws_url(server),
        scanner_params={"chain": "ETH", "page": 1},
        on_message=on_message,
        reconnect_delay=0.05,
    )
    task = asyncio.create_task(client.connect())
    try:
        await _wait_for(
            lambda: len({m["data"]["pair"]["pair"] for m in received if m["event"] == "tick"}) >= 3
        )
    finally:
        await client.disconnect()
        await asyncio.wait_for(task, 2.0)

    assert received[0]["event"] == "scanner-pairs"


@pytest.mark.asyncio
async def test_websocket_client_unsubscribes():
    feed = FeedServer(
        ScannerGenerator(SEED, page_size=5, clock=lambda: FIXED_NOW),
        host="127.0.0.1",
        port=0,
        timing=StreamTiming.fast(),
        bootstrap_count=0,
        append_interval=0.05,
    )
    await feed.start()
    pages: list[list[dict]] = []

    async def on_message(message: dict):
        if message["event"] == "scanner-pairs":
            pages.append(message["data"]["scannerPairs"])

    client = ScannerWebSocketClient(
        url=_ws_url(feed),
        scanner_params={"chain": "ETH", "page": 1},
        on_message=on_message,
        reconnect_delay=0.05,
    )
    task = asyncio.create_task(client.connect())
    try:
        await asyncio.wait_for(client.connected.wait(), 2.0)
        await _wait_for(lambda: pages)
        session = next(iter(feed.sessions))

        assert await client.subscribe_pairs(pages[0][:3]) == 3
        await _wait_for(lambda: len(session.scheduler.active_pairs) == 3 and session._append_tasks)

        assert await client.unsubscribe_pairs(pages[0][:3]) == 3
        await client.unsubscribe_scanner()
        await _wait_for(lambda: not session.scheduler.active_pairs and not session._append_tasks)
        assert client.scanner_params is None
    finally:
        await client.disconnect()
        await asyncio.wait_for(task, 2.0)
        await feed.stop()

    assert not client.connected.is_set()


@pytest.mark.asyncio
async def test_watcher_tracks_live_tokens(server):
    config = Config()
    config.client.websocket_url = _ws_url(server)
    config.client.reconnect_delay = 0.05
    config.logging.level = "WARNING"

    watcher = ScannerWatcher(config)
    sent: list[str] = []
    send = watcher.ws_client.send

    async def recording_send(message: dict) -> bool:
        sent.append(message["event"])
        return await send(message)

    watcher.ws_client.send = recording_send
    task = asyncio.create_task(watcher.start())
    try:
        await _wait_for(
            lambda: sum(1 for t in watcher.store.state.by_id.values() if t.last_tick_at) >= 5
        )
    finally:
        await watcher.stop()
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    assert len(watcher.store.state.by_id) == 10
    assert watcher.store.version > 1
    assert sent.count("unsubscribe-pair") == 10
    assert sent[-1] == "unsubscribe-scanner-filter"
