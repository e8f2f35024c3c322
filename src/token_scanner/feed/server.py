"""Feed server: scanner snapshots over HTTP and live pair streams over WebSocket."""

import asyncio
import json
import logging
from http import HTTPStatus
from typing import Any, Mapping
from urllib.parse import parse_qsl, urlsplit

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed
from websockets.http11 import Request, Response

from ..models import PairKey, to_chain_id
from .generator import ScannerGenerator, normalize_params
from .scheduler import FAST, SLOW, PairStreamScheduler, StreamTiming, pair_key_of, slow_factor_for

logger = logging.getLogger(__name__)

APPEND_PAGE_OFFSET = 10_000


def _stub_item(pair: str, token: str, chain: Any) -> dict[str, Any]:
    """Minimal item so a stream can start for a pair this connection never saw."""
    return {"pairAddress": pair, "token1Address": token, "chainId": to_chain_id(chain), "price": "1.0"}


class FeedSession:
    """
    State owned by one WebSocket connection.

    Tracks the items this client has been shown, a scheduler for its pair
    streams and the scanner-append loop. Everything is cancelled when the
    connection goes away.
    """

    def __init__(
        self,
        connection: ServerConnection,
        generator: ScannerGenerator,
        timing: StreamTiming,
        bootstrap_count: int = 6,
        append_interval: float = 0.0,
    ):
        self.connection = connection
        self.generator = generator
        self.bootstrap_count = bootstrap_count
        self.append_interval = append_interval
        self.items_by_key: dict[PairKey, Mapping[str, Any]] = {}
        self.scheduler = PairStreamScheduler(generator.base_seed, self.send, timing)
        self._append_tasks: dict[int, asyncio.Task] = {}

    async def send(self, message: dict):
        try:
            await self.connection.send(json.dumps(message))
        except ConnectionClosed:
            logger.debug("Dropping message for closed connection")

    async def run(self):
        """Serve the connection until the client disconnects."""
        try:
            async for raw in self.connection:
                try:
                    message = json.loads(raw)
                except ValueError:
                    logger.debug(f"Non-JSON message: {str(raw)[:100]}")
                    continue
                if isinstance(message, dict):
                    await self.handle(message)
        except ConnectionClosed as e:
            logger.debug(f"Client connection closed: {e}")
        finally:
            self.close()

    def close(self):
        self.scheduler.close()
        for task in self._append_tasks.values():
            task.cancel()
        self._append_tasks.clear()

    async def handle(self, message: Mapping[str, Any]):
        event = message.get("event")
        data = message.get("data")
        if not isinstance(data, Mapping):
            data = {}

        if event == "scanner-filter":
            await self._on_scanner_filter(data)
        elif event == "unsubscribe-scanner-filter":
            self._stop_append(data)
        elif event in ("subscribe-pair", "subscribe-pair-slow"):
            item = self._resolve_item(data)
            if item is not None:
                tier = SLOW if event.endswith("-slow") else FAST
                self.scheduler.start(item, tier=tier, stats_tier=None, slow_factor=self._slow_factor())
        elif event in ("subscribe-pair-stats", "subscribe-pair-stats-slow"):
            item = self._resolve_item(data)
            if item is not None:
                tier = SLOW if event.endswith("-slow") else FAST
                self.scheduler.start(item, tier=None, stats_tier=tier, slow_factor=self._slow_factor())
        elif event == "unsubscribe-pair":
            self._unsubscribe(data, ticks=True, stats=False)
        elif event == "unsubscribe-pair-stats":
            self._unsubscribe(data, ticks=False, stats=True)
        else:
            logger.debug(f"Ignoring unknown event: {event}")

    def _slow_factor(self) -> int:
        return slow_factor_for(len(self.items_by_key))

    def _index(self, items: list[dict[str, Any]]):
        for item in items:
            self.items_by_key[pair_key_of(item)] = item

    async def _on_scanner_filter(self, params: Mapping[str, Any]):
        result = self.generator.generate(params)
        await self.send({"event": "scanner-pairs", "data": result.to_wire()})
        self._index(result.items)

        for item in result.items[: self.bootstrap_count]:
            self.scheduler.start(item, tier=FAST, stats_tier=FAST)

        if self.append_interval > 0 and result.page not in self._append_tasks:
            self._append_tasks[result.page] = asyncio.create_task(
                self._append_loop(dict(params), result.page)
            )

    def _stop_append(self, params: Mapping[str, Any]):
        task = self._append_tasks.pop(normalize_params(params)["page"], None)
        if task is not None:
            task.cancel()

    async def _append_loop(self, params: dict[str, Any], page: int):
        """Emit one previously unseen item every ``append_interval`` seconds."""
        round_index = 0
        while True:
            await asyncio.sleep(self.append_interval)
            round_index += 1
            far_page = self.generator.generate(
                {**params, "page": page + APPEND_PAGE_OFFSET + round_index}
            )
            fresh = next(
                (i for i in far_page.items if pair_key_of(i) not in self.items_by_key),
                None,
            )
            if fresh is None:
                continue
            self._index([fresh])
            await self.send({"event": "scanner-append", "data": {"page": page, "scannerPairs": [fresh]}})
            self.scheduler.start(fresh, tier=FAST, stats_tier=FAST)

    def _resolve_item(self, data: Mapping[str, Any]) -> Mapping[str, Any] | None:
        """Known item by full key, then by pair+token, then by pair; else a stub."""
        pair = data.get("pair")
        token = data.get("token")
        if not isinstance(pair, str) or not pair:
            return None

        key = PairKey.of(pair, str(token or ""), data.get("chain"))
        item = self.items_by_key.get(key)
        if item is not None:
            return item

        for candidate_key, candidate in self.items_by_key.items():
            if candidate_key.pair_address == key.pair_address and candidate_key.token_address == key.token_address:
                return candidate
        for candidate_key, candidate in self.items_by_key.items():
            if candidate_key.pair_address == key.pair_address:
                return candidate

        if not token:
            return None
        stub = _stub_item(pair, str(token), data.get("chain"))
        self._index([stub])
        logger.debug(f"Started stub stream for unknown pair {key.wire}")
        return stub

    def _unsubscribe(self, data: Mapping[str, Any], ticks: bool, stats: bool):
        pair = data.get("pair")
        if not isinstance(pair, str) or not pair:
            return
        key = PairKey.of(pair, str(data.get("token") or ""), data.get("chain"))
        if not self.scheduler.is_running(key):
            # Chain spelled differently from the item; match on the addresses
            key = next(
                (
                    k
                    for k in self.scheduler.active_pairs
                    if k.pair_address == key.pair_address and k.token_address == key.token_address
                ),
                key,
            )
        self.scheduler.unsubscribe(key, ticks=ticks, stats=stats)


class FeedServer:
    """WebSocket feed plus the ``/scanner`` and ``/healthz`` HTTP endpoints."""

    def __init__(
        self,
        generator: ScannerGenerator,
        host: str = "0.0.0.0",
        port: int = 3001,
        ws_path: str = "/ws",
        timing: StreamTiming | None = None,
        bootstrap_count: int = 6,
        append_interval: float = 0.0,
    ):
        self.generator = generator
        self.host = host
        self.port = port
        self.ws_path = ws_path
        self.timing = timing or StreamTiming()
        self.bootstrap_count = bootstrap_count
        self.append_interval = append_interval
        self.sessions: set[FeedSession] = set()
        self._server: Server | None = None

    @property
    def bound_port(self) -> int | None:
        """Actual listening port (useful when started on port 0)."""
        if not self._server or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    async def start(self):
        self._server = await serve(
            self._handle_connection,
            self.host,
            self.port,
            process_request=self._process_request,
        )
        logger.info(f"Feed server listening on ws://{self.host}:{self.bound_port}{self.ws_path}")

    async def stop(self):
        for session in list(self.sessions):
            session.close()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        logger.info("Feed server stopped")

    async def serve_forever(self):
        if self._server is None:
            await self.start()
        await self._server.serve_forever()

    def _process_request(self, connection: ServerConnection, request: Request) -> Response | None:
        url = urlsplit(request.path)
        if url.path == self.ws_path:
            return None
        if url.path == "/healthz":
            return connection.respond(HTTPStatus.OK, "ok")
        if url.path == "/scanner":
            params = dict(parse_qsl(url.query))
            body = json.dumps(self.generator.generate(params).to_wire())
            response = connection.respond(HTTPStatus.OK, body)
            del response.headers["Content-Type"]
            response.headers["Content-Type"] = "application/json"
            response.headers["Access-Control-Allow-Origin"] = "*"
            return response
        return connection.respond(HTTPStatus.NOT_FOUND, "Not found\n")

    async def _handle_connection(self, connection: ServerConnection):
        session = FeedSession(
            connection,
            self.generator,
            self.timing,
            bootstrap_count=self.bootstrap_count,
            append_interval=self.append_interval,
        )
        self.sessions.add(session)
        logger.info(f"Client connected ({len(self.sessions)} active)")
        try:
            await session.run()
        finally:
            self.sessions.discard(session)
            logger.info(f"Client disconnected ({len(self.sessions)} active)")
