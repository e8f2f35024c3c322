"""WebSocket client for the scanner feed."""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Iterable, Mapping

import websockets
from websockets.asyncio.client import ClientConnection

from ..state.mapper import (
    build_pair_stats_slow_subscription,
    build_pair_stats_subscription,
    build_pair_stats_unsubscription,
    build_pair_slow_subscription,
    build_pair_subscription,
    build_pair_unsubscription,
    build_scanner_subscription,
    build_scanner_unsubscription,
    compute_pair_payloads,
)

logger = logging.getLogger(__name__)

MessageCallback = Callable[[dict], Awaitable[None]]


class ScannerWebSocketClient:
    """Client for the scanner feed WebSocket."""

    WEBSOCKET_URL = "ws://localhost:3001/ws"
    PING_INTERVAL = 5  # seconds
    RECONNECT_DELAY = 5  # seconds

    def __init__(
        self,
        url: str | None = None,
        scanner_params: Mapping[str, Any] | None = None,
        on_message: MessageCallback | None = None,
        on_connect: Callable[[], Awaitable[None]] | None = None,
        on_disconnect: Callable[[], Awaitable[None]] | None = None,
        reconnect_delay: float | None = None,
    ):
        self.url = url or self.WEBSOCKET_URL
        self.scanner_params = dict(scanner_params) if scanner_params else None
        self.on_message = on_message
        self.on_connect = on_connect
        self.on_disconnect = on_disconnect
        self.reconnect_delay = self.RECONNECT_DELAY if reconnect_delay is None else reconnect_delay
        self._ws: ClientConnection | None = None
        self._running = False
        self._ping_task: asyncio.Task | None = None
        self.connected = asyncio.Event()

    async def connect(self):
        """Connect to the feed and listen, reconnecting until ``disconnect()``."""
        self._running = True

        while self._running:
            try:
                logger.info(f"Connecting to {self.url}...")

                async with websockets.connect(self.url, ping_interval=None) as ws:
                    self._ws = ws
                    self.connected.set()
                    logger.info("Connected to scanner feed")

                    if self.on_connect:
                        await self.on_connect()

                    if self.scanner_params is not None:
                        await self.subscribe_scanner(self.scanner_params)

                    self._ping_task = asyncio.create_task(self._ping_loop())

                    await self._listen()

            except websockets.ConnectionClosed as e:
                logger.warning(f"WebSocket connection closed: {e}")
            except Exception as e:
                logger.error(f"WebSocket error: {e}")
            finally:
                self.connected.clear()
                if self._ping_task:
                    self._ping_task.cancel()
                    try:
                        await self._ping_task
                    except asyncio.CancelledError:
                        pass
                    self._ping_task = None

                if self.on_disconnect:
                    await self.on_disconnect()

                self._ws = None

            if self._running:
                logger.info(f"Reconnecting in {self.reconnect_delay} seconds...")
                await asyncio.sleep(self.reconnect_delay)

    async def disconnect(self):
        """Disconnect from the WebSocket."""
        self._running = False
        if self._ws:
            await self._ws.close()

    async def send(self, message: dict) -> bool:
        """Send an envelope; returns False while disconnected."""
        if not self._ws:
            return False
        await self._ws.send(json.dumps(message))
        return True

    async def subscribe_scanner(self, params: Mapping[str, Any]):
        """Request a scanner page; remembered and replayed after reconnects."""
        self.scanner_params = dict(params)
        if await self.send(build_scanner_subscription(params)):
            logger.info(f"Subscribed to scanner filter {self.scanner_params}")

    async def unsubscribe_scanner(self, params: Mapping[str, Any] | None = None):
        params = dict(params or self.scanner_params or {})
        self.scanner_params = None
        await self.send(build_scanner_unsubscription(params))

    async def subscribe_pairs(self, items: Iterable[Any], slow: bool = False, stats: bool = True) -> int:
        """
        Subscribe to ticks (and pair-stats) for scanner items.

        Args:
            items: Raw scanner items; duplicates are collapsed
            slow: Use the slow tier instead of the fast one
            stats: Also subscribe to pair-stats

        Returns:
            Number of distinct pairs subscribed
        """
        tick_builder = build_pair_slow_subscription if slow else build_pair_subscription
        stats_builder = build_pair_stats_slow_subscription if slow else build_pair_stats_subscription
        payloads = compute_pair_payloads(items)
        for p in payloads:
            await self.send(tick_builder(p["pair"], p["token"], p["chain"]))
            if stats:
                await self.send(stats_builder(p["pair"], p["token"], p["chain"]))
        return len(payloads)

    async def unsubscribe_pairs(self, items: Iterable[Any]) -> int:
        payloads = compute_pair_payloads(items)
        for p in payloads:
            await self.send(build_pair_unsubscription(p["pair"], p["token"], p["chain"]))
            await self.send(build_pair_stats_unsubscription(p["pair"], p["token"], p["chain"]))
        return len(payloads)

    async def _ping_loop(self):
        """Send periodic pings to keep connection alive."""
        while self._running and self._ws:
            try:
                await asyncio.sleep(self.PING_INTERVAL)
                if self._ws:
                    await self._ws.ping()
            except websockets.ConnectionClosed as e:
                logger.debug(f"Ping error: {e}")
                break

    async def _listen(self):
        """Listen for incoming messages."""
        if not self._ws:
            return

        async for message in self._ws:
            try:
                await self._handle_message(message)
            except Exception as e:
                logger.error(f"Error handling message: {e}", exc_info=True)

    async def _handle_message(self, raw_message: str | bytes):
        try:
            data = json.loads(raw_message)
        except ValueError:
            logger.debug(f"Non-JSON message: {str(raw_message)[:100]}")
            return

        if not isinstance(data, dict) or not self.on_message:
            return
        await self.on_message(data)
