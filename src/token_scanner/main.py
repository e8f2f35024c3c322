"""Main entry point for token-scanner."""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

import websockets

from .api import ScannerApiClient, ScannerWebSocketClient
from .config import Config, load_config
from .feed import FeedServer, ScannerGenerator
from .output import TokenLogger, setup_app_logging
from .state import (
    Command,
    SnapshotCommand,
    StatsCommand,
    TickCommand,
    TokenState,
    TokenStore,
    get_token,
    map_message,
    page_tokens,
)

logger = logging.getLogger(__name__)


class ScannerWatcher:
    """Consumer application: follows the feed and keeps the token store current."""

    def __init__(self, config: Config):
        self.config = config
        self._running = False

        self.store = TokenStore(
            window_seconds=config.state.history_window_seconds,
            drift_factor=config.state.liquidity_drift_factor,
        )
        self.token_logger = TokenLogger(
            log_file=config.logging.file,
            log_level=config.logging.level,
            max_file_size_mb=config.logging.max_file_size_mb,
            backup_count=config.logging.backup_count,
        )
        self.ws_client = ScannerWebSocketClient(
            url=config.client.websocket_url,
            scanner_params=config.client.scanner_params,
            on_message=self._on_message,
            on_connect=self._on_connect,
            on_disconnect=self._on_disconnect,
            reconnect_delay=config.client.reconnect_delay,
        )
        self._unsubscribe_store = self.store.subscribe(self._on_state_change)
        self._store_task: asyncio.Task | None = None
        self._pair_items: list[dict] = []

    async def start(self):
        """Start the watcher."""
        logger.info("Starting token scanner watcher...")
        logger.info(f"Scanner filter: {self.config.client.scanner_params}")

        self._running = True
        self._store_task = asyncio.create_task(self.store.run())
        await self.ws_client.connect()

    async def stop(self):
        """Stop the watcher gracefully."""
        logger.info("Stopping token scanner watcher...")
        self._running = False

        if self.ws_client.connected.is_set():
            try:
                await self.ws_client.unsubscribe_pairs(self._pair_items)
                await self.ws_client.unsubscribe_scanner()
            except websockets.ConnectionClosed as e:
                logger.debug(f"Could not unsubscribe before disconnect: {e}")
        await self.ws_client.disconnect()
        self.store.close()
        if self._store_task:
            await self._store_task
        self._unsubscribe_store()

        stats = self.store.stats
        logger.info(
            f"Final stats: {stats['commands_processed']} commands processed, "
            f"{stats['commands_applied']} applied, {stats['tokens']} tokens tracked"
        )
        self.token_logger.close()

    async def _on_connect(self):
        logger.info("Connected to scanner feed")

    async def _on_disconnect(self):
        logger.warning("Disconnected from scanner feed")

    async def _on_message(self, message: dict):
        """Map an inbound envelope and queue it for reduction."""
        command = map_message(message)
        if command is None:
            logger.debug(f"Ignoring message: {message.get('event')}")
            return

        self.store.submit(command)

        if isinstance(command, SnapshotCommand):
            items = (message.get("data") or {}).get("scannerPairs") or []
            self._pair_items.extend(items)
            count = await self.ws_client.subscribe_pairs(items)
            logger.info(
                f"{'Appended' if command.append else 'Loaded'} {len(command.items)} tokens "
                f"on page {command.page}, subscribed to {count} pairs"
            )

    def _on_state_change(self, version: int, state: TokenState, command: Command):
        if isinstance(command, SnapshotCommand):
            for item in command.items:
                token = get_token(state, item.token.id)
                if token:
                    self.token_logger.log_token(token, "append" if command.append else "snapshot")
        elif isinstance(command, TickCommand):
            token = get_token(state, command.pair_address)
            if token:
                self.token_logger.log_token(token, "tick", level=logging.DEBUG)
        elif isinstance(command, StatsCommand):
            token = get_token(state, command.stats.pair_address)
            if token:
                self.token_logger.log_token(token, "stats")


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Token scanner - deterministic market-data feed and token state tracker"
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the deterministic feed server")
    serve_parser.add_argument("--host", type=str, help="Override server.host")
    serve_parser.add_argument("--port", type=int, help="Override server.port")
    serve_parser.add_argument("--seed", type=int, help="Override the base seed")
    serve_parser.add_argument("--fast", action="store_true", help="Compressed stream timing")

    subparsers.add_parser("watch", help="Follow the feed and track token state")

    snapshot_parser = subparsers.add_parser("snapshot", help="Fetch one scanner page over HTTP")
    snapshot_parser.add_argument("--page", type=int, help="Page to fetch")
    snapshot_parser.add_argument("--chain", type=str, help="Chain filter (ETH, SOL, BASE, BSC)")
    snapshot_parser.add_argument("--rank-by", type=str, help="Sort key")
    snapshot_parser.add_argument(
        "--exclude-honeypots", action="store_true", help="Hide honeypot tokens"
    )

    return parser.parse_args(argv)


async def run_until_signal(start, stop):
    """Run ``start()`` in the background until SIGINT/SIGTERM, then ``stop()``."""
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def signal_handler():
        logger.info("Received shutdown signal")
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    task = asyncio.create_task(start())
    await shutdown_event.wait()

    await stop()
    task.cancel()

    try:
        await task
    except asyncio.CancelledError:
        pass


async def serve(config: Config, args):
    if args.host:
        config.server.host = args.host
    if args.port is not None:
        config.server.port = args.port
    if args.seed is not None:
        config.feed.seed = args.seed
    if args.fast:
        config.feed.fast_timing = True

    base_seed = config.feed.base_seed
    logger.info(f"Base seed: {base_seed}")

    server = FeedServer(
        ScannerGenerator(
            base_seed,
            page_size=config.feed.page_size,
            total_pages=config.feed.total_pages,
        ),
        host=config.server.host,
        port=config.server.port,
        ws_path=config.server.ws_path,
        timing=config.feed.timing,
        bootstrap_count=config.feed.bootstrap_count,
        append_interval=config.feed.append_interval_ms / 1000,
    )
    await run_until_signal(server.serve_forever, server.stop)


async def watch(config: Config):
    watcher = ScannerWatcher(config)
    await run_until_signal(watcher.start, watcher.stop)


async def snapshot(config: Config, args):
    params = config.client.scanner_params
    if args.page is not None:
        params["page"] = args.page
    if args.chain:
        params["chain"] = args.chain.upper()
    if args.rank_by:
        params["rankBy"] = args.rank_by
        params.setdefault("orderBy", config.client.order_by)

    client = ScannerApiClient(config.client.api_base)
    token_logger = TokenLogger(log_level=config.logging.level)
    try:
        command = await client.get_snapshot(params)
    finally:
        await client.close()

    if command is None:
        logger.error("Scanner response did not contain any pairs")
        return

    store = TokenStore(
        window_seconds=config.state.history_window_seconds,
        drift_factor=config.state.liquidity_drift_factor,
    )
    store.dispatch(command)
    tokens = page_tokens(store.state, command.page, exclude_honeypots=args.exclude_honeypots)
    for token in tokens:
        token_logger.log_token(token, "snapshot")
    logger.info(f"Page {command.page}: {len(tokens)} tokens")
    token_logger.close()


async def main_async(args):
    """Async main function."""
    config_path = Path(args.config)
    if not config_path.exists():
        logger.error(f"Configuration file not found: {config_path}")
        sys.exit(1)

    config = load_config(config_path)

    if args.debug:
        config.logging.level = "DEBUG"

    setup_app_logging(config.logging.level)

    if args.command == "serve":
        await serve(config, args)
    elif args.command == "watch":
        await watch(config)
    elif args.command == "snapshot":
        await snapshot(config, args)


def main():
    """Main entry point."""
    args = parse_args()

    try:
        asyncio.run(main_async(args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
