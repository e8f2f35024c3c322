"""Configuration loader for token-scanner."""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping

import yaml

from .errors import ConfigError
from .feed.scheduler import StreamTiming
from .feed.seed import resolve_base_seed, to_uint32


@dataclass
class FeedConfig:
    seed: int | None = None
    seed_file: str = ".seed"
    fast_timing: bool = False
    tick_interval_ms: int = 1000
    max_stagger_ms: int = 1000
    page_size: int = 50
    total_pages: int = 10
    bootstrap_count: int = 6
    append_interval_ms: int = 0

    @property
    def timing(self) -> StreamTiming:
        return StreamTiming.from_ms(self.tick_interval_ms, self.max_stagger_ms, fast=self.fast_timing)

    @property
    def base_seed(self) -> int:
        return resolve_base_seed(self.seed, env={}, seed_file=self.seed_file)


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 3001
    ws_path: str = "/ws"


@dataclass
class StateConfig:
    history_window_seconds: float = 3600.0
    liquidity_drift_factor: float = 0.10


@dataclass
class ClientConfig:
    websocket_url: str = "ws://localhost:3001/ws"
    api_base: str = "http://localhost:3001"
    chain: str = "ETH"
    page: int = 1
    rank_by: str | None = None
    order_by: str = "desc"
    reconnect_delay: float = 5.0

    @property
    def scanner_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {"chain": self.chain, "page": self.page}
        if self.rank_by:
            params["rankBy"] = self.rank_by
            params["orderBy"] = self.order_by
        return params


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: str | None = None
    max_file_size_mb: int = 10
    backup_count: int = 5


@dataclass
class Config:
    feed: FeedConfig = field(default_factory=FeedConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    state: StateConfig = field(default_factory=StateConfig)
    client: ClientConfig = field(default_factory=ClientConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _section(cls, raw: Mapping[str, Any], name: str):
    values = raw.get(name) or {}
    if not isinstance(values, Mapping):
        raise ConfigError(f"Config section '{name}' must be a mapping")
    known = {f.name for f in fields(cls)}
    unknown = set(values) - known
    if unknown:
        raise ConfigError(f"Unknown keys in '{name}': {', '.join(sorted(unknown))}")
    return cls(**values)


def _validate(config: Config):
    feed = config.feed
    if feed.seed is not None and to_uint32(feed.seed) is None:
        raise ConfigError(f"feed.seed must be an integer, got {feed.seed!r}")
    for name in ("tick_interval_ms", "page_size", "total_pages"):
        if getattr(feed, name) <= 0:
            raise ConfigError(f"feed.{name} must be positive")
    for name in ("max_stagger_ms", "bootstrap_count", "append_interval_ms"):
        if getattr(feed, name) < 0:
            raise ConfigError(f"feed.{name} must not be negative")
    if config.state.history_window_seconds <= 0:
        raise ConfigError("state.history_window_seconds must be positive")
    if config.state.liquidity_drift_factor < 0:
        raise ConfigError("state.liquidity_drift_factor must not be negative")
    if not config.server.ws_path.startswith("/"):
        raise ConfigError("server.ws_path must start with '/'")


def apply_env_overrides(config: Config, env: Mapping[str, str] | None = None) -> Config:
    """Apply SCANNER_SEED / SEED and TEST_FAST from the environment."""
    env = os.environ if env is None else env
    for name in ("SCANNER_SEED", "SEED"):
        seed = to_uint32(env.get(name))
        if seed is not None:
            config.feed.seed = seed
            break
    if env.get("TEST_FAST") == "1":
        config.feed.fast_timing = True
    return config


def load_config(
    config_path: str | Path = "config.yaml",
    env: Mapping[str, str] | None = None,
) -> Config:
    """Load configuration from YAML file."""
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, Mapping):
        raise ConfigError(f"Config file {config_path} must contain a mapping")

    config = Config(
        feed=_section(FeedConfig, raw, "feed"),
        server=_section(ServerConfig, raw, "server"),
        state=_section(StateConfig, raw, "state"),
        client=_section(ClientConfig, raw, "client"),
        logging=_section(LoggingConfig, raw, "logging"),
    )

    apply_env_overrides(config, env)
    _validate(config)
    return config
