"""Consumer-side state: wire mapping, reducer and token store."""

from .mapper import (
    Command,
    SnapshotCommand,
    SnapshotItem,
    StatsCommand,
    TickCommand,
    compute_pair_payloads,
    map_message,
)
from .mapping import calc_market_cap, map_scanner_result_to_token
from .reducer import TokenState, find_token_id, get_token, page_tokens, reduce
from .store import TokenStore

__all__ = [
    "Command",
    "SnapshotCommand",
    "SnapshotItem",
    "StatsCommand",
    "TickCommand",
    "compute_pair_payloads",
    "map_message",
    "calc_market_cap",
    "map_scanner_result_to_token",
    "TokenState",
    "find_token_id",
    "get_token",
    "page_tokens",
    "reduce",
    "TokenStore",
]
