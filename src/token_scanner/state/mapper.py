"""
Wire protocol mapping.

Translates inbound ``{event, data}`` envelopes into typed commands for the
reducer and builds the outbound subscription envelopes. This is the only
place that knows about alternate or legacy field spellings.
"""

import json
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Union

from ..errors import TokenValidationError
from ..models import PairKey, PairStats, Swap, Token, to_chain_name
from .mapping import map_scanner_result_to_token, read_social_links, to_float, total_supply_of

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SnapshotItem:
    token: Token
    total_supply: float | None


@dataclass(frozen=True)
class SnapshotCommand:
    page: int
    items: tuple[SnapshotItem, ...]
    received_at: float
    append: bool = False


@dataclass(frozen=True)
class TickCommand:
    pair_address: str
    token_address: str
    chain: str
    swaps: tuple[Swap, ...]
    received_at: float

    @property
    def key(self) -> PairKey:
        return PairKey.of(self.pair_address, self.token_address, self.chain)


@dataclass(frozen=True)
class StatsCommand:
    stats: PairStats
    received_at: float


Command = Union[SnapshotCommand, TickCommand, StatsCommand]


# Outbound subscription envelopes


def build_scanner_subscription(params: Mapping[str, Any]) -> dict:
    return {"event": "scanner-filter", "data": dict(params)}


def build_scanner_unsubscription(params: Mapping[str, Any]) -> dict:
    return {"event": "unsubscribe-scanner-filter", "data": dict(params)}


def _pair_envelope(event: str, pair: str, token: str, chain: str) -> dict:
    return {"event": event, "data": {"pair": pair, "token": token, "chain": chain}}


def build_pair_subscription(pair: str, token: str, chain: str) -> dict:
    return _pair_envelope("subscribe-pair", pair, token, chain)


def build_pair_slow_subscription(pair: str, token: str, chain: str) -> dict:
    return _pair_envelope("subscribe-pair-slow", pair, token, chain)


def build_pair_unsubscription(pair: str, token: str, chain: str) -> dict:
    return _pair_envelope("unsubscribe-pair", pair, token, chain)


def build_pair_stats_subscription(pair: str, token: str, chain: str) -> dict:
    return _pair_envelope("subscribe-pair-stats", pair, token, chain)


def build_pair_stats_slow_subscription(pair: str, token: str, chain: str) -> dict:
    return _pair_envelope("subscribe-pair-stats-slow", pair, token, chain)


def build_pair_stats_unsubscription(pair: str, token: str, chain: str) -> dict:
    return _pair_envelope("unsubscribe-pair-stats", pair, token, chain)


def compute_pair_payloads(items: Iterable[Any]) -> list[dict[str, str]]:
    """
    Unique ``{pair, token, chain}`` subscription payloads for scanner items.

    De-duplicates case-insensitively but keeps the casing of the first
    occurrence; items without a usable identity are skipped.
    """
    seen: set[str] = set()
    payloads: list[dict[str, str]] = []
    for item in items:
        if not isinstance(item, Mapping):
            continue
        pair = item.get("pairAddress")
        token = item.get("token1Address")
        if not isinstance(pair, str) or not isinstance(token, str) or not pair or not token:
            continue
        if item.get("chainId") is None:
            continue
        chain = to_chain_name(item.get("chainId"))
        key = f"{pair.lower()}|{token.lower()}|{chain}"
        if key in seen:
            continue
        seen.add(key)
        payloads.append({"pair": pair, "token": token, "chain": chain})
    return payloads


# Inbound mapping


def _to_bool(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def _page_of(data: Mapping[str, Any]) -> int:
    page = data.get("page")
    if page is None and isinstance(data.get("filter"), Mapping):
        page = data["filter"].get("page")
    try:
        return max(1, int(float(page)))
    except (TypeError, ValueError, OverflowError):
        return 1


def _scanner_items(data: Mapping[str, Any]) -> list[Any] | None:
    for candidate in (
        data.get("scannerPairs"),
        (data.get("results") or {}).get("pairs") if isinstance(data.get("results"), Mapping) else None,
        data.get("pairs"),
    ):
        if isinstance(candidate, list):
            return candidate
    return None


def _map_snapshot(data: Mapping[str, Any], received_at: float, append: bool) -> SnapshotCommand | None:
    raw_items = _scanner_items(data)
    if raw_items is None:
        return None

    items: list[SnapshotItem] = []
    for raw in raw_items:
        if not isinstance(raw, Mapping) or not (raw.get("pairAddress") or raw.get("token1Address")):
            continue
        try:
            token = map_scanner_result_to_token(raw, now=received_at)
        except TokenValidationError as e:
            logger.error(f"Rejected scanner item: {e}")
            continue
        items.append(SnapshotItem(token=token, total_supply=total_supply_of(raw)))

    return SnapshotCommand(
        page=_page_of(data),
        items=tuple(items),
        received_at=received_at,
        append=append,
    )


def _map_swap(raw: Mapping[str, Any]) -> Swap:
    price = raw.get("priceToken1Usd", raw.get("price"))
    amount = raw.get("amountToken1", raw.get("amount"))
    token0 = raw.get("token0Address")
    return Swap(
        price=to_float(price, math.nan),
        amount=to_float(amount),
        token_in_address=str(raw.get("tokenInAddress") or ""),
        is_outlier=bool(_to_bool(raw.get("isOutlier"))),
        token0_address=str(token0) if token0 else None,
    )


def _map_tick(data: Mapping[str, Any], received_at: float) -> TickCommand | None:
    pair = data.get("pair")
    swaps = data.get("swaps")
    if not isinstance(pair, Mapping) or not isinstance(swaps, list):
        return None

    pair_address = pair.get("pair") or pair.get("pairAddress")
    if not isinstance(pair_address, str) or not pair_address:
        return None
    token_address = pair.get("token") or pair.get("tokenAddress") or ""
    chain = pair.get("chain", pair.get("chainId"))

    return TickCommand(
        pair_address=pair_address,
        token_address=str(token_address),
        chain=to_chain_name(chain),
        swaps=tuple(_map_swap(s) for s in swaps if isinstance(s, Mapping)),
        received_at=received_at,
    )


def _map_stats(data: Mapping[str, Any], received_at: float) -> StatsCommand | None:
    pair = data.get("pair") if isinstance(data.get("pair"), Mapping) else {}
    pair_address = pair.get("pairAddress") or data.get("pairAddress")
    if not isinstance(pair_address, str) or not pair_address:
        return None

    def flag(name: str) -> bool | None:
        return _to_bool(pair.get(name, data.get(name)))

    progress = to_float(pair.get("migrationProgress", data.get("migrationProgress")), math.nan)
    links = read_social_links(pair)
    for canonical, value in read_social_links(data).items():
        links[canonical] = links[canonical] or value

    return StatsCommand(
        stats=PairStats(
            pair_address=pair_address,
            verified=flag("isVerified"),
            honeypot=flag("token1IsHoneypot"),
            mint_authority_renounced=flag("mintAuthorityRenounced"),
            freeze_authority_renounced=flag("freezeAuthorityRenounced"),
            dex_paid=flag("dexPaid"),
            renounced=flag("renounced"),
            locked=flag("locked"),
            burned=flag("burned"),
            migration_progress=None if math.isnan(progress) else progress,
            **links,
        ),
        received_at=received_at,
    )


def map_message(message: Any, received_at: float | None = None) -> Command | None:
    """
    Map an inbound envelope to a command.

    Args:
        message: Decoded ``{event, data}`` dict, or the raw JSON text
        received_at: Epoch seconds stamped on the command (defaults to now)

    Returns:
        SnapshotCommand, TickCommand or StatsCommand; None for unknown or
        malformed envelopes
    """
    if isinstance(message, (str, bytes)):
        try:
            message = json.loads(message)
        except ValueError:
            return None
    if not isinstance(message, Mapping):
        return None

    data = message.get("data")
    if not isinstance(data, Mapping):
        return None
    received_at = time.time() if received_at is None else received_at

    event = message.get("event")
    if event == "scanner-pairs":
        return _map_snapshot(data, received_at, append=False)
    if event == "scanner-append":
        return _map_snapshot(data, received_at, append=True)
    if event == "tick":
        return _map_tick(data, received_at)
    if event == "pair-stats":
        return _map_stats(data, received_at)
    return None


__all__ = [
    "Command",
    "SnapshotCommand",
    "SnapshotItem",
    "StatsCommand",
    "TickCommand",
    "build_pair_slow_subscription",
    "build_pair_stats_slow_subscription",
    "build_pair_stats_subscription",
    "build_pair_stats_unsubscription",
    "build_pair_subscription",
    "build_pair_unsubscription",
    "build_scanner_subscription",
    "build_scanner_unsubscription",
    "compute_pair_payloads",
    "map_message",
]
