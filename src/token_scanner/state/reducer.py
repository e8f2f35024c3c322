"""
Token state reducer.

``reduce(state, command)`` is a pure transition: it never mutates ``state``
and hands back the very same object when the command changes nothing.
"""

import dataclasses
import logging
import math
from dataclasses import dataclass, field
from typing import Mapping

from ..models import (
    Audit,
    HistorySample,
    Liquidity,
    Meta,
    PairStats,
    Security,
    Swap,
    Token,
    Transactions,
)
from .mapper import Command, SnapshotCommand, StatsCommand, TickCommand

logger = logging.getLogger(__name__)

HISTORY_WINDOW_SECONDS = 3600.0
LIQUIDITY_DRIFT_FACTOR = 0.10


@dataclass(frozen=True)
class TokenState:
    """Canonical consumer state: tokens by id, per-pair meta and page ordering."""

    by_id: Mapping[str, Token] = field(default_factory=dict)
    meta: Mapping[str, Meta] = field(default_factory=dict)
    pages: Mapping[int, tuple[str, ...]] = field(default_factory=dict)


def find_token_id(state: TokenState, pair_address: str) -> str | None:
    """Resolve a pair address to a stored token id, ignoring case."""
    if not pair_address:
        return None
    if pair_address in state.by_id:
        return pair_address
    lowered = pair_address.lower()
    if lowered in state.by_id:
        return lowered
    for token_id in state.by_id:
        if token_id.lower() == lowered:
            return token_id
    return None


def get_token(state: TokenState, pair_address: str) -> Token | None:
    token_id = find_token_id(state, pair_address)
    return state.by_id[token_id] if token_id is not None else None


def page_tokens(state: TokenState, page: int, exclude_honeypots: bool = False) -> list[Token]:
    """Tokens of one page in page order."""
    tokens = [state.by_id[i] for i in state.pages.get(page, ()) if i in state.by_id]
    if exclude_honeypots:
        tokens = [t for t in tokens if not t.audit.honeypot]
    return tokens


def _valid_price(value: float) -> bool:
    return math.isfinite(value) and value > 0


def _same_address(a: str | None, b: str | None) -> bool:
    return bool(a) and bool(b) and a.lower() == b.lower()


def _override(value, prior):
    return prior if value is None else value


# Snapshot


def _merge_snapshot_token(existing: Token, fresh: Token) -> Token:
    """Refresh descriptive/audit fields while keeping tick-driven live values."""
    audit = dataclasses.replace(
        fresh.audit,
        link_discord=fresh.audit.link_discord or existing.audit.link_discord,
        link_telegram=fresh.audit.link_telegram or existing.audit.link_telegram,
        link_twitter=fresh.audit.link_twitter or existing.audit.link_twitter,
        link_website=fresh.audit.link_website or existing.audit.link_website,
    )
    return dataclasses.replace(
        fresh,
        price_usd=existing.price_usd,
        market_cap=existing.market_cap,
        volume_usd=existing.volume_usd,
        transactions=existing.transactions,
        liquidity=existing.liquidity,
        audit=audit,
        migration_progress=_override(fresh.migration_progress, existing.migration_progress),
        history=existing.history,
        last_tick_at=existing.last_tick_at,
        last_stats_at=existing.last_stats_at,
    )


def _apply_snapshot(state: TokenState, command: SnapshotCommand) -> TokenState:
    by_id = dict(state.by_id)
    meta = dict(state.meta)
    ids: list[str] = []

    for item in command.items:
        fresh = item.token
        existing = by_id.get(fresh.id)
        by_id[fresh.id] = _merge_snapshot_token(existing, fresh) if existing else fresh
        if fresh.id not in ids:
            ids.append(fresh.id)

        prior_meta = meta.get(fresh.id, Meta())
        if item.total_supply:
            meta[fresh.id] = dataclasses.replace(prior_meta, total_supply=item.total_supply)
        else:
            meta[fresh.id] = prior_meta

    pages = dict(state.pages)
    if command.append:
        current = pages.get(command.page, ())
        pages[command.page] = current + tuple(i for i in ids if i not in current)
    else:
        pages[command.page] = tuple(ids)

    return TokenState(by_id=by_id, meta=meta, pages=pages)


# Tick


def _resolve_price(swaps: list[Swap], prior_price: float) -> float:
    """Latest non-outlier price, else any other valid one, else the prior price."""
    for swap in reversed(swaps):
        if _valid_price(swap.price):
            return swap.price
    return prior_price


def _resolve_total_supply(meta: Meta, token: Token) -> float:
    if meta.total_supply and meta.total_supply > 0:
        return meta.total_supply
    if token.market_cap > 0 and token.price_usd > 0:
        return token.market_cap / token.price_usd
    return 0.0


def _next_liquidity(prior: Liquidity, prior_price: float, new_price: float, drift_factor: float) -> Liquidity:
    if prior_price <= 0 or prior.current <= 0:
        return Liquidity(current=max(0.0, prior.current), change_percent=0.0)
    price_change = (new_price - prior_price) / prior_price
    current = max(0.0, prior.current + prior.current * price_change * drift_factor)
    if not math.isfinite(current):
        return prior
    return Liquidity(current=current, change_percent=(current - prior.current) / prior.current * 100)


def _apply_tick(
    state: TokenState,
    command: TickCommand,
    window_seconds: float,
    drift_factor: float,
) -> TokenState:
    token_id = find_token_id(state, command.pair_address)
    if token_id is None:
        logger.debug(f"Dropping tick for unknown pair {command.pair_address}")
        return state

    swaps = [s for s in command.swaps if not s.is_outlier]
    if not swaps:
        return state

    token = state.by_id[token_id]
    meta = state.meta.get(token_id, Meta())

    token0 = next((s.token0_address for s in command.swaps if s.token0_address), None)
    token0 = token0 or meta.token0_address
    token1 = token.token_address or command.token_address

    total_supply = _resolve_total_supply(meta, token)
    price = _resolve_price(swaps, token.price_usd)

    market_cap = total_supply * price
    if total_supply <= 0 or not math.isfinite(market_cap):
        market_cap = token.market_cap

    volume_delta = 0.0
    buys = sells = 0
    for swap in swaps:
        if _valid_price(swap.price):
            effective_price = swap.price
        elif _valid_price(price):
            effective_price = price
        else:
            effective_price = token.price_usd
        amount = abs(swap.amount) if math.isfinite(swap.amount) else 0.0
        volume_delta += amount * effective_price

        if _same_address(swap.token_in_address, token0):
            buys += 1
        elif _same_address(swap.token_in_address, token1):
            sells += 1
        elif not token0 and token1:
            # token0 not learned yet; anything that is not token1 is a buy
            buys += 1

    volume = token.volume_usd + volume_delta
    if not math.isfinite(volume):
        volume = token.volume_usd

    transactions = Transactions(
        buys=token.transactions.buys + buys,
        sells=token.transactions.sells + sells,
    )
    liquidity = _next_liquidity(token.liquidity, token.price_usd, price, drift_factor)

    history = token.history.append(
        HistorySample(
            timestamp=command.received_at,
            price=price,
            market_cap=market_cap,
            volume=volume,
            buys=transactions.buys,
            sells=transactions.sells,
            liquidity=liquidity.current,
        ),
        window_seconds,
    )

    updated = dataclasses.replace(
        token,
        price_usd=max(0.0, price),
        market_cap=max(0.0, market_cap),
        volume_usd=max(0.0, volume),
        transactions=transactions,
        liquidity=liquidity,
        history=history,
        last_tick_at=max(token.last_tick_at or 0.0, command.received_at),
    )

    return TokenState(
        by_id={**state.by_id, token_id: updated},
        meta={**state.meta, token_id: dataclasses.replace(meta, token0_address=token0)},
        pages=state.pages,
    )


# Stats


def _apply_stats(state: TokenState, command: StatsCommand) -> TokenState:
    stats: PairStats = command.stats
    token_id = find_token_id(state, stats.pair_address)
    if token_id is None:
        logger.debug(f"Dropping pair-stats for unknown pair {stats.pair_address}")
        return state

    token = state.by_id[token_id]
    prior = token.audit
    audit = Audit(
        mintable=prior.mintable if stats.mint_authority_renounced is None else not stats.mint_authority_renounced,
        freezable=prior.freezable if stats.freeze_authority_renounced is None else not stats.freeze_authority_renounced,
        honeypot=_override(stats.honeypot, prior.honeypot),
        contract_verified=_override(stats.verified, prior.contract_verified),
        dex_paid=_override(stats.dex_paid, prior.dex_paid),
        link_discord=_override(stats.link_discord, prior.link_discord),
        link_telegram=_override(stats.link_telegram, prior.link_telegram),
        link_twitter=_override(stats.link_twitter, prior.link_twitter),
        link_website=_override(stats.link_website, prior.link_website),
    )
    security = Security(
        renounced=_override(stats.renounced, token.security.renounced),
        locked=_override(stats.locked, token.security.locked),
        burned=_override(stats.burned, token.security.burned),
    )
    migration_progress = _override(stats.migration_progress, token.migration_progress)

    if (audit, security, migration_progress) == (token.audit, token.security, token.migration_progress):
        return state

    updated = dataclasses.replace(
        token,
        audit=audit,
        security=security,
        migration_progress=migration_progress,
        last_stats_at=command.received_at,
    )
    return TokenState(by_id={**state.by_id, token_id: updated}, meta=state.meta, pages=state.pages)


def reduce(
    state: TokenState,
    command: Command,
    *,
    window_seconds: float = HISTORY_WINDOW_SECONDS,
    drift_factor: float = LIQUIDITY_DRIFT_FACTOR,
) -> TokenState:
    """
    Apply one command to ``state``.

    Args:
        state: Current state (left untouched)
        command: Snapshot, tick or stats command from the mapper
        window_seconds: Rolling history window length
        drift_factor: Share of the price move applied to liquidity on each tick

    Returns:
        The next state, or ``state`` itself when nothing changed
    """
    if isinstance(command, SnapshotCommand):
        return _apply_snapshot(state, command)
    if isinstance(command, TickCommand):
        return _apply_tick(state, command, window_seconds, drift_factor)
    if isinstance(command, StatsCommand):
        return _apply_stats(state, command)
    raise TypeError(f"Unsupported command: {type(command).__name__}")
