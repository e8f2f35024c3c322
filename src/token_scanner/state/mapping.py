"""Conversion of raw scanner items into Token records."""

import math
from datetime import datetime
from typing import Any, Callable, Mapping, Sequence

from ..errors import TokenValidationError
from ..models import (
    CHAIN_NAMES,
    Audit,
    Liquidity,
    PriceChanges,
    Security,
    Token,
    Transactions,
    to_chain_id,
)

# Priority order for resolving a market cap from a scanner item
MARKET_CAP_FIELDS: tuple[str, ...] = (
    "currentMcap",
    "initialMcap",
    "pairMcapUsd",
    "pairMcapUsdInitial",
)

# Canonical link name -> accepted wire spellings, canonical first
SOCIAL_LINK_ALIASES: dict[str, tuple[str, ...]] = {
    "link_twitter": ("linkTwitter", "twitterLink"),
    "link_telegram": ("linkTelegram", "telegramLink"),
    "link_discord": ("linkDiscord", "discordLink"),
    "link_website": ("linkWebsite", "webLink", "websiteLink"),
}


def to_float(value: Any, default: float = 0.0) -> float:
    """Parse a wire number (often a string); non-finite or invalid input gives ``default``."""
    if value is None or isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


def to_int(value: Any, default: int = 0) -> int:
    number = to_float(value, float(default))
    return int(number) if number >= 0 else default


def first_positive(
    source: Mapping[str, Any],
    extractors: Sequence[Callable[[Mapping[str, Any]], Any]],
) -> float:
    """Evaluate extractors in order; return the first finite value > 0, else 0."""
    for extract in extractors:
        value = to_float(extract(source))
        if value > 0:
            return value
    return 0.0


_MARKET_CAP_EXTRACTORS = tuple(
    (lambda item, name=name: item.get(name)) for name in MARKET_CAP_FIELDS
)


def calc_market_cap(item: Mapping[str, Any]) -> float:
    """Resolve the market cap of a scanner item from its candidate fields."""
    return first_positive(item, _MARKET_CAP_EXTRACTORS)


def read_social_links(source: Mapping[str, Any]) -> dict[str, str | None]:
    """Collect social links under canonical names, whichever spelling was sent."""
    links: dict[str, str | None] = {}
    for canonical, aliases in SOCIAL_LINK_ALIASES.items():
        links[canonical] = None
        for alias in aliases:
            value = source.get(alias)
            if isinstance(value, str) and value.strip():
                links[canonical] = value.strip()
                break
    return links


def total_supply_of(item: Mapping[str, Any]) -> float | None:
    supply = to_float(item.get("token1TotalSupplyFormatted"))
    return supply if supply > 0 else None


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _required_text(item: Mapping[str, Any], field: str) -> str:
    value = item.get(field)
    if not isinstance(value, str) or not value.strip():
        raise TokenValidationError(str(item.get("pairAddress") or ""), field)
    return value.strip()


def map_scanner_result_to_token(item: Mapping[str, Any], now: float | None = None) -> Token:
    """
    Map one raw scanner item to a Token with an empty history.

    Token name and symbol are required; a blank row is worse than a loud
    failure. Every other field falls back to a numeric/boolean default.

    Raises:
        TokenValidationError: token1Name or token1Symbol is missing or blank
    """
    name = _required_text(item, "token1Name")
    symbol = _required_text(item, "token1Symbol")

    pair_address = str(item.get("pairAddress") or "")
    token_address = str(item.get("token1Address") or "")
    links = read_social_links(item)

    return Token(
        id=(pair_address or token_address).lower(),
        pair_address=pair_address,
        token_address=token_address,
        chain=CHAIN_NAMES.get(to_chain_id(item.get("chainId")), "ETH"),
        exchange=str(
            item.get("routerAddress")
            or item.get("virtualRouterType")
            or item.get("migratedFromVirtualRouter")
            or "unknown"
        ),
        name=name,
        symbol=symbol,
        created_at=_parse_timestamp(item.get("age")),
        price_usd=max(0.0, to_float(item.get("price"))),
        market_cap=calc_market_cap(item),
        volume_usd=max(0.0, to_float(item.get("volume"))),
        liquidity=Liquidity(
            current=max(0.0, to_float(item.get("liquidity"))),
            change_percent=to_float(item.get("percentChangeInLiquidity")),
        ),
        price_changes=PriceChanges(
            m5=to_float(item.get("diff5M")),
            h1=to_float(item.get("diff1H")),
            h6=to_float(item.get("diff6H")),
            h24=to_float(item.get("diff24H")),
        ),
        transactions=Transactions(
            buys=to_int(item.get("buys")),
            sells=to_int(item.get("sells")),
        ),
        audit=Audit(
            mintable=not item.get("isMintAuthDisabled", False),
            freezable=not item.get("isFreezeAuthDisabled", False),
            honeypot=bool(item.get("honeyPot")),
            contract_verified=bool(item.get("contractVerified")),
            dex_paid=bool(item.get("dexPaid")),
            **links,
        ),
        security=Security(
            renounced=bool(item.get("contractRenounced")),
            locked=bool(item.get("liquidityLocked")),
            burned=to_float(item.get("burnedSupply")) > 0,
        ),
        migration_progress=(
            to_float(item["migrationProgress"])
            if item.get("migrationProgress") not in (None, "")
            else None
        ),
        last_snapshot_at=now,
    )
