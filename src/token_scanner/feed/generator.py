"""Deterministic scanner snapshot generator."""

import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from ..models import CHAIN_IDS, to_chain_name
from ..state.mapping import MARKET_CAP_FIELDS, calc_market_cap
from .seed import hash32, hash_params, mix_seeds, mulberry32, pick, shuffled
from .symbols import load_symbols

logger = logging.getLogger(__name__)

# Chain split used when the request carries no chain filter
CHAIN_WEIGHTS: tuple[tuple[str, float], ...] = (
    ("ETH", 0.45),
    ("SOL", 0.30),
    ("BASE", 0.15),
    ("BSC", 0.10),
)

ROUTERS = {
    "ETH": ("0xROUTER_UNI", "0xROUTER_SUSHI"),
    "BSC": ("0xROUTER_PCS", "0xROUTER_APE"),
    "BASE": ("0xROUTER_BASE",),
    "SOL": ("Raydium", "Orca"),
}

SOCIAL_EPOCH_SECONDS = 30 * 24 * 3600
MAX_PAIR_AGE_SECONDS = 7 * 24 * 3600
MCAP_ZEROING_RATE = 0.4

# Salts for independent sub-streams
_SYMBOL_SALT = 0x5EED0001
_CHAIN_SALT = 0x5EED0002
_BUYS_SALT = 0x00B0B500
_SELLS_SALT = 0x005E1150

_HEX = "0123456789abcdef"

SORT_KEYS: dict[str, Callable[[dict, float], float]] = {
    "volume": lambda item, age: float(item["volume"]),
    "txns": lambda item, age: item["txns"],
    "buys": lambda item, age: item["buys"],
    "sells": lambda item, age: item["sells"],
    "age": lambda item, age: age,
    "liquidity": lambda item, age: float(item["liquidity"]),
    "mcap": lambda item, age: calc_market_cap(item),
    "price5M": lambda item, age: float(item["diff5M"]),
    "price1H": lambda item, age: float(item["diff1H"]),
    "price6H": lambda item, age: float(item["diff6H"]),
    "price24H": lambda item, age: float(item["diff24H"]),
}


@dataclass
class ScannerPage:
    """One generated page of scanner results."""

    page: int
    total_pages: int
    items: list[dict[str, Any]]

    def to_wire(self) -> dict[str, Any]:
        return {"page": self.page, "totalPages": self.total_pages, "scannerPairs": self.items}


def normalize_params(params: Mapping[str, Any] | None) -> dict[str, Any]:
    """Coerce query-string style params (all strings) to typed values."""
    out: dict[str, Any] = {}
    for key, value in (params or {}).items():
        if value is None or value == "":
            continue
        if key == "page":
            try:
                value = max(1, int(float(value)))
            except (TypeError, ValueError, OverflowError):
                value = 1
        elif key in ("isNotHP", "isVerified"):
            value = value if isinstance(value, bool) else str(value).lower() == "true"
        elif key == "chain":
            value = str(value).upper()
        elif key.startswith(("min", "max")):
            try:
                value = float(value)
            except (TypeError, ValueError):
                continue
        out[key] = value
    out.setdefault("page", 1)
    return out


def counter_value(item_seed: int, salt: int, tick_index: int) -> int:
    """
    Counter for one item at ``tick_index``.

    base + tick*rate + floor(tick*fractional_rate) + noise, every term from
    its own sub-seed. rate >= 1 and fractional_rate >= 0, so the value never
    decreases as tick_index grows.
    """
    base = int(mulberry32(mix_seeds(item_seed, salt))() * 500)
    rate = 1 + int(mulberry32(mix_seeds(item_seed, salt + 1))() * 4)
    fractional_rate = mulberry32(mix_seeds(item_seed, salt + 2))()
    noise = int(mulberry32(mix_seeds(item_seed, salt + 3))() * 3)
    return base + tick_index * rate + math.floor(tick_index * fractional_rate) + noise


def _address(suffix: str, rnd: Callable[[], float]) -> str:
    return "0x" + "".join(pick(_HEX, rnd) for _ in range(38)) + suffix


def _fixed(value: float) -> str:
    return f"{value:.6f}"


class ScannerGenerator:
    """
    Produces pages of synthetic scanner items.

    Output is a pure function of (base seed, params, page, tick_index); the
    clock only feeds display timestamps and the social-link epoch.
    """

    def __init__(
        self,
        base_seed: int,
        page_size: int = 50,
        total_pages: int = 10,
        clock: Callable[[], float] = time.time,
    ):
        self.base_seed = base_seed
        self.page_size = page_size
        self.total_pages = total_pages
        self.clock = clock
        self._symbols = shuffled(
            load_symbols(), mulberry32(mix_seeds(base_seed, _SYMBOL_SALT))
        )

    def symbol_at(self, index: int) -> str:
        return self._symbols[index % len(self._symbols)]

    def chain_for_symbol(self, symbol_index: int) -> str:
        """Weighted chain draw, stable for a given symbol index."""
        rnd = mulberry32(mix_seeds(self.base_seed, mix_seeds(_CHAIN_SALT, symbol_index)))
        roll = rnd()
        cumulative = 0.0
        for chain, weight in CHAIN_WEIGHTS:
            cumulative += weight
            if roll < cumulative:
                return chain
        return CHAIN_WEIGHTS[-1][0]

    def generate(self, params: Mapping[str, Any] | None = None, tick_index: int = 0) -> ScannerPage:
        """
        Generate one page for ``params``.

        Args:
            params: Scanner filter params (wire names: chain, page, rankBy, ...)
            tick_index: Advances the buy/sell counters; nothing else depends on it

        Returns:
            ScannerPage with de-duplicated, filtered and optionally sorted items
        """
        query = normalize_params(params)
        page = query["page"]
        request_seed = mix_seeds(self.base_seed, hash_params(query))
        rnd = mulberry32(request_seed)
        now = self.clock()
        chain_filter = query.get("chain") if query.get("chain") in CHAIN_IDS else None

        seen: set[str] = set()
        rows: list[tuple[dict[str, Any], float]] = []
        for i in range(self.page_size):
            symbol_index = (page - 1) * self.page_size + i
            chain = chain_filter or self.chain_for_symbol(symbol_index % len(self._symbols))
            item, age_seconds = self._build_item(
                rnd=rnd,
                item_seed=mix_seeds(request_seed, i + 1),
                symbol=self.symbol_at(symbol_index),
                chain=chain,
                now=now,
                tick_index=tick_index,
            )
            key = item["pairAddress"].lower()
            if key in seen:
                logger.debug(f"Dropping duplicate pair {item['pairAddress']} on page {page}")
                continue
            seen.add(key)
            rows.append((item, age_seconds))

        rows = [row for row in rows if self._passes_filters(query, *row)]

        sort_key = SORT_KEYS.get(query.get("rankBy", ""))
        if sort_key is not None:
            descending = str(query.get("orderBy", "desc")).lower() != "asc"
            rows.sort(key=lambda row: sort_key(*row), reverse=descending)

        return ScannerPage(page=page, total_pages=self.total_pages, items=[item for item, _ in rows])

    @staticmethod
    def _passes_filters(query: dict[str, Any], item: dict[str, Any], age_seconds: float) -> bool:
        if query.get("isNotHP") and item["honeyPot"]:
            return False
        if query.get("isVerified") and not item["contractVerified"]:
            return False
        bounds = (
            ("minVol24H", "maxVol24H", float(item["volume"])),
            ("minLiq", "maxLiq", float(item["liquidity"])),
            ("minAge", "maxAge", age_seconds),
            ("minTxns24H", None, item["txns"]),
            ("minBuys24H", None, item["buys"]),
            ("minSells24H", None, item["sells"]),
        )
        for low_key, high_key, value in bounds:
            low = query.get(low_key)
            high = query.get(high_key) if high_key else None
            if low is not None and value < low:
                return False
            if high is not None and value > high:
                return False
        return True

    def _social_links(self, pair_address: str, token_address: str, symbol: str, now: float) -> dict:
        epoch = int(now // SOCIAL_EPOCH_SECONDS)
        identity = hash32(f"{pair_address.lower()}|{token_address.lower()}")
        rnd = mulberry32(mix_seeds(self.base_seed, mix_seeds(epoch, identity)))
        handle = symbol.lower()
        return {
            "twitterLink": f"https://x.com/{handle}" if rnd() < 0.6 else None,
            "telegramLink": f"https://t.me/{handle}" if rnd() < 0.4 else None,
            "discordLink": f"https://discord.gg/{pair_address[2:10].lower()}" if rnd() < 0.2 else None,
            "webLink": f"https://{handle}.xyz" if rnd() < 0.5 else None,
        }

    def _build_item(
        self,
        rnd: Callable[[], float],
        item_seed: int,
        symbol: str,
        chain: str,
        now: float,
        tick_index: int,
    ) -> tuple[dict[str, Any], float]:
        age_seconds = rnd() * MAX_PAIR_AGE_SECONDS
        created = datetime.fromtimestamp(now - age_seconds, tz=timezone.utc)

        price = round(0.0001 + rnd() * 10, 6)
        volume = round(rnd() * 1_000_000, 2)
        liquidity = round(rnd() * 500_000, 2)

        # Floors keep every candidate strictly positive before zeroing
        mcaps = {
            "currentMcap": round(1_000 + rnd() * 2_000_000, 2),
            "initialMcap": round(1_000 + rnd() * 1_000_000, 2),
            "pairMcapUsd": round(1_000 + rnd() * 500_000, 2),
            "pairMcapUsdInitial": round(1_000 + rnd() * 250_000, 2),
        }

        token1_decimals = 6 + int(rnd() * 12)
        total_supply = int(1_000_000 + rnd() * 1_000_000_000)
        pair_address = _address("PAIR", rnd)
        token_address = _address("TKN", rnd)

        buys = counter_value(item_seed, _BUYS_SALT, tick_index)
        sells = counter_value(item_seed, _SELLS_SALT, tick_index)
        honeypot = rnd() > 0.95

        item: dict[str, Any] = {
            "age": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "bundlerHoldings": _fixed(rnd() * 1000),
            "buyFee": None,
            "buys": buys,
            "callCount": 1,
            "chainId": CHAIN_IDS[chain],
            "contractRenounced": rnd() > 0.9,
            "contractVerified": rnd() > 0.5,
            "currentMcap": str(mcaps["currentMcap"]),
            "devHoldings": _fixed(rnd() * 1000),
            "dexPaid": rnd() > 0.8,
            "diff1H": _fixed(round(rnd() * 20 - 10, 2)),
            "diff24H": _fixed(round(rnd() * 40 - 20, 2)),
            "diff5M": _fixed(round(rnd() * 4 - 2, 2)),
            "diff6H": _fixed(round(rnd() * 12 - 6, 2)),
            "fdv": _fixed(price * total_supply),
            "first1H": _fixed(price * 0.9),
            "first24H": _fixed(price * 0.8),
            "first5M": _fixed(price * 0.95),
            "first6H": _fixed(price * 0.92),
            "honeyPot": honeypot,
            "initialMcap": str(mcaps["initialMcap"]),
            "insiderHoldings": _fixed(rnd() * 1000),
            "insiders": int(rnd() * 100),
            "isFreezeAuthDisabled": rnd() > 0.5,
            "isMintAuthDisabled": rnd() > 0.5,
            "liquidity": str(liquidity),
            "liquidityLocked": rnd() > 0.7,
            "liquidityLockedAmount": _fixed(rnd() * liquidity),
            "liquidityLockedRatio": _fixed(rnd()),
            "makers": None,
            "migratedFromVirtualRouter": None,
            "virtualRouterType": None,
            "migratedFromPairAddress": None,
            "migratedFromRouterAddress": None,
            "migrationProgress": _fixed(rnd() * 100) if chain == "SOL" else None,
            "pairAddress": pair_address,
            "pairMcapUsd": str(mcaps["pairMcapUsd"]),
            "pairMcapUsdInitial": str(mcaps["pairMcapUsdInitial"]),
            "percentChangeInLiquidity": _fixed(round(rnd() * 40 - 20, 2)),
            "percentChangeInMcap": _fixed(round(rnd() * 40 - 20, 2)),
            "price": str(price),
            "reserves0": _fixed(rnd() * 10_000),
            "reserves0Usd": _fixed(rnd() * 10_000),
            "reserves1": _fixed(rnd() * 10_000),
            "reserves1Usd": _fixed(rnd() * 10_000),
            "routerAddress": pick(ROUTERS[chain], rnd),
            "sellFee": None,
            "sells": sells,
            "sniperHoldings": _fixed(rnd() * 1000),
            "snipers": int(rnd() * 200),
            "token0Decimals": 18,
            "token0Symbol": "WSOL" if chain == "SOL" else "WETH",
            "token1Address": token_address,
            "token1Decimals": str(token1_decimals),
            "token1ImageUri": None,
            "token1Name": f"{symbol.title()} {to_chain_name(chain)}",
            "token1Symbol": symbol,
            "token1TotalSupplyFormatted": str(total_supply),
            "top10Holdings": _fixed(rnd() * total_supply),
            "txns": buys + sells,
            "volume": str(volume),
        }
        item.update(self._social_links(pair_address, token_address, symbol, now))

        if rnd() < MCAP_ZEROING_RATE:
            zeroed = 1 + int(rnd() * 3)
            for field_name in shuffled(MARKET_CAP_FIELDS, rnd)[:zeroed]:
                item[field_name] = "0"

        return item, age_seconds
