"""Per-pair tick and pair-stats emission."""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping

from ..models import PairKey
from .seed import hash32, mix_seeds, mulberry32

logger = logging.getLogger(__name__)

SendCallback = Callable[[dict], Awaitable[None]]

MAX_PRICE_DRIFT = 0.03
OUTLIER_PRICE_RATIO = 0.5
MIN_PRICE = 0.000001
DEFAULT_SLOW_FACTOR = 50
AMOUNT_SALT = 0x9E3779B9

TOKEN0_BY_CHAIN = {
    56: "0xWBNB",
    900: "So11111111111111111111111111111111111111112",
}
DEFAULT_TOKEN0 = "0xWETH"

FAST = "fast"
SLOW = "slow"


@dataclass(frozen=True)
class StreamTiming:
    """Wall-clock pacing of the emitters; never affects emitted values."""

    tick_interval: float = 1.0
    max_stagger: float = 1.0

    @classmethod
    def fast(cls) -> "StreamTiming":
        return cls(tick_interval=0.005, max_stagger=0.0)

    @classmethod
    def from_ms(cls, tick_interval_ms: int, max_stagger_ms: int, fast: bool = False) -> "StreamTiming":
        if fast:
            return cls.fast()
        return cls(tick_interval=tick_interval_ms / 1000, max_stagger=max_stagger_ms / 1000)


def pair_key_of(item: Mapping[str, Any]) -> PairKey:
    return PairKey.of(str(item["pairAddress"]), str(item["token1Address"]), item.get("chainId"))


def stagger_delay(key: PairKey, max_stagger: float) -> float:
    """Deterministic first-emission delay in seconds, within [0, max_stagger]."""
    max_ms = int(round(max_stagger * 1000))
    return (hash32(key.wire) % (max_ms + 1)) / 1000


def slow_factor_for(known_pairs: int) -> int:
    """Slow-tier divisor; grows with the number of pairs a connection knows."""
    return max(DEFAULT_SLOW_FACTOR, math.ceil(max(1, known_pairs) / 4))


def token0_for_chain(chain_id: int) -> str:
    return TOKEN0_BY_CHAIN.get(chain_id, DEFAULT_TOKEN0)


def tick_price(base_seed: int, key: PairKey, base_price: float, tick_index: int) -> float:
    rnd = mulberry32(mix_seeds(base_seed, mix_seeds(hash32(key.wire), tick_index)))
    drift = (rnd() * 2 - 1) * MAX_PRICE_DRIFT
    return round(max(MIN_PRICE, base_price * (1 + drift)), 8)


def tick_amount(base_seed: int, key: PairKey, tick_index: int) -> float:
    rnd = mulberry32(mix_seeds(base_seed, mix_seeds(hash32(key.wire) ^ AMOUNT_SALT, tick_index)))
    return round(rnd() * 10, 3) or 0.001


def _base_price(item: Mapping[str, Any]) -> float:
    try:
        price = float(item.get("price") or 0)
    except (TypeError, ValueError):
        price = 0.0
    return price if math.isfinite(price) and price > 0 else 1.0


def build_tick(base_seed: int, item: Mapping[str, Any], tick_index: int) -> dict:
    """
    Tick envelope for ``item`` at ``tick_index``.

    Always carries one outlier swap at half the reference price next to the
    canonical swap. Odd ticks are buys (token0 in), even ticks are sells.
    """
    key = pair_key_of(item)
    base_price = _base_price(item)
    token0 = token0_for_chain(key.chain_id)
    token1 = str(item["token1Address"])
    is_buy = tick_index % 2 == 1

    return {
        "event": "tick",
        "data": {
            "pair": {"pair": item["pairAddress"], "token": token1, "chain": str(key.chain_id)},
            "swaps": [
                {
                    "isOutlier": True,
                    "priceToken1Usd": str(max(MIN_PRICE, base_price * OUTLIER_PRICE_RATIO)),
                    "tokenInAddress": token1,
                    "amountToken1": "1",
                    "token0Address": token0,
                },
                {
                    "isOutlier": False,
                    "priceToken1Usd": str(tick_price(base_seed, key, base_price, tick_index)),
                    "tokenInAddress": token0 if is_buy else token1,
                    "amountToken1": str(tick_amount(base_seed, key, tick_index)),
                    "token0Address": token0,
                },
            ],
        },
    }


def build_stats(base_seed: int, item: Mapping[str, Any], tick_index: int) -> dict:
    """Pair-stats envelope for ``item`` at ``tick_index``."""
    key = pair_key_of(item)
    h = mix_seeds(base_seed, hash32(key.wire))
    handle = str(item.get("token1Symbol") or key.token_address[-6:]).lower()

    pair: dict[str, Any] = {
        "pairAddress": item["pairAddress"],
        "token1IsHoneypot": ((h ^ tick_index) & 3) == 0,
        "isVerified": ((h + tick_index) & 1) == 0,
        "mintAuthorityRenounced": True,
        "freezeAuthorityRenounced": True,
        "dexPaid": (h & 4) == 0,
    }
    # Alternate between both link spellings seen on the wire
    link_field = "twitterLink" if (tick_index // 2) % 2 else "linkTwitter"
    pair[link_field] = f"https://x.com/{handle}"

    return {
        "event": "pair-stats",
        "data": {
            "pair": pair,
            "pairStats": {},
            "migrationProgress": f"{min(100.0, (h % 50) + tick_index * 0.5):.2f}",
            "callCount": tick_index,
        },
    }


@dataclass
class _PairStream:
    item: Mapping[str, Any]
    tick_tier: str | None = None
    stats_tier: str | None = None
    slow_factor: int = DEFAULT_SLOW_FACTOR
    counter: int = 0
    task: asyncio.Task | None = field(default=None, repr=False)


class PairStreamScheduler:
    """
    Runs one emitter task per subscribed pair for a single connection.

    Each emitter waits a stagger derived from its pair key, then emits every
    ``tick_interval`` seconds. ``stop()`` and ``close()`` cancel synchronously
    and a cancelled emitter never sends again.
    """

    def __init__(self, base_seed: int, send: SendCallback, timing: StreamTiming | None = None):
        self.base_seed = base_seed
        self.send = send
        self.timing = timing or StreamTiming()
        self._streams: dict[PairKey, _PairStream] = {}

    @property
    def active_pairs(self) -> set[PairKey]:
        return set(self._streams)

    def is_running(self, key: PairKey) -> bool:
        return key in self._streams

    def start(
        self,
        item: Mapping[str, Any],
        tier: str | None = FAST,
        stats_tier: str | None = FAST,
        slow_factor: int = DEFAULT_SLOW_FACTOR,
    ) -> PairKey:
        """
        Start (or retune) the emitter for ``item``.

        Args:
            item: Scanner item the stream is derived from
            tier: Tick tier (``"fast"`` or ``"slow"``); None leaves it as is
            stats_tier: Pair-stats tier; None leaves it as is
            slow_factor: Emit slow tiers only on every n-th tick

        Starting an already-running pair never creates a second task; only
        the requested tiers are updated.
        """
        key = pair_key_of(item)
        stream = self._streams.get(key)
        if stream is None:
            stream = _PairStream(item=item)
            self._streams[key] = stream
            stream.task = asyncio.create_task(self._run(key, stream))
            logger.debug(f"Started stream for {key.wire}")

        if tier is not None:
            stream.tick_tier = tier
        if stats_tier is not None:
            stream.stats_tier = stats_tier
        if SLOW in (tier, stats_tier):
            stream.slow_factor = max(1, slow_factor)
        return key

    def unsubscribe(self, key: PairKey, ticks: bool = True, stats: bool = True):
        """Drop tick and/or stats interest; the emitter stops once neither remains."""
        stream = self._streams.get(key)
        if stream is None:
            return
        if ticks:
            stream.tick_tier = None
        if stats:
            stream.stats_tier = None
        if stream.tick_tier is None and stream.stats_tier is None:
            self.stop(key)

    def stop(self, key: PairKey):
        stream = self._streams.pop(key, None)
        if stream is not None and stream.task is not None:
            stream.task.cancel()
            logger.debug(f"Stopped stream for {key.wire}")

    def close(self):
        """Cancel every emitter owned by this scheduler."""
        for key in list(self._streams):
            self.stop(key)

    async def _run(self, key: PairKey, stream: _PairStream):
        await asyncio.sleep(stagger_delay(key, self.timing.max_stagger))
        while self._streams.get(key) is stream:
            stream.counter += 1
            try:
                await self._emit(key, stream)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Emission failed for {key.wire}: {e}")
            await asyncio.sleep(self.timing.tick_interval)

    def _due(self, tier: str | None, n: int, slow_factor: int, fast_every: int) -> bool:
        if tier == FAST:
            return n % fast_every == 0
        if tier == SLOW:
            return n % slow_factor == 0
        return False

    async def _emit(self, key: PairKey, stream: _PairStream):
        n = stream.counter
        if self._due(stream.tick_tier, n, stream.slow_factor, 1):
            await self._send_if_active(key, stream, build_tick(self.base_seed, stream.item, n))
        if self._due(stream.stats_tier, n, stream.slow_factor, 2):
            await self._send_if_active(key, stream, build_stats(self.base_seed, stream.item, n))

    async def _send_if_active(self, key: PairKey, stream: _PairStream, message: dict):
        if self._streams.get(key) is not stream:
            return
        await self.send(message)
