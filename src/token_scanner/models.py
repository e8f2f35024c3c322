"""Domain model shared by the feed and the state reducer."""

from dataclasses import dataclass, field
from datetime import datetime

CHAIN_IDS = {"ETH": 1, "BSC": 56, "BASE": 8453, "SOL": 900}
CHAIN_NAMES = {1: "ETH", 56: "BSC", 8453: "BASE", 900: "SOL", 11155111: "ETH"}


def to_chain_id(chain: str | int | None) -> int:
    """Normalise a chain name or numeric id; unknown values map to Ethereum."""
    if chain is None or isinstance(chain, bool):
        return 1
    if isinstance(chain, int):
        return chain
    text = str(chain).strip().upper()
    if text in CHAIN_IDS:
        return CHAIN_IDS[text]
    try:
        return int(float(text))
    except (ValueError, OverflowError):
        return 1


def to_chain_name(chain: str | int | None) -> str:
    """Human-readable chain name for a chain id or name."""
    if isinstance(chain, str) and chain.strip().upper() in CHAIN_IDS:
        return chain.strip().upper()
    chain_id = to_chain_id(chain)
    return CHAIN_NAMES.get(chain_id, str(chain_id))


@dataclass(frozen=True)
class PairKey:
    """Composite pair identity; ``of()`` builds the canonical lower-cased form."""

    pair_address: str
    token_address: str
    chain_id: int

    @classmethod
    def of(cls, pair: str, token: str, chain: str | int | None) -> "PairKey":
        return cls(pair.lower(), token.lower(), to_chain_id(chain))

    @property
    def wire(self) -> str:
        return f"{self.pair_address}|{self.token_address}|{self.chain_id}"


@dataclass(frozen=True)
class Liquidity:
    current: float = 0.0
    change_percent: float = 0.0


@dataclass(frozen=True)
class PriceChanges:
    m5: float = 0.0
    h1: float = 0.0
    h6: float = 0.0
    h24: float = 0.0


@dataclass(frozen=True)
class Transactions:
    buys: int = 0
    sells: int = 0


@dataclass(frozen=True)
class Audit:
    mintable: bool = False
    freezable: bool = False
    honeypot: bool = False
    contract_verified: bool = False
    dex_paid: bool = False
    link_discord: str | None = None
    link_telegram: str | None = None
    link_twitter: str | None = None
    link_website: str | None = None


@dataclass(frozen=True)
class Security:
    renounced: bool = False
    locked: bool = False
    burned: bool = False


@dataclass(frozen=True)
class HistorySample:
    timestamp: float
    price: float
    market_cap: float
    volume: float
    buys: int
    sells: int
    liquidity: float


@dataclass(frozen=True)
class History:
    """
    Rolling per-token history stored as parallel, index-aligned sequences.

    Timestamps are epoch seconds and strictly ascending.
    """

    timestamps: tuple[float, ...] = ()
    price: tuple[float, ...] = ()
    market_cap: tuple[float, ...] = ()
    volume: tuple[float, ...] = ()
    buys: tuple[int, ...] = ()
    sells: tuple[int, ...] = ()
    liquidity: tuple[float, ...] = ()

    def __len__(self) -> int:
        return len(self.timestamps)

    def append(self, sample: HistorySample, window_seconds: float) -> "History":
        """
        Append a sample and evict everything older than the window.

        A sample older than the newest one is ignored; one with the same
        timestamp replaces it, so the series stays strictly ascending.
        """
        end = len(self.timestamps)
        if end and sample.timestamp < self.timestamps[-1]:
            return self
        if end and sample.timestamp == self.timestamps[-1]:
            end -= 1

        cutoff = sample.timestamp - window_seconds
        start = 0
        while start < end and self.timestamps[start] < cutoff:
            start += 1

        return History(
            timestamps=self.timestamps[start:end] + (sample.timestamp,),
            price=self.price[start:end] + (sample.price,),
            market_cap=self.market_cap[start:end] + (sample.market_cap,),
            volume=self.volume[start:end] + (sample.volume,),
            buys=self.buys[start:end] + (sample.buys,),
            sells=self.sells[start:end] + (sample.sells,),
            liquidity=self.liquidity[start:end] + (sample.liquidity,),
        )


@dataclass(frozen=True)
class Token:
    """Canonical live state of one pair."""

    id: str
    pair_address: str
    token_address: str
    chain: str
    exchange: str
    name: str
    symbol: str
    created_at: datetime | None
    price_usd: float = 0.0
    market_cap: float = 0.0
    volume_usd: float = 0.0
    liquidity: Liquidity = field(default_factory=Liquidity)
    price_changes: PriceChanges = field(default_factory=PriceChanges)
    transactions: Transactions = field(default_factory=Transactions)
    audit: Audit = field(default_factory=Audit)
    security: Security = field(default_factory=Security)
    migration_progress: float | None = None
    history: History = field(default_factory=History)
    last_snapshot_at: float | None = None
    last_tick_at: float | None = None
    last_stats_at: float | None = None

    @property
    def key(self) -> PairKey:
        return PairKey.of(self.pair_address, self.token_address, self.chain)


@dataclass(frozen=True)
class Meta:
    """Per-pair data the reducer needs but never renders."""

    total_supply: float = 0.0
    token0_address: str | None = None


@dataclass(frozen=True)
class Swap:
    """A single swap from a tick batch, with numeric fields already parsed."""

    price: float
    amount: float
    token_in_address: str
    is_outlier: bool = False
    token0_address: str | None = None


@dataclass(frozen=True)
class PairStats:
    """Audit/security facts from a pair-stats event; None means "not provided"."""

    pair_address: str
    verified: bool | None = None
    honeypot: bool | None = None
    mint_authority_renounced: bool | None = None
    freeze_authority_renounced: bool | None = None
    dex_paid: bool | None = None
    renounced: bool | None = None
    locked: bool | None = None
    burned: bool | None = None
    migration_progress: float | None = None
    link_discord: str | None = None
    link_telegram: str | None = None
    link_twitter: str | None = None
    link_website: str | None = None
