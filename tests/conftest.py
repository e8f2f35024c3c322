"""Shared fixtures for token-scanner tests."""

import pytest

from token_scanner.feed.generator import ScannerGenerator

FIXED_NOW = 1_700_000_000.0

PAIR = "0xAbCdEf0000000000000000000000000000PAIR"
TOKEN = "0x1111111111111111111111111111111111TKN"
WETH = "0xWETH"


def make_item(**overrides) -> dict:
    """A scanner item as it appears on the wire (numbers mostly as strings)."""
    item = {
        "pairAddress": PAIR,
        "token1Address": TOKEN,
        "token1Name": "Amber Token",
        "token1Symbol": "AMBER0001",
        "chainId": 1,
        "routerAddress": "0xROUTER_UNI",
        "price": "2.0",
        "volume": "1000",
        "liquidity": "50000",
        "percentChangeInLiquidity": "0",
        "currentMcap": "2000000",
        "initialMcap": "1000000",
        "pairMcapUsd": "0",
        "pairMcapUsdInitial": "0",
        "token1TotalSupplyFormatted": "1000000",
        "buys": 10,
        "sells": 5,
        "txns": 15,
        "diff5M": "1.5",
        "diff1H": "-2",
        "diff6H": "3",
        "diff24H": "10",
        "age": "2024-01-01T00:00:00.000Z",
        "honeyPot": False,
        "contractVerified": True,
        "isMintAuthDisabled": True,
        "isFreezeAuthDisabled": False,
        "dexPaid": False,
        "contractRenounced": False,
        "liquidityLocked": True,
        "burnedSupply": "0",
        "migrationProgress": None,
    }
    item.update(overrides)
    return item


@pytest.fixture
def item() -> dict:
    return make_item()


@pytest.fixture
def generator() -> ScannerGenerator:
    return ScannerGenerator(42, clock=lambda: FIXED_NOW)
