"""Tests for wire envelope mapping and subscription builders."""

import json
import logging
import math

import pytest
from conftest import PAIR, TOKEN, make_item

from token_scanner.errors import TokenValidationError
from token_scanner.state.mapper import (
    SnapshotCommand,
    StatsCommand,
    TickCommand,
    build_pair_slow_subscription,
    build_pair_stats_unsubscription,
    build_pair_subscription,
    build_scanner_subscription,
    compute_pair_payloads,
    map_message,
)
from token_scanner.state.mapping import calc_market_cap, map_scanner_result_to_token


class TestSnapshot:
    def test_scanner_pairs(self):
        command = map_message(
            {"event": "scanner-pairs", "data": {"page": 2, "scannerPairs": [make_item()]}},
            received_at=100.0,
        )
        assert isinstance(command, SnapshotCommand)
        assert command.page == 2
        assert command.append is False
        assert command.received_at == 100.0
        token = command.items[0].token
        assert token.id == PAIR.lower()
        assert token.symbol == "AMBER0001"
        assert command.items[0].total_supply == 1_000_000

    def test_alternate_item_locations(self):
        by_results = map_message({"event": "scanner-pairs", "data": {"results": {"pairs": [make_item()]}}})
        by_pairs = map_message({"event": "scanner-pairs", "data": {"pairs": [make_item()], "filter": {"page": 3}}})
        assert len(by_results.items) == 1
        assert by_results.page == 1
        assert by_pairs.page == 3

    def test_append(self):
        command = map_message({"event": "scanner-append", "data": {"page": 1, "scannerPairs": [make_item()]}})
        assert isinstance(command, SnapshotCommand)
        assert command.append is True

    def test_invalid_item_is_logged_and_skipped(self, caplog):
        items = [make_item(), make_item(pairAddress="0xBAD", token1Symbol="  ")]
        with caplog.at_level(logging.ERROR):
            command = map_message({"event": "scanner-pairs", "data": {"scannerPairs": items}})
        assert [i.token.id for i in command.items] == [PAIR.lower()]
        assert "0xBAD" in caplog.text

    def test_items_without_identity_are_dropped(self):
        items = [{"token1Name": "x", "token1Symbol": "X"}, "junk", make_item()]
        command = map_message({"event": "scanner-pairs", "data": {"scannerPairs": items}})
        assert len(command.items) == 1

    def test_json_text_input(self):
        raw = json.dumps({"event": "scanner-pairs", "data": {"scannerPairs": [make_item()]}})
        assert isinstance(map_message(raw), SnapshotCommand)


class TestTick:
    def test_tick(self):
        command = map_message(
            {
                "event": "tick",
                "data": {
                    "pair": {"pair": PAIR, "token": TOKEN, "chain": "1"},
                    "swaps": [
                        {"isOutlier": True, "priceToken1Usd": "1.0", "tokenInAddress": TOKEN, "amountToken1": "1"},
                        {
                            "isOutlier": False,
                            "priceToken1Usd": "2.1",
                            "tokenInAddress": "0xWETH",
                            "amountToken1": "3.5",
                            "token0Address": "0xWETH",
                        },
                    ],
                },
            },
            received_at=5.0,
        )
        assert isinstance(command, TickCommand)
        assert command.chain == "ETH"
        assert command.key.pair_address == PAIR.lower()
        outlier, swap = command.swaps
        assert outlier.is_outlier
        assert swap.price == 2.1
        assert swap.amount == 3.5
        assert swap.token0_address == "0xWETH"

    def test_legacy_swap_fields(self):
        command = map_message(
            {
                "event": "tick",
                "data": {
                    "pair": {"pairAddress": PAIR},
                    "swaps": [{"price": "3", "amount": "2", "tokenInAddress": TOKEN, "isOutlier": "false"}],
                },
            }
        )
        swap = command.swaps[0]
        assert swap.price == 3.0
        assert swap.amount == 2.0
        assert swap.is_outlier is False

    def test_unparseable_price_is_nan(self):
        command = map_message(
            {"event": "tick", "data": {"pair": {"pair": PAIR}, "swaps": [{"priceToken1Usd": "abc"}]}}
        )
        assert math.isnan(command.swaps[0].price)

    @pytest.mark.parametrize("chain", ["Infinity", "-inf", "1e400", "nan"])
    def test_non_finite_chain_falls_back_to_eth(self, chain):
        command = map_message(
            {"event": "tick", "data": {"pair": {"pair": PAIR, "token": TOKEN, "chain": chain}, "swaps": []}}
        )
        assert command.chain == "ETH"
        assert command.key.chain_id == 1


class TestNonFiniteNumbers:
    @pytest.mark.parametrize("page", ["1e400", "Infinity", "-inf", float("inf")])
    def test_snapshot_page(self, page):
        command = map_message({"event": "scanner-pairs", "data": {"page": page, "scannerPairs": [make_item()]}})
        assert command.page == 1
        assert len(command.items) == 1

    def test_snapshot_item_chain_id(self):
        command = map_message({"event": "scanner-pairs", "data": {"scannerPairs": [make_item(chainId="inf")]}})
        assert command.items[0].token.chain == "ETH"

    def test_pair_payloads(self):
        assert compute_pair_payloads([make_item(chainId="1e400")]) == [{"pair": PAIR, "token": TOKEN, "chain": "ETH"}]


class TestStats:
    def test_pair_stats(self):
        command = map_message(
            {
                "event": "pair-stats",
                "data": {
                    "pair": {
                        "pairAddress": PAIR,
                        "isVerified": True,
                        "token1IsHoneypot": False,
                        "mintAuthorityRenounced": True,
                        "twitterLink": "https://x.com/amber",
                    },
                    "migrationProgress": "42.5",
                },
            }
        )
        assert isinstance(command, StatsCommand)
        stats = command.stats
        assert stats.verified is True
        assert stats.honeypot is False
        assert stats.mint_authority_renounced is True
        assert stats.freeze_authority_renounced is None
        assert stats.link_twitter == "https://x.com/amber"
        assert stats.migration_progress == 42.5

    def test_pair_address_at_data_level(self):
        command = map_message({"event": "pair-stats", "data": {"pairAddress": PAIR, "webLink": "https://a.xyz"}})
        assert command.stats.pair_address == PAIR
        assert command.stats.link_website == "https://a.xyz"
        assert command.stats.migration_progress is None


@pytest.mark.parametrize(
    "message",
    [
        "not json",
        b"\x00\x01",
        None,
        [],
        {"event": "tick"},
        {"event": "tick", "data": "x"},
        {"event": "tick", "data": {"pair": {"pair": PAIR}}},
        {"event": "tick", "data": {"pair": {}, "swaps": []}},
        {"event": "pair-stats", "data": {"pair": {}}},
        {"event": "scanner-pairs", "data": {}},
        {"event": "mystery", "data": {}},
    ],
)
def test_malformed_messages_map_to_none(message):
    assert map_message(message) is None


class TestMarketCap:
    @pytest.mark.parametrize(
        "values, expected",
        [
            (("0", "5", "3", "2"), 5.0),
            (("100", "5", "3", "2"), 100.0),
            (("0", "0", "0", "0"), 0.0),
            (("NaN", "abc", "-4", "7"), 7.0),
        ],
    )
    def test_priority(self, values, expected):
        item = dict(zip(("currentMcap", "initialMcap", "pairMcapUsd", "pairMcapUsdInitial"), values))
        assert calc_market_cap(item) == expected

    def test_missing_fields(self):
        assert calc_market_cap({}) == 0.0


class TestMapScannerResultToToken:
    def test_required_fields(self):
        with pytest.raises(TokenValidationError) as exc:
            map_scanner_result_to_token(make_item(token1Name=""))
        assert exc.value.field == "token1Name"
        assert exc.value.pair_address == PAIR

    def test_defaults_for_garbage(self):
        token = map_scanner_result_to_token(
            make_item(price="abc", volume=None, liquidity="-5", buys="x", chainId="SOL", age="yesterday")
        )
        assert token.price_usd == 0.0
        assert token.volume_usd == 0.0
        assert token.liquidity.current == 0.0
        assert token.transactions.buys == 0
        assert token.chain == "SOL"
        assert token.created_at is None

    def test_audit_and_security(self):
        token = map_scanner_result_to_token(make_item(burnedSupply="10", twitterLink="https://x.com/a"))
        assert token.audit.mintable is False
        assert token.audit.freezable is True
        assert token.audit.contract_verified is True
        assert token.audit.link_twitter == "https://x.com/a"
        assert token.security.locked is True
        assert token.security.burned is True
        assert token.market_cap == 2_000_000


class TestSubscriptions:
    def test_builders(self):
        assert build_scanner_subscription({"chain": "ETH"}) == {"event": "scanner-filter", "data": {"chain": "ETH"}}
        assert build_pair_subscription("0xP", "0xT", "ETH") == {
            "event": "subscribe-pair",
            "data": {"pair": "0xP", "token": "0xT", "chain": "ETH"},
        }
        assert build_pair_slow_subscription("0xP", "0xT", "ETH")["event"] == "subscribe-pair-slow"
        assert build_pair_stats_unsubscription("0xP", "0xT", "ETH")["event"] == "unsubscribe-pair-stats"

    def test_compute_pair_payloads(self):
        items = [
            make_item(),
            make_item(pairAddress=PAIR.lower(), token1Address=TOKEN.upper()),
            make_item(pairAddress="0xOther", chainId=900),
            make_item(chainId=None),
            {"pairAddress": "", "token1Address": "x", "chainId": 1},
        ]
        assert compute_pair_payloads(items) == [
            {"pair": PAIR, "token": TOKEN, "chain": "ETH"},
            {"pair": "0xOther", "token": TOKEN, "chain": "SOL"},
        ]
