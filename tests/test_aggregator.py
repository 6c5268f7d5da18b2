from decimal import Decimal

import pytest

from engine.aggregator import (
    AggregationContext,
    calculate_asset_balance,
    calculate_current_balance,
    calculate_margin_balance,
    calculate_usdt_balance,
)
from engine.balances import BalanceCache
from terminal_client.models import Account, AssetEntry, TradingPair

SPOT_PAIR = TradingPair(id="BTC-USDT", base="BTC", quote="USDT", market_type="spot")
PERP_PAIR = TradingPair(id="BTC-PERP", base="BTC", quote="USDT", market_type="perp")


def _entry(symbol: str, **fields) -> AssetEntry:
    return AssetEntry(symbol=symbol, **fields)


def _setup(exchange: str, *entries: AssetEntry, pair: TradingPair = SPOT_PAIR):
    cache = BalanceCache()
    cache.set("1", entries)
    context = AggregationContext(
        selected_accounts=("acct",),
        selected_pair=pair,
        accounts={"acct": Account(id="1", name="acct", exchange_name=exchange)},
    )
    return cache, context


def test_usdt_balance_from_unified_wallet():
    cache, context = _setup(
        "Binance", _entry("USDT", amount="1000", wallet_type="unified")
    )

    assert calculate_usdt_balance(cache, context) == Decimal("1000")


def test_wallet_filter_matches_pair_market_type():
    cache, context = _setup(
        "Binance",
        _entry("USDT", amount="100", borrowed="10", wallet_type="unified"),
        _entry("USDT", amount="40", wallet_type="spot"),
        _entry("USDT", amount="25", borrowed="5", wallet_type="perp"),
        pair=PERP_PAIR,
    )

    assert calculate_asset_balance("USDT", cache, context) == Decimal("110")


def test_borrowed_above_amount_is_negative():
    cache, context = _setup(
        "Binance", _entry("BTC", amount="1", borrowed="3", wallet_type="spot")
    )

    assert calculate_asset_balance("BTC", cache, context) == Decimal("-2")


def test_position_size_counts_as_quantity():
    contract = TradingPair(
        id="ETH-PERP", base="ETH", quote="USDT", market_type="perp", is_contract=True
    )
    cache, context = _setup(
        "OKX",
        _entry("ETH-PERP", size="-4", wallet_type="perp", asset_type="position"),
        _entry("ETH", amount="9", wallet_type="perp"),
        pair=contract,
    )

    assert calculate_current_balance(cache, context) == Decimal("-4")


def test_current_balance_uses_base_symbol_for_non_contracts():
    cache, context = _setup("Binance", _entry("BTC", amount="0.5", wallet_type="spot"))

    assert calculate_current_balance(cache, context) == Decimal("0.5")


def test_aggregation_is_idempotent():
    cache, context = _setup(
        "Binance",
        _entry("USDT", amount="12.5", wallet_type="unified"),
        _entry("USDT", amount="7.5", wallet_type="spot"),
    )

    first = calculate_asset_balance("USDT", cache, context)
    second = calculate_asset_balance("USDT", cache, context)

    assert first == second == Decimal("20")


def test_missing_data_yields_zero():
    cache = BalanceCache()
    context = AggregationContext(
        selected_accounts=("ghost", "acct"),
        selected_pair=SPOT_PAIR,
        accounts={"acct": Account(id="1", name="acct", exchange_name="Binance")},
    )

    assert calculate_asset_balance("USDT", cache, context) == Decimal("0")
    assert calculate_margin_balance("USDT", cache, context) == Decimal("0")
    assert calculate_current_balance(cache, AggregationContext()) == Decimal("0")


def test_sums_across_selected_accounts_only():
    cache = BalanceCache()
    cache.set("1", [_entry("USDT", amount="10", wallet_type="spot")])
    cache.set("2", [_entry("USDT", amount="20", wallet_type="spot")])
    cache.set("3", [_entry("USDT", amount="40", wallet_type="spot")])
    accounts = {
        "a": Account(id="1", name="a", exchange_name="Binance"),
        "b": Account(id="2", name="b", exchange_name="OKX"),
        "c": Account(id="3", name="c", exchange_name="OKX"),
    }
    context = AggregationContext(
        selected_accounts=("a", "b"), selected_pair=SPOT_PAIR, accounts=accounts
    )

    assert calculate_asset_balance("USDT", cache, context) == Decimal("30")


def test_hyperliquid_usdh_asset_balance_spans_spot_and_perp_wallets():
    cache, context = _setup(
        "Hyperliquid",
        _entry("USDH", amount="100", wallet_type="spot"),
        _entry("USDH", amount="30", wallet_type="PerpDex-abc"),
        _entry("USDH", amount="5", wallet_type="earn"),
        pair=PERP_PAIR,
    )

    assert calculate_asset_balance("USDH", cache, context) == Decimal("130")


def test_hyperliquid_usdh_margin_combines_wallets():
    cache, context = _setup(
        "Hyperliquid",
        _entry("USDH", amount="100", wallet_type="spot"),
        _entry("USDH", margin_balance="50", wallet_type="perp"),
        pair=PERP_PAIR,
    )

    assert calculate_margin_balance("USDH", cache, context) == Decimal("150")


def test_hyperliquid_usdh_margin_adds_positive_initial_margin_for_perp_positions():
    cache, context = _setup(
        "Hyperliquid",
        _entry(
            "USDH",
            size="20",
            margin_balance="0",
            initial_margin="15",
            wallet_type="perp",
            asset_type="position",
        ),
        _entry(
            "USDH",
            size="3",
            initial_margin="-4",
            wallet_type="perp",
            asset_type="position",
        ),
        pair=PERP_PAIR,
    )

    # Zero margin_balance falls back to size; negative initial margin is ignored.
    assert calculate_margin_balance("USDH", cache, context) == Decimal("38")


def test_hyperliquid_spot_usdc_margin_includes_base_notional():
    pair = TradingPair(id="HYPE-USDC", base="HYPE", quote="USDC", market_type="spot")
    cache, context = _setup(
        "Hyperliquid",
        _entry("USDC", amount="200", borrowed="20", wallet_type="spot"),
        _entry("USDC", amount="50", wallet_type="perp"),
        _entry("HYPE", amount="3", notional="-90", wallet_type="spot"),
        _entry("HYPE", amount="1", notional="30", wallet_type="unified"),
        pair=pair,
    )

    assert calculate_margin_balance("USDC", cache, context) == Decimal("270")


def test_pacifica_margin_ignores_wallet_type():
    cache, context = _setup(
        "Pacifica",
        _entry("USDC", amount="500", wallet_type="margin", margin_balance="480"),
    )

    assert calculate_margin_balance("USDC", cache, context) == Decimal("480")
    # Asset balance still applies the wallet filter.
    assert calculate_asset_balance("USDC", cache, context) == Decimal("0")


@pytest.mark.parametrize("exchange", ["Pacifica", "Paradex"])
def test_untagged_exchanges_fall_back_to_net_amount(exchange):
    cache, context = _setup(
        exchange,
        _entry("USDC", amount="500", borrowed="100", margin_balance="-3"),
    )

    assert calculate_margin_balance("USDC", cache, context) == Decimal("400")


def test_hyperliquid_perpdex_wallet_counts_toward_margin():
    pair = TradingPair(id="BTC-USDC", base="BTC", quote="USDC", market_type="perp")
    cache, context = _setup(
        "Hyperliquid",
        _entry("USDC", amount="10", wallet_type="perpdex-xyz"),
        _entry("USDC", amount="90", wallet_type="perp"),
        _entry("USDC", amount="1000", wallet_type="spot"),
        pair=pair,
    )

    assert calculate_margin_balance("USDC", cache, context) == Decimal("100")


def test_hyperliquid_perp_position_adds_initial_margin():
    pair = TradingPair(id="BTC-USDC", base="BTC", quote="USDC", market_type="perp")
    cache, context = _setup(
        "Hyperliquid",
        _entry(
            "USDC",
            size="10",
            initial_margin="5",
            wallet_type="perp",
            asset_type="position",
        ),
        pair=pair,
    )

    assert calculate_margin_balance("USDC", cache, context) == Decimal("15")


def test_general_margin_prefers_positive_margin_balance():
    cache, context = _setup(
        "Binance",
        _entry("USDT", amount="100", margin_balance="120", wallet_type="unified"),
        _entry("USDT", amount="30", margin_balance="0", wallet_type="spot"),
        _entry("USDT", amount="999", margin_balance="5", wallet_type="perp"),
    )

    assert calculate_margin_balance("USDT", cache, context) == Decimal("150")


def test_entry_with_amount_and_size_is_rejected():
    with pytest.raises(ValueError):
        AssetEntry(symbol="BTC", amount="1", size="1")
