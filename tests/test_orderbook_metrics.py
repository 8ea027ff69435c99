"""
Tests for OrderBookMetrics.

Tests cover:
- Spread, average and trend prices
- Liquidity bands
- Smart and clean prices with a thin top of book
- Quote-hunter table
"""

import random

import pytest

from mmbot.analytics.orderbook_metrics import (
    BAND_CUSTOM,
    BAND_FULL,
    OrderBookMetrics,
    SmartPriceConfig,
    aggregate_by_price,
)
from mmbot.core.errors import InvalidInput
from mmbot.core.models import BookLevel, OrderBookSnapshot, OrderRecord, OrderSide


@pytest.fixture
def metrics():
    return OrderBookMetrics(rng=random.Random(1), log_event=lambda *a, **k: None)


def book(bids, asks):
    return OrderBookSnapshot.from_pairs(bids, asks)


# ─────────────────────────────────────────────────────────────────────────────
# Spread and trend prices
# ─────────────────────────────────────────────────────────────────────────────


class TestSpread:

    def test_basic_spread(self, metrics):
        info = metrics.compute(book([(99, 10)], [(101, 10)]))
        assert info.highest_bid == 99
        assert info.lowest_ask == 101
        assert info.spread == pytest.approx(2)
        assert info.spread_percent == pytest.approx(2.0)
        assert info.average_price == pytest.approx(100)

    def test_empty_side_returns_none(self, metrics):
        assert metrics.compute(book([], [(101, 10)])) is None
        assert metrics.compute(book([(99, 10)], [])) is None
        assert metrics.compute(None) is None

    def test_trend_prices_stay_inside_spread(self, metrics):
        for _ in range(50):
            info = metrics.compute(book([(99, 10)], [(101, 10)]))
            assert 99 <= info.downtrend_average_price < 101
            assert 99 < info.uptrend_average_price <= 101
            assert 99 < info.middle_average_price < 101
            assert info.downtrend_average_price <= 99 + 0.15 * 2 + 1e-9
            assert info.uptrend_average_price >= 101 - 0.15 * 2 - 1e-9

    def test_trend_price_lookup(self, metrics):
        info = metrics.compute(book([(99, 10)], [(101, 10)]))
        assert info.trend_price("uptrend") == info.uptrend_average_price
        assert info.trend_price("downtrend") == info.downtrend_average_price
        assert info.trend_price("middle") == info.middle_average_price

    def test_top_amounts_sum_same_price(self, metrics):
        info = metrics.compute(book([(99, 10), (99, 5), (98, 1)], [(101, 3), (102, 4)]))
        assert info.highest_bid_amount == pytest.approx(15)
        assert info.lowest_ask_amount == pytest.approx(3)


# ─────────────────────────────────────────────────────────────────────────────
# Liquidity bands
# ─────────────────────────────────────────────────────────────────────────────


class TestLiquidityBands:

    def test_custom_band_counts_levels_inside(self, metrics):
        info = metrics.compute(
            book([(99, 10), (97, 20)], [(101, 5), (103, 7)]),
            custom_spread_percent=2.0,
        )
        custom = info.liquidity[BAND_CUSTOM]
        assert custom.low_price == pytest.approx(98)
        assert custom.high_price == pytest.approx(102)
        assert custom.amount_bids == pytest.approx(10)
        assert custom.amount_bids_quote == pytest.approx(990)
        assert custom.amount_asks == pytest.approx(5)
        assert custom.total_count == 2
        assert info.custom is custom

    def test_custom_band_without_width_is_full(self, metrics):
        info = metrics.compute(book([(99, 10), (50, 20)], [(101, 5), (200, 7)]))
        assert info.custom.is_full
        assert info.custom.amount_bids == pytest.approx(30)
        assert info.custom.amount_asks == pytest.approx(12)

    def test_full_band_counts_everything(self, metrics):
        info = metrics.compute(book([(99, 1), (1, 1)], [(101, 1), (1000, 1)]), custom_spread_percent=1)
        assert info.liquidity[BAND_FULL].total_count == 4

    def test_snapshot_is_not_mutated(self, metrics):
        snapshot = book([(99, 10), (99, 5)], [(101, 3)])
        metrics.compute(snapshot, custom_spread_percent=2)
        assert [(b.price, b.amount) for b in snapshot.bids] == [(99, 10), (99, 5)]


# ─────────────────────────────────────────────────────────────────────────────
# Smart and clean prices
# ─────────────────────────────────────────────────────────────────────────────


class TestSmartPrice:

    def test_smart_ask_skips_thin_top(self, metrics):
        info = metrics.compute(book([(99, 1000)], [(101, 0.001), (102, 500), (103, 500)]))
        assert info.smart_ask == pytest.approx(102)

    def test_smart_bid_skips_thin_top(self, metrics):
        info = metrics.compute(book([(99, 0.001), (98, 500), (97, 500)], [(101, 1000)]))
        assert info.smart_bid == pytest.approx(98)

    def test_clean_price_never_beyond_smart(self, metrics):
        info = metrics.compute(book([(99, 0.001), (98, 500), (97, 500)], [(101, 0.001), (102, 500), (103, 500)]))
        assert info.clean_ask <= info.smart_ask
        assert info.clean_bid >= info.smart_bid

    def test_clean_price_rejects_missing_smart_price(self, metrics):
        info = metrics.compute(book([(99, 10)], [(101, 10)]))
        with pytest.raises(InvalidInput):
            metrics.clean_price([BookLevel(101, 10)], OrderSide.SELL, info.liquidity, None)

    def test_configurable_thresholds(self):
        # A huge max_share means the share condition never triggers on the top level
        strict = OrderBookMetrics(rng=random.Random(1), config=SmartPriceConfig(max_share=2.0))
        info = strict.compute(book([(99, 1000)], [(101, 10), (102, 10)]))
        assert info.smart_ask is None
        assert info.clean_ask is None


# ─────────────────────────────────────────────────────────────────────────────
# Quote hunter
# ─────────────────────────────────────────────────────────────────────────────


class TestQuoteHunter:

    BIDS = [(100, 10), (99, 10), (98, 10), (97, 10), (96, 10)]

    def test_table_marks_single_optimal_level(self, metrics):
        info = metrics.compute(book(self.BIDS, [(101, 10)]), open_orders=[])
        assert len(info.quote_hunter) == 5
        assert sum(1 for row in info.quote_hunter if row.is_optimal) == 1
        best = info.optimal_quote_hunter_bid
        assert best.taker_koef == max(row.taker_koef for row in info.quote_hunter)

    def test_own_orders_are_subtracted(self, metrics):
        own = OrderRecord(
            id="1", pair="ADM/USDT", side=OrderSide.BUY, purpose="liquidity",
            price=99, base_amount=10, quote_amount=990,
        )
        table = metrics.quote_hunter([BookLevel(p, a) for p, a in self.BIDS], [own], 100)
        assert [row.price for row in table] == [100, 98, 97, 96]

    def test_too_few_levels(self, metrics):
        levels = [BookLevel(p, a) for p, a in self.BIDS[:3]]
        assert metrics.quote_hunter(levels, [], 100) is None

    def test_lower_bound_cuts_table(self, metrics):
        levels = [BookLevel(p, a) for p, a in self.BIDS]
        table = metrics.quote_hunter(levels, [], 100, lower_bound=98)
        assert [row.price for row in table] == [100, 99, 98]


def test_aggregate_by_price():
    merged = aggregate_by_price([BookLevel(10, 1), BookLevel(10, 2), BookLevel(9, 5)])
    assert merged == [BookLevel(10, 3), BookLevel(9, 5)]
