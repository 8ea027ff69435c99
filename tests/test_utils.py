"""
Tests for percent math and order statistics helpers.
"""

import random

import pytest

from mmbot.core.models import OrderRecord
from mmbot.core.utils import (
    calculate_order_stats,
    calculate_twap,
    disbalance_percent,
    fix_disbalance,
    numbers_difference_percent,
    numbers_difference_percent_direct,
    random_value,
)


def record(order_id, side, price, amount, filled=0.0, **fields):
    return OrderRecord(
        id=order_id, pair="ADM/USDT", side=side, purpose="liquidity",
        price=price, base_amount=amount, quote_amount=price * amount,
        base_amount_filled=filled, **fields,
    )


class TestPercentMath:

    def test_difference_relative_to_mean(self):
        assert numbers_difference_percent(90, 110) == pytest.approx(20)
        assert numbers_difference_percent(110, 90) == pytest.approx(20)
        assert numbers_difference_percent(0, 0) == 0

    def test_difference_relative_to_first(self):
        assert numbers_difference_percent_direct(100, 90) == pytest.approx(10)
        assert numbers_difference_percent_direct(0, 0) == 0

    def test_disbalance(self):
        assert disbalance_percent(1, 3) == pytest.approx(25)
        assert disbalance_percent(0, 0) == 50

    def test_fix_disbalance_inside_range(self):
        assert fix_disbalance(40, 60, 30) == 0

    def test_fix_disbalance_too_small(self):
        delta = fix_disbalance(10, 90, 30)
        assert delta == pytest.approx(20)
        assert disbalance_percent(10 + delta, 90 - delta) == pytest.approx(30)

    def test_fix_disbalance_too_large(self):
        delta = fix_disbalance(90, 10, 30)
        assert delta == pytest.approx(-20)
        assert disbalance_percent(90 + delta, 10 - delta) == pytest.approx(70)


class TestRandomValue:

    def test_integer_bounds_inclusive(self):
        rng = random.Random(3)
        values = {random_value(rng, 1, 3, is_integer=True) for _ in range(200)}
        assert values == {1, 2, 3}

    def test_float_within_bounds(self):
        rng = random.Random(3)
        for _ in range(100):
            assert 1.5 <= random_value(rng, 1.5, 2.5) <= 2.5


class TestOrderStats:

    def test_stats_use_remaining_amount(self):
        orders = [
            record("1", "buy", 2.0, 10, base_amount_left=4),
            record("2", "sell", 3.0, 5),
        ]
        stats = calculate_order_stats(orders)
        assert stats.bids_count == 1
        assert stats.bids_amount == pytest.approx(4)
        assert stats.bids_quote == pytest.approx(8)
        assert stats.asks_amount == pytest.approx(5)
        assert stats.total_count == 2

    def test_twap(self):
        orders = [
            record("1", "buy", 2.0, 10, filled=10),
            record("2", "buy", 4.0, 10, filled=5),
            record("3", "buy", 9.0, 10),
            record("4", "sell", 1.0, 10, filled=10, is_not_found=True),
        ]
        twap = calculate_twap(orders)
        assert twap.total_orders == 4
        assert twap.filled_orders == 2
        assert twap.part_filled_orders == 1
        assert twap.skipped_orders == 1
        assert twap.uncertain_orders == 1
        assert twap.twap == pytest.approx((20 + 20 + 10) / 25)

    def test_twap_empty(self):
        assert calculate_twap([]).twap == 0.0
