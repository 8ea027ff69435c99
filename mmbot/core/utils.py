"""
Utility helpers: time, randomness, percent math and order statistics.
"""

from __future__ import annotations

import math
import random
import time
from dataclasses import dataclass
from typing import Any, Iterable


def now_ms() -> int:
    return int(time.time() * 1000)


def random_value(rng: random.Random, low: float, high: float, is_integer: bool = False) -> float:
    """
    Uniform random value in [low, high].

    With is_integer both bounds are inclusive integers.
    """
    if is_integer:
        return rng.randint(int(math.ceil(low)), int(math.floor(high)))
    return rng.uniform(low, high)


def get_precision(decimals: int) -> float:
    return 10 ** -decimals


def round_to(value: float, decimals: int) -> float:
    return round(value, decimals)


def is_positive_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value > 0


def numbers_difference_percent(a: float, b: float) -> float:
    """Difference between a and b relative to their mean, in percent."""
    mean = (a + b) / 2
    if mean == 0:
        return 0.0
    return 100 * abs(a - b) / mean


def numbers_difference_percent_direct(a: float, b: float) -> float:
    """Difference between a and b relative to a, in percent."""
    if a == 0:
        return 0.0 if b == 0 else math.inf
    return 100 * abs((a - b) / a)


def disbalance_percent(a: float, b: float) -> float:
    """Share of a in a + b, in percent. Two zeros are balanced (50%)."""
    if a == 0 and b == 0:
        return 50.0
    return 100 * a / (a + b)


def fix_disbalance(a: float, b: float, target_percent: float) -> float:
    """
    Amount to move from b to a (negative: from a to b) so that
    disbalance_percent(a + x, b - x) lands on the nearest edge of
    [target_percent, 100 - target_percent]. The total a + b is kept.

    Returns 0 when the current share is already inside that range.
    """
    total = a + b
    current = disbalance_percent(a, b)
    if current < target_percent:
        target_amount = total * target_percent / 100
    elif current > 100 - target_percent:
        target_amount = total * (100 - target_percent) / 100
    else:
        return 0.0
    return target_amount - a


@dataclass
class OrderStats:
    """Aggregated amounts over a set of order records."""
    bids_count: int = 0
    bids_amount: float = 0.0
    bids_quote: float = 0.0
    asks_count: int = 0
    asks_amount: float = 0.0
    asks_quote: float = 0.0

    @property
    def total_count(self) -> int:
        return self.bids_count + self.asks_count


def calculate_order_stats(orders: Iterable[Any]) -> OrderStats:
    """Sum remaining base and quote amounts of records per side."""
    stats = OrderStats()
    for order in orders:
        amount = order.base_amount_left if order.base_amount_left is not None else order.base_amount
        quote = amount * order.price
        if order.side == "buy":
            stats.bids_count += 1
            stats.bids_amount += amount
            stats.bids_quote += quote
        else:
            stats.asks_count += 1
            stats.asks_amount += amount
            stats.asks_quote += quote
    return stats


@dataclass
class TwapResult:
    twap: float
    total_orders: int
    filled_orders: int
    part_filled_orders: int
    skipped_orders: int
    uncertain_orders: int
    total_amount: float
    total_quote: float


def calculate_twap(orders: Iterable[Any]) -> TwapResult:
    """
    Amount-weighted average fill price of executed records.

    Records closed as not-found without a confirmed cancel are counted as
    uncertain fills.
    """
    orders = list(orders)
    filled = part_filled = skipped = uncertain = 0
    total_quote = 0.0
    total_amount = 0.0

    for order in orders:
        amount = order.base_amount_filled
        if amount and order.price:
            total_quote += amount * order.price
            total_amount += amount
            if math.isclose(amount, order.base_amount):
                filled += 1
            else:
                part_filled += 1
            if order.is_not_found and not order.is_cancelled:
                uncertain += 1
        else:
            skipped += 1

    return TwapResult(
        twap=total_quote / total_amount if total_amount else 0.0,
        total_orders=len(orders),
        filled_orders=filled,
        part_filled_orders=part_filled,
        skipped_orders=skipped,
        uncertain_orders=uncertain,
        total_amount=total_amount,
        total_quote=total_quote,
    )
