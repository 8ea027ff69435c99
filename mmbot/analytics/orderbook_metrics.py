"""
OrderBookMetrics: liquidity and reference-price analytics over a raw snapshot.

Computes, per cycle:
- spread, average price and randomized trend prices inside the spread
- liquidity bands (custom %, 2%, 5%, 10%, 50%, full) with bid/ask totals
- volume needed to move the top of book to a target price
- smart price: depth-aware price that ignores thin top-of-book orders
- clean price: reference price after discounting suspected cheater orders
- quote-hunter table: the bid level an adversary would most profitably hit

The snapshot is never mutated. Degenerate books (no bids or no asks)
produce ``None`` instead of raising.
"""

from __future__ import annotations

import json
import logging
import math
import random
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from mmbot.core.errors import InvalidInput
from mmbot.core.models import BookLevel, OrderBookSnapshot, OrderSide
from mmbot.core.utils import (
    is_positive_number,
    numbers_difference_percent,
    numbers_difference_percent_direct,
)

log = logging.getLogger("mmbot")

# Trend prices deviate up to this share of the spread
AVERAGE_SPREAD_DEVIATION = 0.15
# Spread-support orders live within this distance from the average price
SS_MAX_SPREAD_PERCENT = 0.2
# Number of price intervals used for avg/rms/median statistics
PRICE_INTERVAL_LEVELS = 20
# Minimum third-party bid levels before a quote-hunter table is built
QUOTE_HUNTER_MIN_LEVELS = 3

BAND_SPREAD_SUPPORT = "spread_support"
BAND_2 = "percent2"
BAND_5 = "percent5"
BAND_10 = "percent10"
BAND_50 = "percent50"
BAND_CUSTOM = "custom"
BAND_FULL = "full"


@dataclass
class SmartPriceConfig:
    """Empirically tuned thresholds for smart and clean prices."""
    base_share: float = 0.01
    max_share: float = 0.05
    clean_koef: float = 7.0


@dataclass
class LiquidityBand:
    """Aggregate bid/ask volume within ±spread_percent of the average price."""
    spread_percent: float
    low_price: float
    high_price: float
    spread: float
    bids_count: int = 0
    amount_bids: float = 0.0
    amount_bids_quote: float = 0.0
    asks_count: int = 0
    amount_asks: float = 0.0
    amount_asks_quote: float = 0.0
    total_count: int = 0
    amount_total: float = 0.0
    amount_total_quote: float = 0.0

    @property
    def is_full(self) -> bool:
        return not self.spread_percent

    def add_bid(self, level: BookLevel) -> None:
        if self.is_full or level.price > self.low_price:
            self.bids_count += 1
            self.amount_bids += level.amount
            self.amount_bids_quote += level.amount * level.price
            self._add_total(level)

    def add_ask(self, level: BookLevel) -> None:
        if self.is_full or level.price < self.high_price:
            self.asks_count += 1
            self.amount_asks += level.amount
            self.amount_asks_quote += level.amount * level.price
            self._add_total(level)

    def _add_total(self, level: BookLevel) -> None:
        self.total_count += 1
        self.amount_total += level.amount
        self.amount_total_quote += level.amount * level.price


@dataclass
class CumulativeLevel:
    amount: float
    quote: float


@dataclass
class PriceIntervals:
    average: Optional[float] = None
    rms: Optional[float] = None
    median: Optional[float] = None


@dataclass
class PlacedAmountFit:
    """How many top levels fit into an already placed amount."""
    count: int = 0
    amount: float = 0.0
    price: Optional[float] = None
    reached: bool = False


@dataclass
class QuoteHunterLevel:
    index: int
    price: float
    amount: float
    amount_acc: float
    quote: float
    quote_acc: float
    dump_percent: float
    taker_koef: float
    is_optimal: bool = False


@dataclass
class LiquidityMetrics:
    highest_bid: float
    lowest_ask: float
    spread: float
    spread_percent: float
    average_price: float
    downtrend_average_price: float
    uptrend_average_price: float
    middle_average_price: float
    bids_count: int
    asks_count: int
    highest_bid_amount: float
    lowest_ask_amount: float
    liquidity: Dict[str, LiquidityBand]
    cumulative_bids: List[CumulativeLevel] = field(default_factory=list)
    cumulative_asks: List[CumulativeLevel] = field(default_factory=list)
    smart_bid: Optional[float] = None
    smart_ask: Optional[float] = None
    clean_bid: Optional[float] = None
    clean_ask: Optional[float] = None
    target_price: Optional[float] = None
    target_price_type: Optional[str] = None
    amount_target_price: float = 0.0
    amount_target_price_quote: float = 0.0
    target_price_orders_count: int = 0
    target_price_excluded: Optional[float] = None
    amount_target_price_excluded: float = 0.0
    amount_target_price_quote_excluded: float = 0.0
    target_price_orders_count_excluded: int = 0
    bid_intervals: PriceIntervals = field(default_factory=PriceIntervals)
    ask_intervals: PriceIntervals = field(default_factory=PriceIntervals)
    placed_bids: PlacedAmountFit = field(default_factory=PlacedAmountFit)
    placed_asks: PlacedAmountFit = field(default_factory=PlacedAmountFit)
    quote_hunter: Optional[List[QuoteHunterLevel]] = None

    @property
    def custom(self) -> LiquidityBand:
        return self.liquidity[BAND_CUSTOM]

    @property
    def optimal_quote_hunter_bid(self) -> Optional[QuoteHunterLevel]:
        for row in self.quote_hunter or []:
            if row.is_optimal:
                return row
        return None

    def trend_price(self, trend: str) -> float:
        """Reference price for a trend policy: uptrend, downtrend or middle."""
        if trend == "uptrend":
            return self.uptrend_average_price
        if trend == "downtrend":
            return self.downtrend_average_price
        return self.middle_average_price


def aggregate_by_price(levels: Iterable[BookLevel]) -> List[BookLevel]:
    """Merge levels sharing the same price, keeping first-seen order."""
    merged: Dict[float, float] = {}
    for level in levels:
        merged[level.price] = merged.get(level.price, 0.0) + level.amount
    return [BookLevel(price, amount) for price, amount in merged.items()]


def _first(values: Sequence[float], limit: int) -> List[float]:
    return list(values[:limit])


def array_average(values: Sequence[float], limit: int = PRICE_INTERVAL_LEVELS) -> Optional[float]:
    values = _first(values, limit)
    if not values:
        return None
    return sum(values) / len(values)


def array_rms(values: Sequence[float], limit: int = PRICE_INTERVAL_LEVELS) -> Optional[float]:
    values = _first(values, limit)
    if not values:
        return None
    return math.sqrt(sum(v * v for v in values) / len(values))


def array_median(values: Sequence[float], limit: int = PRICE_INTERVAL_LEVELS) -> Optional[float]:
    values = sorted(_first(values, limit))
    if not values:
        return None
    low = (len(values) - 1) // 2
    high = len(values) // 2
    return (values[low] + values[high]) / 2


class OrderBookMetrics:
    """
    Analytics over an order-book snapshot.

    Usage:
        metrics = OrderBookMetrics(rng=random.Random(7))
        info = metrics.compute(snapshot, custom_spread_percent=1.5)
        if info is None:
            return  # no bids or no asks, skip the cycle
    """

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        config: Optional[SmartPriceConfig] = None,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self.rng = rng or random.Random()
        self.config = config or SmartPriceConfig()
        self._log_event = log_event or self._default_log

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(json.dumps({"event": event, **kwargs}))

    def compute(
        self,
        book: Optional[OrderBookSnapshot],
        custom_spread_percent: Optional[float] = None,
        target_price: Optional[float] = None,
        placed_amount: Optional[float] = None,
        open_orders: Optional[Sequence[Any]] = None,
    ) -> Optional[LiquidityMetrics]:
        """
        Compute liquidity metrics, or None when the book has no bids or no asks.

        Args:
            book: Order book snapshot (read-only)
            custom_spread_percent: Width of the custom liquidity band, ±% of average price
            target_price: Price to estimate the volume needed to move the top of book to.
                Also the lower bound of the quote-hunter table.
            placed_amount: Amount already placed; reports how many levels it covers
            open_orders: Caller's own open orders (records with side, price,
                base_amount_left); enables the quote-hunter table
        """
        if book is None or not book.bids or not book.asks:
            return None

        highest_bid = book.bids[0].price
        lowest_ask = book.asks[0].price
        spread = lowest_ask - highest_bid
        average_price = (lowest_ask + highest_bid) / 2
        if average_price <= 0:
            return None
        spread_percent = spread / average_price * 100

        downtrend = highest_bid + self.rng.uniform(0, AVERAGE_SPREAD_DEVIATION) * spread
        if downtrend >= lowest_ask:
            downtrend = highest_bid
        uptrend = lowest_ask - self.rng.uniform(0, AVERAGE_SPREAD_DEVIATION) * spread
        if uptrend <= highest_bid:
            uptrend = lowest_ask
        middle = average_price - self.rng.uniform(-AVERAGE_SPREAD_DEVIATION, AVERAGE_SPREAD_DEVIATION) * spread
        if middle >= lowest_ask or middle <= highest_bid:
            middle = average_price

        liquidity = self._empty_bands(average_price, custom_spread_percent)

        info = LiquidityMetrics(
            highest_bid=highest_bid,
            lowest_ask=lowest_ask,
            spread=spread,
            spread_percent=spread_percent,
            average_price=average_price,
            downtrend_average_price=downtrend,
            uptrend_average_price=uptrend,
            middle_average_price=middle,
            bids_count=len(book.bids),
            asks_count=len(book.asks),
            highest_bid_amount=sum(b.amount for b in book.bids if b.price == highest_bid),
            lowest_ask_amount=sum(a.amount for a in book.asks if a.price == lowest_ask),
            liquidity=liquidity,
            target_price=target_price,
        )

        if target_price:
            if highest_bid < target_price < lowest_ask:
                info.target_price_type = "inSpread"
            elif target_price <= highest_bid:
                info.target_price_type = "sell"
            else:
                info.target_price_type = "buy"

        info.cumulative_bids = self._cumulative(book.bids)
        info.cumulative_asks = self._cumulative(book.asks)

        for bid in book.bids:
            for band in liquidity.values():
                band.add_bid(bid)
        for ask in book.asks:
            for band in liquidity.values():
                band.add_ask(ask)

        if info.target_price_type == "sell":
            self._target_amounts(info, book.bids, lambda p: p >= target_price, lambda p: p > target_price)
        elif info.target_price_type == "buy":
            self._target_amounts(info, book.asks, lambda p: p <= target_price, lambda p: p < target_price)

        limit = placed_amount or 0.0
        info.placed_bids = self._placed_amount_fit(book.bids, limit)
        info.placed_asks = self._placed_amount_fit(book.asks, limit)

        info.bid_intervals = self._intervals(book.bids)
        info.ask_intervals = self._intervals(book.asks)

        info.smart_bid = self.smart_price(book.bids, OrderSide.BUY, liquidity)
        info.smart_ask = self.smart_price(book.asks, OrderSide.SELL, liquidity)
        info.clean_bid = self._safe_clean_price(book.bids, OrderSide.BUY, liquidity, info.smart_bid)
        info.clean_ask = self._safe_clean_price(book.asks, OrderSide.SELL, liquidity, info.smart_ask)

        if open_orders is not None:
            info.quote_hunter = self.quote_hunter(book.bids, open_orders, highest_bid, target_price)

        return info

    @staticmethod
    def _empty_bands(average_price: float, custom_spread_percent: Optional[float]) -> Dict[str, LiquidityBand]:
        widths = {
            BAND_SPREAD_SUPPORT: SS_MAX_SPREAD_PERCENT,
            BAND_2: 2.0,
            BAND_5: 5.0,
            BAND_10: 10.0,
            BAND_50: 50.0,
            BAND_CUSTOM: custom_spread_percent or 0.0,
            BAND_FULL: 0.0,
        }
        bands = {}
        for key, width in widths.items():
            low = average_price * (1 - width / 100)
            high = average_price * (1 + width / 100)
            bands[key] = LiquidityBand(spread_percent=width, low_price=low, high_price=high, spread=high - low)
        return bands

    @staticmethod
    def _cumulative(levels: Sequence[BookLevel]) -> List[CumulativeLevel]:
        result = []
        amount = quote = 0.0
        for level in levels:
            amount += level.amount
            quote += level.amount * level.price
            result.append(CumulativeLevel(amount, quote))
        return result

    @staticmethod
    def _target_amounts(
        info: LiquidityMetrics,
        levels: Sequence[BookLevel],
        inclusive: Callable[[float], bool],
        exclusive: Callable[[float], bool],
    ) -> None:
        for level in levels:
            if exclusive(level.price):
                info.amount_target_price_excluded += level.amount
                info.amount_target_price_quote_excluded += level.amount * level.price
                info.target_price_orders_count_excluded += 1
                info.target_price_excluded = level.price
            if inclusive(level.price):
                info.amount_target_price += level.amount
                info.amount_target_price_quote += level.amount * level.price
                info.target_price_orders_count += 1

    @staticmethod
    def _placed_amount_fit(levels: Sequence[BookLevel], placed_amount: float) -> PlacedAmountFit:
        fit = PlacedAmountFit()
        for level in levels:
            fit.price = level.price
            if fit.amount + level.amount <= placed_amount:
                fit.count += 1
                fit.amount += level.amount
            else:
                fit.reached = True
                break
        return fit

    @staticmethod
    def _intervals(levels: Sequence[BookLevel]) -> PriceIntervals:
        deltas = []
        previous = None
        for level in levels:
            if previous is not None and previous.price != level.price:
                deltas.append(abs(previous.price - level.price))
            previous = level
        return PriceIntervals(
            average=array_average(deltas),
            rms=array_rms(deltas),
            median=array_median(deltas),
        )

    def smart_price(
        self,
        levels: Sequence[BookLevel],
        side: OrderSide,
        liquidity: Dict[str, LiquidityBand],
    ) -> Optional[float]:
        """
        Depth-aware reference price for one side of the book.

        Walks from the top accumulating volume (base for asks, quote for bids)
        as a share of the 50% band total. The smart price is the previous
        level once the share exceeded base_share and the share-times-growth
        indicator starts to decline, or the current level once the share
        exceeds max_share. Returns None if neither condition is met.
        """
        band = liquidity[BAND_50]
        total = band.amount_asks if side is OrderSide.SELL else band.amount_bids_quote
        if total <= 0:
            return None

        cumulative = 0.0
        share = 0.0
        indicator = 0.0
        for i, level in enumerate(levels):
            volume = level.amount if side is OrderSide.SELL else level.amount * level.price
            share_prev = share
            indicator_prev = indicator
            cumulative_prev = cumulative

            cumulative += volume
            share = cumulative / total
            growth = cumulative / cumulative_prev if cumulative_prev else 0.0
            indicator = share * growth

            if i > 0 and share_prev > self.config.base_share and indicator < indicator_prev:
                return levels[i - 1].price
            if share > self.config.max_share:
                return level.price
        return None

    def clean_price(
        self,
        levels: Sequence[BookLevel],
        side: OrderSide,
        liquidity: Dict[str, LiquidityBand],
        smart_price: Optional[float],
    ) -> float:
        """
        Reference price after skipping suspected cheater orders.

        A level is a cheater while its cumulative share divided by the squared
        relative distance to the smart price stays below clean_koef. The clean
        price then advances to the next level, but never past the smart price.

        Raises:
            InvalidInput: smart_price is not a positive number
        """
        if not is_positive_number(smart_price):
            raise InvalidInput(f"unexpected smart price: {smart_price}")

        band = liquidity[BAND_50]
        total = band.amount_asks if side is OrderSide.SELL else band.amount_bids_quote
        clean = levels[0].price
        cumulative = 0.0

        for i, level in enumerate(levels):
            if side is OrderSide.SELL and level.price > smart_price:
                break
            if side is OrderSide.BUY and level.price < smart_price:
                break

            volume = level.amount if side is OrderSide.SELL else level.amount * level.price
            distance = numbers_difference_percent(level.price, smart_price) / 100
            distance_sq = distance * distance
            cumulative += volume
            share = cumulative / total if total else math.inf
            ratio = share / distance_sq if distance_sq else math.inf

            if ratio < self.config.clean_koef and i + 1 < len(levels):
                clean = levels[i + 1].price
        return clean

    def _safe_clean_price(
        self,
        levels: Sequence[BookLevel],
        side: OrderSide,
        liquidity: Dict[str, LiquidityBand],
        smart_price: Optional[float],
    ) -> Optional[float]:
        try:
            return self.clean_price(levels, side, liquidity, smart_price)
        except InvalidInput as exc:
            self._log_event("clean_price_skipped", side=side.value, reason=str(exc))
            return None

    def quote_hunter(
        self,
        bids: Sequence[BookLevel],
        open_orders: Sequence[Any],
        highest_bid: float,
        lower_bound: Optional[float] = None,
    ) -> Optional[List[QuoteHunterLevel]]:
        """
        Rank third-party bid levels by how attractive they are to dump into.

        Own buy orders are subtracted from the merged book first. For each
        remaining level at or above lower_bound the taker koef is the
        cumulative quote (the level's own quote at index 1) divided by the
        squared percent drop from the highest bid. The maximum is optimal.
        """
        third_party = {level.price: level.amount for level in aggregate_by_price(bids)}

        own_left: Dict[float, float] = {}
        for order in open_orders:
            if order.side != OrderSide.BUY:
                continue
            left = order.base_amount_left if order.base_amount_left is not None else order.base_amount
            own_left[order.price] = own_left.get(order.price, 0.0) + left

        for price, left in own_left.items():
            if price in third_party:
                third_party[price] -= left
            elif left > 0:
                self._log_event("own_order_not_in_book", side="buy", price=price, amount_left=left)

        levels = [BookLevel(p, a) for p, a in third_party.items() if a > 0]
        if len(levels) <= QUOTE_HUNTER_MIN_LEVELS:
            return None

        table: List[QuoteHunterLevel] = []
        optimal: Optional[QuoteHunterLevel] = None
        amount_acc = quote_acc = 0.0
        for index, level in enumerate(levels):
            if lower_bound is not None and level.price < lower_bound:
                break
            quote = level.amount * level.price
            amount_acc += level.amount
            quote_acc += quote
            dump_price = levels[index + 1].price if index == 0 else level.price
            dump_percent = numbers_difference_percent_direct(highest_bid, dump_price)
            dump_sq = dump_percent ** 2
            taker_koef = (quote if index == 1 else quote_acc) / dump_sq if dump_sq else math.inf
            row = QuoteHunterLevel(
                index=index,
                price=level.price,
                amount=level.amount,
                amount_acc=amount_acc,
                quote=quote,
                quote_acc=quote_acc,
                dump_percent=dump_percent,
                taker_koef=taker_koef,
            )
            table.append(row)
            if optimal is None or taker_koef > optimal.taker_koef:
                optimal = row
        if optimal is not None:
            optimal.is_optimal = True
        return table
