"""
LiquidityPlanner: keeps resting liquidity on both sides of the book.

Per cycle:
- reconcile own liquidity orders
- close expired orders, orders outside the price watcher band and orders
  out of the ±liquidity_spread_percent band (or inside the inner guard)
- place new orders per side until the configured amount is reached, a
  placement fails or the balance runs out

Sell liquidity is measured in the base coin (liquidity_sell_amount), buy
liquidity in the quote coin (liquidity_buy_quote_amount).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from mmbot.analytics.orderbook_metrics import (
    AVERAGE_SPREAD_DEVIATION,
    BAND_SPREAD_SUPPORT,
    SS_MAX_SPREAD_PERCENT,
    LiquidityMetrics,
)
from mmbot.core.models import OrderPurpose, OrderRecord, OrderSide
from mmbot.core.utils import calculate_twap, random_value
from mmbot.execution.balance_check import is_enough_coins
from mmbot.strategy.base import PairStrategy, StrategyDeps

INTERVAL_MIN_MS = 30_000
INTERVAL_MAX_MS = 90_000
LIFETIME_MIN_MS = 7 * 60 * 1000
LIFETIME_MAX_MS = 7 * 60 * 60 * 1000
# Order size is drawn from [target / 7, target / 2]
AMOUNT_MIN_DIVIDER = 7
AMOUNT_MAX_DIVIDER = 2
# Remainders below this share of the target are not worth an order
DUST_SHARE = 0.01
MAX_ORDERS_PER_SIDE = 30
SS_ORDERS_PER_SIDE = 2
IN_SPREAD_POLICIES = {"spread", "optimal"}

SUB_PURPOSE_DEPTH = "depth"
SUB_PURPOSE_SS = "ss"

ALERT_KEY_BALANCE = "liquidity_balance"
ALERT_KEY_PRICE = "liquidity_price"


@dataclass
class LiquidityPrice:
    price: Optional[float]
    corrected: bool = False
    message: str = ""


@dataclass
class SpreadCheck:
    out_of_spread: bool
    message: str = ""


class LiquidityPlanner(PairStrategy):
    """
    Usage:
        planner = LiquidityPlanner(deps)
        await planner.run_iteration()
        await planner.update_after_price_change(OrderSide.SELL)
    """

    name = "liquidity"
    purpose = OrderPurpose.LIQUIDITY

    def __init__(self, deps: StrategyDeps, log_event: Optional[Callable[..., None]] = None) -> None:
        super().__init__(deps, log_event)
        self._trend_override: Optional[str] = None

    def is_enabled(self) -> bool:
        return bool(self.params.is_active and self.params.is_liquidity_active)

    def next_interval_ms(self) -> int:
        return int(random_value(self.rng, INTERVAL_MIN_MS, INTERVAL_MAX_MS, is_integer=True))

    @property
    def trend(self) -> str:
        return self._trend_override or self.params.liquidity_trend

    async def update_after_price_change(self, side: OrderSide) -> bool:
        """
        Rebuild liquidity right after the price maker moved the price.

        A buy pushed the price up, a sell pushed it down; the next prices are
        taken from the matching trend once, then the configured trend applies
        again. Returns False when an iteration is already running.
        """
        if not self.is_enabled() or self.in_progress:
            return False
        self._trend_override = "uptrend" if OrderSide(side) is OrderSide.BUY else "downtrend"
        self._log_event("liquidity_trend_override", pair=self.pair, side=OrderSide(side).value, trend=self._trend_override)
        try:
            return await self.run_exclusive()
        finally:
            self._trend_override = None

    async def run_iteration(self) -> None:
        params = self.params
        params.require("liquidity_spread_percent", "liquidity_sell_amount", "liquidity_buy_quote_amount")
        if params.liquidity_spread_support:
            params.require("min_amount")

        records = await self._active_records()

        book = await self.exchange.get_order_book(self.pair)
        info = self.analytics.compute(book, custom_spread_percent=params.liquidity_spread_percent)
        if info is None:
            self._log_event("liquidity_no_book", pair=self.pair, level=logging.WARNING)
            return

        records = await self._close_unwanted(records, info)

        placed = {
            OrderSide.SELL: sum(r.base_amount_left or 0.0 for r in records if r.side is OrderSide.SELL and r.sub_purpose != SUB_PURPOSE_SS),
            OrderSide.BUY: sum((r.base_amount_left or 0.0) * r.price for r in records if r.side is OrderSide.BUY and r.sub_purpose != SUB_PURPOSE_SS),
        }
        targets = {
            OrderSide.SELL: params.liquidity_sell_amount,
            OrderSide.BUY: params.liquidity_buy_quote_amount,
        }

        new_orders = 0
        if params.liquidity_spread_support:
            for side in (OrderSide.SELL, OrderSide.BUY):
                count = sum(1 for r in records if r.side is side and r.sub_purpose == SUB_PURPOSE_SS)
                new_orders += await self._place_spread_support(side, count, info)

        for side in (OrderSide.SELL, OrderSide.BUY):
            new_orders += await self._fill_side(side, placed[side], targets[side], info)

        await self._log_twap()
        self._log_event(
            "liquidity_iteration_done",
            pair=self.pair,
            active=len(records),
            placed=new_orders,
            trend=self.trend,
            sell_placed=placed[OrderSide.SELL],
            buy_quote_placed=placed[OrderSide.BUY],
        )

    # ─────────────────────────────────────────────────────────────────────
    # Closing
    # ─────────────────────────────────────────────────────────────────────

    async def _close_unwanted(self, records: List[OrderRecord], info: LiquidityMetrics) -> List[OrderRecord]:
        now = self._clock()
        band = self.watcher_band()
        kept = []
        for record in records:
            reason = None
            if record.expires_at is not None and record.expires_at < now:
                reason = "expired"
            elif band is not None and _is_out_of_band(record, band[0], band[1]):
                reason = "outOfRange"
            else:
                check = self.check_spread(record, info)
                if check.out_of_spread:
                    if record.price_corrected:
                        self._log_event(
                            "liquidity_order_kept_corrected",
                            pair=self.pair,
                            order_id=record.id,
                            detail=check.message,
                        )
                    else:
                        reason = "outOfSpread"

            if reason is None or not await self.collector.close_order(record, reason):
                kept.append(record)
        return kept

    def check_spread(self, record: OrderRecord, info: LiquidityMetrics) -> SpreadCheck:
        """Out of the ±spread% band (with roughness), or inside the inner guard for depth orders."""
        is_ss = record.sub_purpose == SUB_PURPOSE_SS
        band = info.liquidity[BAND_SPREAD_SUPPORT] if is_ss else info.custom
        roughness = band.spread * AVERAGE_SPREAD_DEVIATION

        min_price = band.low_price - roughness
        max_price = band.high_price + roughness
        if record.price < min_price or record.price > max_price:
            return SpreadCheck(True, f"price {record.price} out of ±{band.spread_percent}% spread [{min_price}, {max_price}]")

        spread_min = self.params.liquidity_spread_percent_min
        if not is_ss and spread_min:
            inner_low = info.average_price * (1 - spread_min / 100) + roughness
            inner_high = info.average_price * (1 + spread_min / 100) - roughness
            if inner_low < record.price < inner_high:
                return SpreadCheck(True, f"price {record.price} in the ±{spread_min}% inner spread [{inner_low}, {inner_high}]")

        return SpreadCheck(False)

    # ─────────────────────────────────────────────────────────────────────
    # Placing
    # ─────────────────────────────────────────────────────────────────────

    async def _fill_side(self, side: OrderSide, placed: float, target: float, info: LiquidityMetrics) -> int:
        """Place depth orders on one side until the target is covered. Returns orders placed."""
        count = 0
        while count < MAX_ORDERS_PER_SIDE:
            remainder = target - placed
            if remainder <= target * DUST_SHARE:
                break
            size = min(random_value(self.rng, target / AMOUNT_MIN_DIVIDER, target / AMOUNT_MAX_DIVIDER), remainder)
            result = await self._place_liquidity_order(side, size, info, SUB_PURPOSE_DEPTH)
            if result is None:
                break
            placed += result
            count += 1
        return count

    async def _place_spread_support(self, side: OrderSide, existing: int, info: LiquidityMetrics) -> int:
        count = 0
        while existing + count < SS_ORDERS_PER_SIDE:
            amount = random_value(self.rng, self.params.min_amount, self.params.min_amount * 2)
            # ss orders are sized in base coin on both sides
            size = amount if side is OrderSide.SELL else amount * info.average_price
            if await self._place_liquidity_order(side, size, info, SUB_PURPOSE_SS) is None:
                break
            count += 1
        return count

    async def _place_liquidity_order(
        self,
        side: OrderSide,
        size: float,
        info: LiquidityMetrics,
        sub_purpose: str,
    ) -> Optional[float]:
        """
        Place one liquidity order.

        size is in base coin for sells and quote coin for buys. Returns the
        placed size in the same unit, or None to stop placing on this side.
        """
        priced = self.set_price(side, info, sub_purpose)
        if priced.price is None or priced.price <= 0:
            if priced.message:
                await self.alerts.notify(ALERT_KEY_PRICE, f"Liquidity: {priced.message}")
            return None

        price = priced.price
        base_amount = size if side is OrderSide.SELL else size / price
        quote_amount = base_amount * price
        if base_amount <= 0:
            return None
        if priced.message:
            self._log_event("liquidity_price_corrected", pair=self.pair, side=side.value, detail=priced.message)

        balances = await is_enough_coins(
            self.exchange,
            self.pair,
            side,
            base_amount,
            quote_amount,
            "liquidity",
            self.settings.coin1_decimals,
            self.settings.coin2_decimals,
        )
        if not balances.result:
            if balances.balances_known:
                await self.alerts.notify(ALERT_KEY_BALANCE, f"{self.pair}: {balances.message}")
            else:
                self._log_event("liquidity_balances_unknown", pair=self.pair, detail=balances.message, level=logging.WARNING)
            return None

        lifetime = int(random_value(self.rng, LIFETIME_MIN_MS, LIFETIME_MAX_MS, is_integer=True))
        record = await self._place_order(
            side,
            price,
            base_amount,
            lifetime,
            sub_purpose=sub_purpose,
            price_corrected=priced.corrected,
        )
        if record is None:
            return None
        return record.base_amount if side is OrderSide.SELL else record.quote_amount

    def set_price(self, side: OrderSide, info: LiquidityMetrics, sub_purpose: str) -> LiquidityPrice:
        """
        Price a liquidity order around the trend reference price.

        Sells go above the reference, buys below, within the half-width of the
        ±spread% band (between the inner guard and the band edge for depth
        orders, within SS_MAX_SPREAD_PERCENT for ss orders).
        """
        reference_price = info.trend_price(self.trend)
        if sub_purpose == SUB_PURPOSE_SS:
            koef_min, koef_max = 0.0, SS_MAX_SPREAD_PERCENT / 100
        else:
            koef_max = self.params.liquidity_spread_percent / 100
            koef_min = min((self.params.liquidity_spread_percent_min or 0.0) / 100, koef_max)

        precision = self.price_precision
        delta = precision * 3 if self.params.policy in IN_SPREAD_POLICIES else precision
        band = self.watcher_band()
        message = ""
        corrected = False

        if side is OrderSide.SELL:
            price = random_value(self.rng, reference_price * (1 + koef_min), reference_price * (1 + koef_max))
            if band is not None and price < band[0]:
                before = price
                price = random_value(self.rng, band[0], band[0] * (1 + koef_max))
                corrected = True
                message = f"price watcher corrected sell price from {before} to {price}, {self.watcher.range_string()}"
            if price - delta < info.highest_bid:
                price = info.highest_bid + delta
        else:
            price = random_value(self.rng, reference_price * (1 - koef_max), reference_price * (1 - koef_min))
            if band is not None and price > band[1]:
                before = price
                price = random_value(self.rng, band[1] * (1 - koef_max), band[1])
                corrected = True
                message = f"price watcher corrected buy price from {before} to {price}, {self.watcher.range_string()}"
            if price + delta > info.lowest_ask:
                price = info.lowest_ask - delta

        return LiquidityPrice(price=price, corrected=corrected, message=message)

    async def _log_twap(self) -> None:
        # Closed records stay in the store, so this covers everything executed so far
        records = await self.store.find(pair=self.pair, purpose=self.purpose)
        executed = [r for r in records if r.base_amount_filled]
        if not executed:
            return
        sold = calculate_twap(r for r in executed if r.side is OrderSide.SELL)
        bought = calculate_twap(r for r in executed if r.side is OrderSide.BUY)
        self._log_event(
            "liquidity_twap",
            pair=self.pair,
            sold_twap=sold.twap,
            sold_amount=sold.total_amount,
            bought_twap=bought.twap,
            bought_amount=bought.total_amount,
            uncertain=sold.uncertain_orders + bought.uncertain_orders,
        )


def _is_out_of_band(record: OrderRecord, low: float, high: float) -> bool:
    """Sells below the band or buys above it."""
    if record.side is OrderSide.SELL:
        return record.price < low
    return record.price > high
