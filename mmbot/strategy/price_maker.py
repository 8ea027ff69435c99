"""
PriceMaker: trades the pair against itself to move and mark the price.

Two execution modes:
- in spread: a cross-side order is placed first, then the requested side
  at the same price inside the spread, so both legs match each other
- in order book: one order takes existing liquidity at the best price,
  sized to a fraction of the available opposite side

The policy picks the mode: "spread" always trades in spread, "orderbook"
always in the book, "optimal" mostly in spread, less often when the
spread is wide or the liquidity planner is running.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, List, Optional

from mmbot.analytics.orderbook_metrics import AVERAGE_SPREAD_DEVIATION, LiquidityMetrics
from mmbot.core.models import OrderPurpose, OrderRecord, OrderSide
from mmbot.core.utils import is_positive_number, random_value
from mmbot.execution.balance_check import is_enough_coins
from mmbot.strategy.base import PairStrategy, StrategyDeps

if TYPE_CHECKING:
    from mmbot.strategy.liquidity_planner import LiquidityPlanner

# Share of the available opposite-side liquidity one order may take
BOOK_SHARE_WITH_LIQUIDITY = (0.6, 0.8)
BOOK_SHARE_WITHOUT_LIQUIDITY = (0.2, 0.5)
# Max move of the top of book by one order book trade, %
BOOK_MAX_PRICE_CHANGE_PERCENT = 0.15
IN_SPREAD_CHANCE_WITH_LIQUIDITY = 0.2
# (spread% upper bound, in-spread chance) for the optimal policy
IN_SPREAD_CHANCES = ((2.0, 0.9), (5.0, 0.95), (10.0, 0.99))
IN_SPREAD_CHANCE_WIDE = 0.999
CAREFUL_SPREAD_PERCENT = 1.0
MIN_SPREAD_STEPS = 2

ALERT_KEY_REFUSED = "pricemaker_refused"
ALERT_KEY_BALANCE = "pricemaker_balance"
ALERT_KEY_UNWIND = "pricemaker_unwind"


class Action(str, Enum):
    IN_SPREAD = "inSpread"
    IN_ORDER_BOOK = "inOrderBook"
    REFUSE = "refuse"


@dataclass
class Decision:
    action: Action
    bid: float = 0.0
    ask: float = 0.0
    message: str = ""


class PriceMaker(PairStrategy):
    """
    Usage:
        maker = PriceMaker(deps, liquidity_planner=planner)
        await maker.run_iteration()
    """

    name = "pricemaker"
    purpose = OrderPurpose.PRICEMAKER

    def __init__(
        self,
        deps: StrategyDeps,
        liquidity_planner: Optional["LiquidityPlanner"] = None,
        sleep: Callable[[float], "asyncio.Future"] = asyncio.sleep,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        super().__init__(deps, log_event)
        self.liquidity_planner = liquidity_planner
        self._sleep = sleep

    def is_enabled(self) -> bool:
        return bool(self.params.is_active)

    def next_interval_ms(self) -> int:
        return int(random_value(self.rng, self.params.min_interval_ms, self.params.max_interval_ms, is_integer=True))

    async def run_iteration(self) -> None:
        self.params.require("min_amount", "max_amount")

        side = OrderSide.BUY if self.rng.random() < self.params.buy_percent else OrderSide.SELL
        amount = random_value(self.rng, self.params.min_amount, self.params.max_amount)

        book = await self.exchange.get_order_book(self.pair)
        info = self.analytics.compute(book, custom_spread_percent=self.params.liquidity_spread_percent)
        if info is None:
            self._log_event("pricemaker_no_book", pair=self.pair, level=logging.WARNING)
            return

        decision = self.decide(side, info)
        if decision.action is Action.REFUSE:
            await self.alerts.notify(ALERT_KEY_REFUSED, f"Price maker: {decision.message}")
            return

        if decision.action is Action.IN_SPREAD:
            await self.execute_in_spread(side, amount, decision)
        else:
            await self.execute_in_order_book(side, amount, info)

    # ─────────────────────────────────────────────────────────────────────
    # Decision
    # ─────────────────────────────────────────────────────────────────────

    def decide(self, side: OrderSide, info: LiquidityMetrics) -> Decision:
        """Pick the execution mode and the tradable bid/ask for this cycle."""
        bid, ask = info.highest_bid, info.lowest_ask
        policy = self.params.policy
        pair = self.pair

        w = self.watcher
        if w is not None and w.is_active:
            if not w.is_actual:
                return Decision(Action.REFUSE, bid, ask, f"price watcher range for {pair} is not actual, {w.range_string()}")
            pw_low, pw_high = w.low_price, w.high_price
            if side is OrderSide.BUY:
                if bid > pw_high:
                    return Decision(Action.REFUSE, bid, ask, f"refusing to buy {pair} higher than {pw_high}, highest bid is {bid}, {w.range_string()}")
                if ask > pw_high:
                    if policy == "orderbook":
                        return Decision(Action.REFUSE, bid, ask, f"lowest ask {ask} is over the watcher range and the orderbook policy denies trading in spread, {w.range_string()}")
                    ask = pw_high
                    policy = "spread"
            else:
                if ask < pw_low:
                    return Decision(Action.REFUSE, bid, ask, f"refusing to sell {pair} lower than {pw_low}, lowest ask is {ask}, {w.range_string()}")
                if bid < pw_low:
                    if policy == "orderbook":
                        return Decision(Action.REFUSE, bid, ask, f"highest bid {bid} is under the watcher range and the orderbook policy denies trading in spread, {w.range_string()}")
                    bid = pw_low
                    policy = "spread"

        spread = ask - bid
        no_spread = round(spread / self.price_precision) < MIN_SPREAD_STEPS
        liquidity_active = bool(self.params.is_liquidity_active)

        if no_spread:
            if policy == "orderbook" or (policy == "optimal" and liquidity_active):
                return Decision(Action.IN_ORDER_BOOK, info.highest_bid, info.lowest_ask)
            return Decision(
                Action.REFUSE,
                bid,
                ask,
                f"no spread on {pair} (bid {bid}, ask {ask}) and the {policy} policy denies trading in the order book",
            )

        if policy == "spread":
            return Decision(Action.IN_SPREAD, bid, ask)
        if policy == "optimal":
            if liquidity_active:
                chance = IN_SPREAD_CHANCE_WITH_LIQUIDITY
            else:
                chance = IN_SPREAD_CHANCE_WIDE
                for bound, value in IN_SPREAD_CHANCES:
                    if info.spread_percent < bound:
                        chance = value
                        break
            if self.rng.random() < chance:
                return Decision(Action.IN_SPREAD, bid, ask)
        return Decision(Action.IN_ORDER_BOOK, info.highest_bid, info.lowest_ask)

    # ─────────────────────────────────────────────────────────────────────
    # In spread
    # ─────────────────────────────────────────────────────────────────────

    def in_spread_price(self, bid: float, ask: float) -> float:
        precision = self.price_precision
        low, high = bid, ask
        average = (bid + ask) / 2
        if self.params.is_careful and (ask - bid) / average * 100 > CAREFUL_SPREAD_PERCENT:
            deviation = (ask - bid) * AVERAGE_SPREAD_DEVIATION
            low, high = average - deviation, average + deviation
        price = random_value(self.rng, low, high)
        if price >= ask - precision:
            price = ask - precision
        if price <= bid + precision:
            price = bid + precision
        return price

    async def execute_in_spread(self, side: OrderSide, amount: float, decision: Decision) -> bool:
        """Place the cross leg, then the requested leg at the same price. Returns True when both were placed."""
        price = self.in_spread_price(decision.bid, decision.ask)
        cross_side = side.opposite

        for leg_side in (cross_side, side):
            if not await self._has_balance(leg_side, amount, price):
                return False

        cross = await self._place_order(cross_side, price, amount)
        if cross is None:
            return False

        requested = await self._place_order(side, price, amount, cross_order_id=cross.id)
        if requested is None:
            await self.collector.clear_orders(self.pair, [OrderPurpose.PRICEMAKER], "unwind")
            await self.alerts.notify(
                ALERT_KEY_UNWIND,
                f"Price maker: placed {cross_side.value} leg {cross.id} on {self.pair} but the {side.value} leg failed, "
                f"open price maker orders were cancelled.",
            )
            return False
        await cross.update(cross_order_id=requested.id, persist=True)

        self._log_event(
            "pricemaker_in_spread",
            pair=self.pair,
            side=side.value,
            price=cross.price,
            amount=cross.base_amount,
            orders=[cross.id, requested.id],
        )
        await self._settle([cross, requested])
        return True

    # ─────────────────────────────────────────────────────────────────────
    # In order book
    # ─────────────────────────────────────────────────────────────────────

    def order_book_amount(self, side: OrderSide, amount: float, info: LiquidityMetrics) -> float:
        """Requested amount limited by the opposite-side liquidity it takes from."""
        liquidity_active = bool(self.params.is_liquidity_active)
        low, high = BOOK_SHARE_WITH_LIQUIDITY if liquidity_active else BOOK_SHARE_WITHOUT_LIQUIDITY
        koef = random_value(self.rng, low, high)

        if side is OrderSide.SELL:
            in_band = info.custom.amount_bids
            in_config = (self.params.liquidity_buy_quote_amount or 0.0) / info.highest_bid
            top = info.highest_bid_amount
        else:
            in_band = info.custom.amount_asks
            in_config = self.params.liquidity_sell_amount or 0.0
            top = info.lowest_ask_amount

        limit = min(in_band, in_config) * koef
        if not (liquidity_active and is_positive_number(limit)):
            limit = top * koef
        return min(amount, limit)

    async def execute_in_order_book(self, side: OrderSide, amount: float, info: LiquidityMetrics) -> bool:
        amount = self.order_book_amount(side, amount, info)
        deviation = random_value(self.rng, 0, BOOK_MAX_PRICE_CHANGE_PERCENT) / 100
        if side is OrderSide.SELL:
            start_price = info.highest_bid
            price = start_price * (1 - deviation)
        else:
            start_price = info.lowest_ask
            price = start_price * (1 + deviation)

        if amount <= 0 or not await self._has_balance(side, amount, price):
            return False

        record = await self._place_order(side, price, amount)
        if record is None:
            return False
        self._log_event(
            "pricemaker_in_order_book",
            pair=self.pair,
            side=side.value,
            start_price=start_price,
            price=record.price,
            amount=record.base_amount,
            order_id=record.id,
        )
        await self._settle([record])

        if self.liquidity_planner is not None:
            await self.liquidity_planner.update_after_price_change(side)
        return True

    # ─────────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────────

    async def _has_balance(self, side: OrderSide, amount: float, price: float) -> bool:
        balances = await is_enough_coins(
            self.exchange,
            self.pair,
            side,
            amount,
            amount * price,
            "pricemaker",
            self.settings.coin1_decimals,
            self.settings.coin2_decimals,
        )
        if balances.result:
            return True
        if balances.balances_known:
            await self.alerts.notify(ALERT_KEY_BALANCE, f"{self.pair}: {balances.message}")
        else:
            self._log_event("pricemaker_balances_unknown", pair=self.pair, detail=balances.message, level=logging.WARNING)
        return False

    async def _settle(self, records: List[OrderRecord]) -> None:
        """Wait for the matching engine, then cancel whatever did not fill."""
        await self._sleep(self.settings.api_processing_delay_sec)
        result = await self.reconciler.reconcile(records, self.pair)
        if not result.success:
            return
        for record in result.active:
            await self.collector.close_order(record, "unfilled")
        if result.active:
            self._log_event(
                "pricemaker_leftovers_cancelled",
                pair=self.pair,
                orders=[r.id for r in result.active],
                level=logging.WARNING,
            )
