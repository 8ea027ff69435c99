"""
DepthBuilder: keeps a configured count of short-lived orders spread over
the visible order book.
"""

from __future__ import annotations

import logging
import math
from typing import List, Optional

from mmbot.analytics.orderbook_metrics import aggregate_by_price
from mmbot.core.models import BookLevel, OrderPurpose, OrderRecord, OrderSide
from mmbot.core.utils import random_value
from mmbot.execution.balance_check import is_enough_coins
from mmbot.strategy.base import PairStrategy

INTERVAL_MIN_MS = 2000
INTERVAL_MAX_MS = 3000
LIFETIME_MIN_MS = 1000
LIFETIME_KOEF_MS = 500
LIFETIME_MAX_KOEF_MS = 1500
# How far past the watcher edge a clamped price may land
BAND_OVERSHOOT = 0.21

ALERT_KEY_BALANCE = "depth_balance"


class DepthBuilder(PairStrategy):
    """
    Usage:
        builder = DepthBuilder(deps)
        await builder.run_iteration()  # places at most one order
    """

    name = "depth"
    purpose = OrderPurpose.DEPTH

    def is_enabled(self) -> bool:
        return bool(self.params.is_active and self.params.is_orderbook_active)

    def next_interval_ms(self) -> int:
        return int(random_value(self.rng, INTERVAL_MIN_MS, INTERVAL_MAX_MS, is_integer=True))

    async def run_iteration(self) -> None:
        self.params.require("min_amount", "max_amount")

        records = await self._active_records()
        records = await self._close_expired(records)
        records = await self._close_out_of_band(records)

        target = self.params.orderbook_orders_count
        if len(records) >= target:
            self._log_event("depth_orders_full", pair=self.pair, active=len(records), target=target, level=logging.DEBUG)
            return

        record = await self.place_depth_order(len(records))
        self._log_event(
            "depth_iteration_done",
            pair=self.pair,
            active=len(records) + (1 if record is not None else 0),
            target=target,
            placed=record is not None,
        )

    async def _close_out_of_band(self, records: List[OrderRecord]) -> List[OrderRecord]:
        band = self.watcher_band()
        if band is None:
            return records
        low, high = band
        kept = []
        for record in records:
            out = record.price < low if record.side is OrderSide.SELL else record.price > high
            if out and await self.collector.close_order(record, "outOfRange"):
                continue
            kept.append(record)
        return kept

    async def place_depth_order(self, active_count: int) -> Optional[OrderRecord]:
        """Place one order at a random depth of the book. Returns None if nothing was placed."""
        side = OrderSide.BUY if self.rng.random() < self.params.buy_percent else OrderSide.SELL

        w = self.watcher
        if w is not None and w.is_active and not w.is_actual:
            self._log_event(
                "depth_skipped_band_not_actual",
                pair=self.pair,
                side=side.value,
                band=w.range_string(),
            )
            return None

        book = await self.exchange.get_order_book(self.pair)
        if book is None or not book.bids or not book.asks:
            self._log_event("depth_no_book", pair=self.pair, level=logging.WARNING)
            return None

        levels = aggregate_by_price(book.bids if side is OrderSide.BUY else book.asks)
        if len(levels) < 2:
            self._log_event("depth_book_too_thin", pair=self.pair, side=side.value, levels=len(levels), level=logging.WARNING)
            return None

        position = self.set_position(len(levels))
        price = self.set_price(side, position, levels)
        amount = self.set_amount()
        lifetime = self.set_lifetime(position)

        balances = await is_enough_coins(
            self.exchange,
            self.pair,
            side,
            amount,
            amount * price,
            "depth",
            self.settings.coin1_decimals,
            self.settings.coin2_decimals,
        )
        if not balances.result:
            if balances.balances_known:
                await self.alerts.notify(ALERT_KEY_BALANCE, f"{self.pair}: {balances.message}")
            else:
                self._log_event("depth_balances_unknown", pair=self.pair, detail=balances.message, level=logging.WARNING)
            return None

        record = await self._place_order(side, price, amount, lifetime)
        if record is not None:
            self._log_event("depth_order_position", pair=self.pair, order_id=record.id, position=position, opened=active_count + 1)
        return record

    def set_position(self, levels_count: int) -> int:
        max_position = max(2, min(levels_count, self.params.orderbook_height))
        return int(random_value(self.rng, 2, max_position, is_integer=True))

    def set_price(self, side: OrderSide, position: int, levels: List[BookLevel]) -> float:
        """
        Random price between the levels at position-2 and position-1.

        Bids are descending and asks ascending, so the bounds swap by side.
        The price is pulled into the watcher band when it falls outside.
        """
        position = min(position, len(levels))
        if side is OrderSide.SELL:
            low, high = levels[position - 2].price, levels[position - 1].price
        else:
            low, high = levels[position - 1].price, levels[position - 2].price

        precision = self.price_precision
        if low + precision < high:
            low += precision
        if high - precision > low:
            high -= precision
        price = random_value(self.rng, low, high)

        band = self.watcher_band()
        if band is None:
            return price
        pw_low, pw_high = band
        if side is OrderSide.SELL and price < pw_low:
            corrected = random_value(self.rng, pw_low, pw_low * (1 + BAND_OVERSHOOT))
        elif side is OrderSide.BUY and price > pw_high:
            corrected = random_value(self.rng, pw_high * (1 - BAND_OVERSHOOT), pw_high)
        else:
            return price
        self._log_event(
            "depth_price_corrected",
            pair=self.pair,
            side=side.value,
            price=price,
            corrected=corrected,
            band=self.watcher.range_string(),
        )
        return corrected

    def set_amount(self) -> float:
        low = self.params.min_amount
        high = self.params.max_amount * self.params.orderbook_max_order_percent / 100
        if high <= low:
            high = low * 1.1
        return random_value(self.rng, low, high)

    def set_lifetime(self, position: int) -> int:
        """The closer to the spread, the shorter the life."""
        count = self.params.orderbook_orders_count
        base = random_value(self.rng, LIFETIME_MIN_MS, max(LIFETIME_MIN_MS, count * LIFETIME_KOEF_MS))
        lifetime = base * math.sqrt(position)
        return int(min(max(lifetime, LIFETIME_MIN_MS), max(LIFETIME_MIN_MS, count * LIFETIME_MAX_KOEF_MS)))
