"""
CachedExchange: exchange adapter wrapper owning short-lived read caches.

Several strategies poll the same order book, open orders and balances
within a few seconds of each other. Each resource has its own lazily
filled cache slot guarded by an asyncio.Lock, so concurrent readers share
one in-flight request instead of each hitting the exchange. Placements and
cancellations invalidate the slots they can affect.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, TypeVar

from mmbot.core.models import (
    Balance,
    ExchangeOrder,
    OrderBookSnapshot,
    OrderSide,
    PlaceOrderResult,
)
from mmbot.core.utils import now_ms
from mmbot.exchange.interfaces import ExchangeAdapter

log = logging.getLogger("mmbot")

T = TypeVar("T")


@dataclass
class CacheConfig:
    order_book_ttl_ms: int = 1000
    open_orders_ttl_ms: int = 1000
    balances_ttl_ms: int = 2000


class CachedValue(Generic[T]):
    """
    One cache slot: value, timestamp and the lock serializing refreshes.

    A failed fetch (None) is never cached.
    """
    __slots__ = ("_value", "_timestamp_ms", "_ttl_ms", "_lock")

    def __init__(self, ttl_ms: int) -> None:
        self._value: Optional[T] = None
        self._timestamp_ms: int = 0
        self._ttl_ms = ttl_ms
        self._lock = asyncio.Lock()

    def is_fresh(self) -> bool:
        return self._value is not None and now_ms() - self._timestamp_ms < self._ttl_ms

    def invalidate(self) -> None:
        self._value = None
        self._timestamp_ms = 0

    async def get(self, fetch: Callable[[], Awaitable[Optional[T]]]) -> Optional[T]:
        if self.is_fresh():
            return self._value
        async with self._lock:
            # Another waiter may have refreshed while we were queued
            if self.is_fresh():
                return self._value
            value = await fetch()
            if value is not None:
                self._value = value
                self._timestamp_ms = now_ms()
            return value


class CachedExchange:
    """
    ExchangeAdapter that caches reads of the wrapped adapter.

    Usage:
        exchange = CachedExchange(vendor_adapter)
        book = await exchange.get_order_book("ADM/USDT")
    """

    def __init__(
        self,
        adapter: ExchangeAdapter,
        config: Optional[CacheConfig] = None,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self.adapter = adapter
        self.config = config or CacheConfig()
        self._order_books: Dict[str, CachedValue[OrderBookSnapshot]] = {}
        self._open_orders: Dict[str, CachedValue[List[ExchangeOrder]]] = {}
        self._balances: Optional[CachedValue[List[Balance]]] = None
        self._log_event = log_event or self._default_log

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.debug(json.dumps({"event": event, **kwargs}))

    def _book_slot(self, pair: str) -> CachedValue[OrderBookSnapshot]:
        slot = self._order_books.get(pair)
        if slot is None:
            slot = self._order_books[pair] = CachedValue(self.config.order_book_ttl_ms)
        return slot

    def _orders_slot(self, pair: str) -> CachedValue[List[ExchangeOrder]]:
        slot = self._open_orders.get(pair)
        if slot is None:
            slot = self._open_orders[pair] = CachedValue(self.config.open_orders_ttl_ms)
        return slot

    def _balances_slot(self) -> CachedValue[List[Balance]]:
        if self._balances is None:
            self._balances = CachedValue(self.config.balances_ttl_ms)
        return self._balances

    async def get_order_book(self, pair: str) -> Optional[OrderBookSnapshot]:
        return await self._book_slot(pair).get(lambda: self.adapter.get_order_book(pair))

    async def get_open_orders(self, pair: str) -> Optional[List[ExchangeOrder]]:
        return await self._orders_slot(pair).get(lambda: self.adapter.get_open_orders(pair))

    async def get_balances(self) -> Optional[List[Balance]]:
        return await self._balances_slot().get(self.adapter.get_balances)

    def invalidate(self, pair: str) -> None:
        self._book_slot(pair).invalidate()
        self._orders_slot(pair).invalidate()
        self._balances_slot().invalidate()

    async def place_order(
        self,
        side: OrderSide,
        pair: str,
        price: Optional[float],
        base_amount: Optional[float],
        is_limit: bool = True,
        quote_amount: Optional[float] = None,
    ) -> PlaceOrderResult:
        try:
            return await self.adapter.place_order(side, pair, price, base_amount, is_limit, quote_amount)
        finally:
            self.invalidate(pair)
            self._log_event("cache_invalidated", pair=pair, reason="place_order")

    async def cancel_order(self, order_id: str, side: OrderSide, pair: str) -> Optional[bool]:
        try:
            return await self.adapter.cancel_order(order_id, side, pair)
        finally:
            self.invalidate(pair)
            self._log_event("cache_invalidated", pair=pair, reason="cancel_order")
