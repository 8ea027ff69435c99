"""
Collaborator interfaces consumed by the decision core.

Adapters report failures by returning None rather than raising; the core
treats None as "try again next cycle".
"""

from __future__ import annotations

from typing import List, Optional, Protocol

from mmbot.core.models import (
    Balance,
    ConversionResult,
    ExchangeOrder,
    OrderBookSnapshot,
    OrderSide,
    PlaceOrderResult,
)


class ExchangeAdapter(Protocol):
    async def get_order_book(self, pair: str) -> Optional[OrderBookSnapshot]:
        ...

    async def get_open_orders(self, pair: str) -> Optional[List[ExchangeOrder]]:
        ...

    async def get_balances(self) -> Optional[List[Balance]]:
        ...

    async def place_order(
        self,
        side: OrderSide,
        pair: str,
        price: Optional[float],
        base_amount: Optional[float],
        is_limit: bool = True,
        quote_amount: Optional[float] = None,
    ) -> PlaceOrderResult:
        ...

    async def cancel_order(self, order_id: str, side: OrderSide, pair: str) -> Optional[bool]:
        """True: cancelled. False: already gone. None: inconclusive, retry later."""
        ...


class RateConverter(Protocol):
    def convert(self, from_coin: str, to_coin: str, amount: float = 1.0) -> ConversionResult:
        """out_amount is NaN when no rate is known."""
        ...


class Notifier(Protocol):
    async def notify(self, message: str, level: str = "warning") -> None:
        ...
