"""
Balance pre-check before placing an order.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from mmbot.core.models import Balance, OrderSide
from mmbot.exchange.interfaces import ExchangeAdapter


@dataclass
class BalanceCheck:
    """
    Outcome of a balance check.

    balances_known is False when the exchange did not return balances;
    that is a transient failure, not an insufficient balance.
    """
    result: bool
    message: str = ""
    balances_known: bool = True


def _free(balances: List[Balance], code: str) -> float:
    for b in balances:
        if b.code.upper() == code.upper():
            return b.free
    return 0.0


async def is_enough_coins(
    exchange: ExchangeAdapter,
    pair: str,
    side: OrderSide,
    base_amount: float,
    quote_amount: float,
    purpose: str,
    coin1_decimals: int = 8,
    coin2_decimals: int = 8,
) -> BalanceCheck:
    """Sell orders need free base coin, buy orders need free quote coin."""
    coin1, coin2 = pair.split("/")
    balances: Optional[List[Balance]] = await exchange.get_balances()
    if balances is None:
        return BalanceCheck(
            result=False,
            message=f"Unable to receive balances for placing {purpose}-order on {pair}.",
            balances_known=False,
        )

    if side == OrderSide.BUY:
        free = _free(balances, coin2)
        if free < quote_amount:
            return BalanceCheck(
                result=False,
                message=(
                    f"Not enough {coin2} balance to place buy {purpose}-order for "
                    f"{quote_amount:.{coin2_decimals}f} {coin2} on {pair}. Free: {free} {coin2}."
                ),
            )
    else:
        free = _free(balances, coin1)
        if free < base_amount:
            return BalanceCheck(
                result=False,
                message=(
                    f"Not enough {coin1} balance to place {base_amount:.{coin1_decimals}f} {coin1} "
                    f"sell {purpose}-order on {pair}. Free: {free} {coin1}."
                ),
            )
    return BalanceCheck(result=True)
