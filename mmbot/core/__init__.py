"""
Core package: domain models, error types and math helpers.
"""

from mmbot.core.errors import ConfigurationError, InvalidInput
from mmbot.core.models import (
    Balance,
    BookLevel,
    ConversionResult,
    ExchangeOrder,
    ExchangeOrderStatus,
    OrderBookSnapshot,
    OrderPurpose,
    OrderRecord,
    OrderSide,
    OrderState,
    PlaceOrderResult,
    PriceBand,
    TERMINAL_STATES,
)
from mmbot.core.utils import (
    calculate_order_stats,
    calculate_twap,
    disbalance_percent,
    fix_disbalance,
    now_ms,
    numbers_difference_percent,
    numbers_difference_percent_direct,
    random_value,
)

__all__ = [
    "ConfigurationError",
    "InvalidInput",
    "Balance",
    "BookLevel",
    "ConversionResult",
    "ExchangeOrder",
    "ExchangeOrderStatus",
    "OrderBookSnapshot",
    "OrderPurpose",
    "OrderRecord",
    "OrderSide",
    "OrderState",
    "PlaceOrderResult",
    "PriceBand",
    "TERMINAL_STATES",
    "calculate_order_stats",
    "calculate_twap",
    "disbalance_percent",
    "fix_disbalance",
    "now_ms",
    "numbers_difference_percent",
    "numbers_difference_percent_direct",
    "random_value",
]
