"""
Order-book analytics package.
"""

from mmbot.analytics.orderbook_metrics import (
    AVERAGE_SPREAD_DEVIATION,
    LiquidityBand,
    LiquidityMetrics,
    OrderBookMetrics,
    QuoteHunterLevel,
    SmartPriceConfig,
    aggregate_by_price,
)

__all__ = [
    "AVERAGE_SPREAD_DEVIATION",
    "LiquidityBand",
    "LiquidityMetrics",
    "OrderBookMetrics",
    "QuoteHunterLevel",
    "SmartPriceConfig",
    "aggregate_by_price",
]
