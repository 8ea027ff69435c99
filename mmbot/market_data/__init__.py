"""
Market data package: the reference price band watcher.
"""

from mmbot.market_data.price_range_watcher import FAILURES_THRESHOLD, PriceRangeWatcher, parse_source

__all__ = ["FAILURES_THRESHOLD", "PriceRangeWatcher", "parse_source"]
