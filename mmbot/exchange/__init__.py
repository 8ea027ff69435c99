"""
Exchange collaborators: adapter protocol, read cache and rate conversion.
"""

from mmbot.exchange.cached_exchange import CacheConfig, CachedExchange
from mmbot.exchange.interfaces import ExchangeAdapter, Notifier, RateConverter
from mmbot.exchange.rates import RatesService

__all__ = [
    "CacheConfig",
    "CachedExchange",
    "ExchangeAdapter",
    "Notifier",
    "RateConverter",
    "RatesService",
]
