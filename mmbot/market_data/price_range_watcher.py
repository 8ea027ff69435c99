"""
PriceRangeWatcher: publishes a defensive [low, high] reference price band.

Sources:
- "PAIR@Exchange": top of book (policy "strict") or smart bid/ask (policy
  "smart") of a reference pair on another exchange, converted to the local
  quote coin
- a coin symbol: fixed low/high prices expressed in that coin, converted
  to the local quote coin

Every recomputation randomizes the edges slightly so the band cannot be
read off the bot's behaviour. Source failures keep the previous band until
FAILURES_THRESHOLD consecutive failures; then the band is marked stale and
the operator is alerted at most once per throttle interval.
"""

from __future__ import annotations

import logging
import math
import random
from dataclasses import replace
from typing import Callable, Dict, Optional, Tuple

from mmbot.analytics.orderbook_metrics import OrderBookMetrics
from mmbot.config.config import TradeParams
from mmbot.core.errors import ConfigurationError
from mmbot.core.models import PriceBand
from mmbot.core.utils import now_ms, numbers_difference_percent, random_value
from mmbot.exchange.interfaces import ExchangeAdapter, RateConverter
from mmbot.monitoring.alerting import ThrottledNotifier
from mmbot.monitoring.metrics_rich import RichMetrics
from mmbot.strategy.base import TradingStrategy

FAILURES_THRESHOLD = 10
PRICE_CHANGE_WARNING_PERCENT = 20.0
PRICE_CHANGE_NOTIFY_PERCENT = 1.0
INTERVAL_MIN_MS = 10_000
INTERVAL_MAX_MS = 30_000
# Edge jitter applied on top of the configured deviation
EDGE_JITTER = 0.005

ALERT_KEY_STALE = "price_watcher_stale"
ALERT_KEY_LARGE_CHANGE = "price_watcher_large_change"


def parse_source(source: str) -> Tuple[str, Optional[str]]:
    """Split "ADM/USDT@Azbit" into ("ADM/USDT", "azbit"); a coin has no exchange."""
    if "@" in source:
        pair, exchange = source.split("@", 1)
        return pair.upper(), exchange.lower()
    return source.upper(), None


class PriceRangeWatcher(TradingStrategy):
    """
    Single writer of the published PriceBand; strategies read `band`.

    Usage:
        watcher = PriceRangeWatcher("ADM/USDT", params, converter, {"azbit": azbit})
        await watcher.run_iteration()
        if watcher.is_active and watcher.is_actual:
            low, high = watcher.low_price, watcher.high_price
    """

    name = "price_watcher"

    def __init__(
        self,
        pair: str,
        params: TradeParams,
        converter: RateConverter,
        reference_exchanges: Optional[Dict[str, ExchangeAdapter]] = None,
        analytics: Optional[OrderBookMetrics] = None,
        alerts: Optional[ThrottledNotifier] = None,
        rng: Optional[random.Random] = None,
        metrics: Optional[RichMetrics] = None,
        coin2_decimals: int = 8,
        clock: Callable[[], int] = now_ms,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        super().__init__(log_event)
        self.pair = pair
        self.coin2 = pair.split("/")[1]
        self.params = params
        self.converter = converter
        self.reference_exchanges = {k.lower(): v for k, v in (reference_exchanges or {}).items()}
        self.rng = rng or random.Random()
        self.analytics = analytics or OrderBookMetrics(rng=self.rng)
        self.alerts = alerts or ThrottledNotifier()
        self.metrics = metrics
        self.coin2_decimals = coin2_decimals
        self._clock = clock
        self._band = PriceBand()

    # ─────────────────────────────────────────────────────────────────────
    # Published state
    # ─────────────────────────────────────────────────────────────────────

    @property
    def band(self) -> PriceBand:
        return replace(self._band)

    @property
    def is_active(self) -> bool:
        return bool(self.params.is_price_watcher_active)

    @property
    def is_actual(self) -> bool:
        return self._band.is_actual

    @property
    def low_price(self) -> float:
        return self._band.low

    @property
    def high_price(self) -> float:
        return self._band.high

    @property
    def failures(self) -> int:
        return self._band.failures

    def set_is_price_actual(self, is_actual: bool, reason: str = "manual") -> None:
        """Operator override of the freshness flag."""
        self._band.is_actual = is_actual
        self._log_event("price_band_actual_set", pair=self.pair, is_actual=is_actual, reason=reason)
        self._publish_metrics()

    def range_string(self) -> str:
        if not self._band.low and not self._band.high:
            return "price range is not set"
        dec = self.coin2_decimals
        state = "actual" if self._band.is_actual else "stale"
        return f"{self._band.low:.{dec}f}-{self._band.high:.{dec}f} {self.coin2} ({state}, source {self._band.source})"

    # ─────────────────────────────────────────────────────────────────────
    # TradingStrategy
    # ─────────────────────────────────────────────────────────────────────

    def is_enabled(self) -> bool:
        return bool(self.params.is_active and self.params.is_price_watcher_active)

    def next_interval_ms(self) -> int:
        return int(random_value(self.rng, INTERVAL_MIN_MS, INTERVAL_MAX_MS, is_integer=True))

    async def run_iteration(self) -> None:
        source = self.params.pw_source
        if not source:
            raise ConfigurationError("Price watcher source (pw_source) is not set")

        pair, exchange = parse_source(source)
        try:
            if exchange is not None:
                edges = await self._edges_from_pair(pair, exchange)
            else:
                edges = self._edges_from_coin(pair)
        except Exception as exc:
            self._log_event(
                "price_source_failed",
                pair=self.pair,
                source=source,
                reason=f"{type(exc).__name__}: {exc}",
                level=logging.WARNING,
            )
            edges = None

        if edges is None:
            await self._record_failure(source)
            return

        low, high = edges
        await self._apply(low, high, source)

    # ─────────────────────────────────────────────────────────────────────
    # Sources
    # ─────────────────────────────────────────────────────────────────────

    async def _edges_from_pair(self, pair: str, exchange_name: str) -> Optional[Tuple[float, float]]:
        adapter = self.reference_exchanges.get(exchange_name)
        if adapter is None:
            self._log_event("price_source_failed", pair=self.pair, source=pair, reason=f"no adapter for {exchange_name}", level=logging.WARNING)
            return None

        book = await adapter.get_order_book(pair)
        info = self.analytics.compute(book)
        if info is None:
            self._log_event("price_source_failed", pair=self.pair, source=pair, reason="no order book metrics", level=logging.WARNING)
            return None

        if self.params.pw_source_policy == "strict":
            low, high = info.highest_bid, info.lowest_ask
        else:
            low, high = info.smart_bid, info.smart_ask
        if low is None or high is None:
            self._log_event("price_source_failed", pair=self.pair, source=pair, reason="no smart prices", level=logging.WARNING)
            return None

        source_quote = pair.split("/")[1]
        rate = 1.0
        if source_quote != self.coin2:
            rate = self.converter.convert(source_quote, self.coin2, 1).rate
        if not _is_valid_price(rate):
            self._log_event("price_source_failed", pair=self.pair, source=pair, reason=f"no rate {source_quote}/{self.coin2}", level=logging.WARNING)
            return None

        low, high = low * rate, high * rate
        deviation = self.params.pw_deviation_percent / 100
        randomized_low = low * self.rng.uniform(1 - deviation, 1) * self.rng.uniform(1, 1 + EDGE_JITTER)
        randomized_high = high * self.rng.uniform(1, 1 + deviation) * self.rng.uniform(1 - EDGE_JITTER, 1)
        if randomized_low >= randomized_high:
            return low, high
        return randomized_low, randomized_high

    def _edges_from_coin(self, coin: str) -> Optional[Tuple[float, float]]:
        self.params.require("pw_low_price", "pw_high_price")
        low = self.converter.convert(coin, self.coin2, self.params.pw_low_price).out_amount
        high = self.converter.convert(coin, self.coin2, self.params.pw_high_price).out_amount
        if not _is_valid_price(low) or not _is_valid_price(high):
            self._log_event("price_source_failed", pair=self.pair, source=coin, reason=f"no rate {coin}/{self.coin2}", level=logging.WARNING)
            return None

        randomized_low = low * self.rng.uniform(1, 1 + EDGE_JITTER)
        randomized_high = high * self.rng.uniform(1 - EDGE_JITTER, 1)
        if randomized_low >= randomized_high:
            return low, high
        return randomized_low, randomized_high

    # ─────────────────────────────────────────────────────────────────────
    # Band transitions
    # ─────────────────────────────────────────────────────────────────────

    async def _apply(self, low: float, high: float, source: str) -> None:
        previous = self._band
        was_stale = previous.failures >= FAILURES_THRESHOLD

        delta = None
        if previous.low > 0 and previous.high > 0:
            delta = max(
                numbers_difference_percent(low, previous.low),
                numbers_difference_percent(high, previous.high),
            )

        self._band = PriceBand(
            low=low,
            high=high,
            is_actual=True,
            source_timestamp_ms=self._clock(),
            source=source,
            failures=0,
            delta_percent=delta,
        )
        self._publish_metrics()

        if was_stale:
            # the stale alert keeps its throttle window across recoveries
            self._log_event("price_source_recovered", pair=self.pair, band=self.range_string())

        if delta is not None and delta > PRICE_CHANGE_WARNING_PERCENT:
            await self.alerts.notify(
                ALERT_KEY_LARGE_CHANGE,
                f"Price watcher: {self.pair} reference range changed by {delta:.2f}% "
                f"from {previous.low}-{previous.high} to {self.range_string()}. Check the source {source}.",
            )
        elif delta is None or delta > PRICE_CHANGE_NOTIFY_PERCENT:
            self._log_event("price_band_updated", pair=self.pair, low=low, high=high, delta_percent=delta, source=source)
        else:
            self._log_event("price_band_refreshed", pair=self.pair, low=low, high=high, delta_percent=delta, level=logging.DEBUG)

    async def _record_failure(self, source: str) -> None:
        self._band.failures += 1
        failures = self._band.failures

        if failures >= FAILURES_THRESHOLD:
            self._band.is_actual = False
            self._publish_metrics()
            await self.alerts.notify(
                ALERT_KEY_STALE,
                f"Price watcher: unable to get a price range from {source} {failures} times in a row. "
                f"The range is no longer actual; strategies that rely on it are paused.",
            )
            return

        self._publish_metrics()
        self._log_event(
            "price_source_failed_keep_band",
            pair=self.pair,
            source=source,
            failures=failures,
            band=self.range_string(),
            level=logging.WARNING,
        )

    def _publish_metrics(self) -> None:
        if self.metrics is not None:
            b = self._band
            self.metrics.set_price_band(self.pair, b.low, b.high, b.is_actual, b.failures)


def _is_valid_price(value: Optional[float]) -> bool:
    return value is not None and math.isfinite(value) and value > 0
