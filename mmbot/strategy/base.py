"""
TradingStrategy: the capability interface every scheduled loop implements.

PairStrategy adds the plumbing shared by the order-placing strategies:
reconciling own records, placing and recording an order, reading the
watcher band.
"""

from __future__ import annotations

import json
import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, List, Optional, Tuple

from mmbot.analytics.orderbook_metrics import OrderBookMetrics
from mmbot.config.config import Settings, TradeParams
from mmbot.core.models import OrderPurpose, OrderRecord, OrderSide
from mmbot.core.utils import get_precision, now_ms, round_to
from mmbot.exchange.interfaces import ExchangeAdapter
from mmbot.execution.order_collector import OrderCollector
from mmbot.execution.order_reconciler import OrderReconciler
from mmbot.monitoring.alerting import ThrottledNotifier
from mmbot.monitoring.metrics_rich import RichMetrics
from mmbot.state.order_store import OrderStore

if TYPE_CHECKING:
    from mmbot.market_data.price_range_watcher import PriceRangeWatcher

log = logging.getLogger("mmbot")


class TradingStrategy(ABC):
    """
    One self-contained unit of periodic work.

    The Scheduler asks is_enabled() before every slot, runs exactly one
    run_iteration() through run_exclusive() when enabled, then sleeps
    next_interval_ms().
    """

    name: str = "strategy"

    def __init__(self, log_event: Optional[Callable[..., None]] = None) -> None:
        self._log_event = log_event or self._default_log
        self._in_progress = False

    def _default_log(self, event: str, **kwargs: Any) -> None:
        level = kwargs.pop("level", logging.INFO)
        log.log(level, json.dumps({"event": event, "strategy": self.name, **kwargs}, default=str))

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    async def run_exclusive(self) -> bool:
        """Run one iteration unless one is already running. Returns False if skipped."""
        if self._in_progress:
            return False
        self._in_progress = True
        try:
            await self.run_iteration()
        finally:
            self._in_progress = False
        return True

    @abstractmethod
    def is_enabled(self) -> bool:
        ...

    @abstractmethod
    async def run_iteration(self) -> None:
        ...

    @abstractmethod
    def next_interval_ms(self) -> int:
        ...


@dataclass
class StrategyDeps:
    """Collaborators shared by the order-placing strategies on one pair."""
    settings: Settings
    params: TradeParams
    exchange: ExchangeAdapter
    store: OrderStore
    reconciler: OrderReconciler
    collector: OrderCollector
    watcher: Optional["PriceRangeWatcher"] = None
    analytics: Optional[OrderBookMetrics] = None
    alerts: ThrottledNotifier = field(default_factory=ThrottledNotifier)
    metrics: Optional[RichMetrics] = None
    rng: random.Random = field(default_factory=random.Random)
    clock: Callable[[], int] = now_ms


class PairStrategy(TradingStrategy):
    """Base for strategies that place and own orders of a single purpose."""

    purpose: OrderPurpose = OrderPurpose.MANUAL

    def __init__(self, deps: StrategyDeps, log_event: Optional[Callable[..., None]] = None) -> None:
        super().__init__(log_event)
        self.deps = deps
        self.settings = deps.settings
        self.params = deps.params
        self.pair = deps.settings.pair
        self.exchange = deps.exchange
        self.store = deps.store
        self.reconciler = deps.reconciler
        self.collector = deps.collector
        self.watcher = deps.watcher
        self.rng = deps.rng
        self.analytics = deps.analytics or OrderBookMetrics(rng=self.rng)
        self.alerts = deps.alerts
        self.metrics = deps.metrics
        self._clock = deps.clock

    @property
    def price_precision(self) -> float:
        return get_precision(self.settings.coin2_decimals)

    def watcher_band(self) -> Optional[Tuple[float, float]]:
        """(low, high) while the watcher is enabled and its band is fresh, else None."""
        w = self.watcher
        if w is None or not w.is_active or not w.is_actual:
            return None
        if w.low_price <= 0 or w.high_price <= 0:
            return None
        return w.low_price, w.high_price

    async def _active_records(self, purpose: Optional[OrderPurpose] = None) -> List[OrderRecord]:
        """Own open records after reconciliation with the exchange."""
        purpose = purpose or self.purpose
        records = await self.store.find(pair=self.pair, purpose=purpose, is_processed=False)
        if not records:
            return []
        result = await self.reconciler.reconcile(records, self.pair)
        if self.metrics is not None:
            self.metrics.set_active(self.pair, purpose.value, len(result.active))
        return result.active

    async def _close_expired(self, records: List[OrderRecord]) -> List[OrderRecord]:
        now = self._clock()
        kept = []
        for record in records:
            if record.expires_at is not None and record.expires_at < now:
                if await self.collector.close_order(record, "expired"):
                    continue
            kept.append(record)
        return kept

    async def _place_order(
        self,
        side: OrderSide,
        price: float,
        base_amount: float,
        lifetime_ms: Optional[int] = None,
        purpose: Optional[OrderPurpose] = None,
        **fields: Any,
    ) -> Optional[OrderRecord]:
        """Place a limit order and record it. Returns None if the exchange gave no id."""
        purpose = purpose or self.purpose
        price = round_to(price, self.settings.coin2_decimals)
        base_amount = round_to(base_amount, self.settings.coin1_decimals)
        quote_amount = round_to(base_amount * price, self.settings.coin2_decimals)

        placed = await self.exchange.place_order(side, self.pair, price, base_amount)
        if placed is None or not placed.ok:
            if self.metrics is not None:
                self.metrics.record_failed(self.pair, purpose.value)
            self._log_event(
                "order_place_failed",
                pair=self.pair,
                purpose=purpose.value,
                side=side.value,
                price=price,
                amount=base_amount,
                message=placed.message if placed is not None else None,
                level=logging.WARNING,
            )
            return None

        now = self._clock()
        record = await self.store.create(
            id=str(placed.order_id),
            pair=self.pair,
            side=side,
            purpose=purpose,
            price=price,
            base_amount=base_amount,
            quote_amount=quote_amount,
            created_at=now,
            expires_at=now + lifetime_ms if lifetime_ms is not None else None,
            **fields,
        )
        if self.metrics is not None:
            self.metrics.record_placed(self.pair, purpose.value, side.value)
        self._log_event(
            "order_placed",
            pair=self.pair,
            order_id=record.id,
            purpose=purpose.value,
            side=side.value,
            price=price,
            amount=base_amount,
            quote=quote_amount,
            lifetime_ms=lifetime_ms,
        )
        return record
