"""
BotFactory: wires settings, collaborators and strategies into one bot.

The graph is built leaves first and has no cycles:
exchange -> store -> reconciler/collector -> watcher -> strategies -> schedulers

Usage:
    from mmbot.bot_factory import create_bot, BotDependencies

    deps = BotDependencies(
        settings=Settings.load(),
        params=TradeParams.from_env(),
        adapter=vendor_adapter,
        reference_exchanges={"azbit": azbit_adapter},
    )
    bot = create_bot(deps)
    await bot.start()
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from mmbot.analytics.orderbook_metrics import OrderBookMetrics, SmartPriceConfig
from mmbot.config.config import Settings, TradeParams
from mmbot.core.utils import random_value
from mmbot.exchange.cached_exchange import CacheConfig, CachedExchange
from mmbot.exchange.interfaces import ExchangeAdapter
from mmbot.exchange.rates import RatesService
from mmbot.execution.order_collector import OrderCollector
from mmbot.execution.order_reconciler import OrderReconciler
from mmbot.market_data.price_range_watcher import PriceRangeWatcher
from mmbot.monitoring.alerting import AlertConfig, AlertManager, ThrottledNotifier
from mmbot.monitoring.metrics_rich import RichMetrics
from mmbot.orchestrator.scheduler import Scheduler
from mmbot.state.order_store import InMemoryOrderStore, OrderStore
from mmbot.strategy.base import StrategyDeps, TradingStrategy
from mmbot.strategy.depth_builder import DepthBuilder
from mmbot.strategy.liquidity_planner import LiquidityPlanner
from mmbot.strategy.price_maker import PriceMaker

log = logging.getLogger("mmbot")

RATES_INTERVAL_MIN_MS = 60_000
RATES_INTERVAL_MAX_MS = 120_000


class RatesRefresher(TradingStrategy):
    """Keeps the rate table of a RatesService fresh."""

    name = "rates"

    def __init__(self, rates: RatesService, rng: Optional[random.Random] = None) -> None:
        super().__init__()
        self.rates = rates
        self.rng = rng or random.Random()

    def is_enabled(self) -> bool:
        return bool(self.rates.url)

    def next_interval_ms(self) -> int:
        return int(random_value(self.rng, RATES_INTERVAL_MIN_MS, RATES_INTERVAL_MAX_MS, is_integer=True))

    async def run_iteration(self) -> None:
        if not await self.rates.update_rates():
            self._log_event("rates_refresh_failed", url=self.rates.url, level=logging.WARNING)


@dataclass
class BotDependencies:
    """Everything needed to build a bot. Optional fields get defaults from settings."""
    settings: Settings
    params: TradeParams
    adapter: ExchangeAdapter
    reference_exchanges: Dict[str, ExchangeAdapter] = field(default_factory=dict)

    # Optional overrides for testing
    store: Optional[OrderStore] = None
    rates: Optional[RatesService] = None
    alert_manager: Optional[AlertManager] = None
    metrics: Optional[RichMetrics] = None
    rng: Optional[random.Random] = None
    cache_config: Optional[CacheConfig] = None
    smart_price_config: Optional[SmartPriceConfig] = None


@dataclass
class Bot:
    settings: Settings
    params: TradeParams
    exchange: CachedExchange
    store: OrderStore
    rates: RatesService
    alert_manager: AlertManager
    alerts: ThrottledNotifier
    metrics: RichMetrics
    watcher: PriceRangeWatcher
    liquidity_planner: LiquidityPlanner
    depth_builder: DepthBuilder
    price_maker: PriceMaker
    rates_refresher: RatesRefresher
    schedulers: List[Scheduler] = field(default_factory=list)
    _tasks: List[asyncio.Task] = field(default_factory=list, repr=False)

    @property
    def strategies(self) -> Dict[str, TradingStrategy]:
        return {s.strategy.name: s.strategy for s in self.schedulers}

    def scheduler(self, name: str) -> Scheduler:
        for s in self.schedulers:
            if s.strategy.name == name:
                return s
        raise KeyError(name)

    async def start(self) -> None:
        """Load persisted records, refresh rates once and start every loop."""
        loader = getattr(self.store, "load", None)
        if loader is not None:
            loaded = await loader()
            log.info(json.dumps({"event": "order_store_loaded", "pair": self.settings.pair, "records": loaded}))
        await self.rates.update_rates()
        self._tasks = [asyncio.create_task(s.run(), name=f"mmbot-{s.strategy.name}") for s in self.schedulers]

    async def wait(self) -> None:
        await asyncio.gather(*self._tasks)

    async def stop(self) -> None:
        for s in self.schedulers:
            s.stop()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        await self.rates.close()
        await self.alert_manager.flush()


def create_bot(deps: BotDependencies) -> Bot:
    """
    Create a fully wired bot.

    Args:
        deps: Settings, trade params, the vendor adapter and optional overrides

    Returns:
        Bot with one scheduler per strategy, the watcher and the rates refresher
    """
    settings = deps.settings
    params = deps.params
    rng = deps.rng or random.Random()
    metrics = deps.metrics or RichMetrics()

    exchange = CachedExchange(deps.adapter, deps.cache_config)
    reference_exchanges = {
        name: CachedExchange(adapter, deps.cache_config) for name, adapter in deps.reference_exchanges.items()
    }
    store = deps.store or InMemoryOrderStore(pair=settings.pair, state_dir=settings.state_dir)
    rates = deps.rates or RatesService(settings.rates_url)

    alert_manager = deps.alert_manager or AlertManager(
        AlertConfig(
            webhook_url=settings.alert_webhook_url,
            webhook_type=settings.alert_webhook_type,
            enabled=settings.alert_enabled,
        ),
        pair=settings.pair,
    )
    alerts = ThrottledNotifier(alert_manager, interval_sec=settings.alert_throttle_sec)
    analytics = OrderBookMetrics(rng=rng, config=deps.smart_price_config)

    reconciler = OrderReconciler(exchange, metrics)
    collector = OrderCollector(exchange, store, metrics)

    watcher = PriceRangeWatcher(
        settings.pair,
        params,
        rates,
        reference_exchanges=reference_exchanges,
        analytics=analytics,
        alerts=alerts,
        rng=rng,
        metrics=metrics,
        coin2_decimals=settings.coin2_decimals,
    )

    strategy_deps = StrategyDeps(
        settings=settings,
        params=params,
        exchange=exchange,
        store=store,
        reconciler=reconciler,
        collector=collector,
        watcher=watcher,
        analytics=analytics,
        alerts=alerts,
        metrics=metrics,
        rng=rng,
    )
    liquidity_planner = LiquidityPlanner(strategy_deps)
    depth_builder = DepthBuilder(strategy_deps)
    price_maker = PriceMaker(strategy_deps, liquidity_planner=liquidity_planner)
    rates_refresher = RatesRefresher(rates, rng)

    loops: List[TradingStrategy] = [rates_refresher, watcher, liquidity_planner, depth_builder, price_maker]
    schedulers = [Scheduler(s, metrics) for s in loops]

    log.info(json.dumps({
        "event": "bot_created",
        "pair": settings.pair,
        "exchange": settings.exchange,
        "reference_exchanges": sorted(reference_exchanges),
        "strategies": [s.name for s in loops],
    }))

    return Bot(
        settings=settings,
        params=params,
        exchange=exchange,
        store=store,
        rates=rates,
        alert_manager=alert_manager,
        alerts=alerts,
        metrics=metrics,
        watcher=watcher,
        liquidity_planner=liquidity_planner,
        depth_builder=depth_builder,
        price_maker=price_maker,
        rates_refresher=rates_refresher,
        schedulers=schedulers,
    )


def describe(bot: Bot) -> Dict[str, Any]:
    """Operator snapshot: watcher band and loop states."""
    band = bot.watcher.band
    return {
        "pair": bot.settings.pair,
        "price_band": {
            "low": band.low,
            "high": band.high,
            "is_actual": band.is_actual,
            "failures": band.failures,
            "source": band.source,
        },
        "strategies": {
            s.strategy.name: {
                "enabled": s.strategy.is_enabled(),
                "in_progress": s.strategy.in_progress,
                "running": s.is_running,
            }
            for s in bot.schedulers
        },
    }
