"""
Tests for bot wiring and the process entry helpers.
"""

import random
from unittest.mock import AsyncMock

import pytest

from mmbot.app import load_factory, parse_reference_adapters
from mmbot.bot_factory import BotDependencies, RatesRefresher, create_bot, describe
from mmbot.core.errors import ConfigurationError
from mmbot.exchange.rates import RatesService
from mmbot.monitoring.metrics_rich import RichMetrics
from mmbot.state.order_store import InMemoryOrderStore

from fakes import FakeExchange


@pytest.fixture
def deps(settings, params):
    return BotDependencies(
        settings=settings,
        params=params,
        adapter=FakeExchange([(0.99, 100)], [(1.01, 100)]),
        reference_exchanges={"Azbit": FakeExchange([(0.98, 100)], [(1.02, 100)])},
        store=InMemoryOrderStore(pair=settings.pair),
        metrics=RichMetrics(),
        rng=random.Random(1),
    )


class TestCreateBot:

    def test_wires_one_scheduler_per_loop(self, deps):
        bot = create_bot(deps)
        assert [s.strategy.name for s in bot.schedulers] == [
            "rates", "price_watcher", "liquidity", "depth", "pricemaker",
        ]
        assert set(bot.strategies) == {"rates", "price_watcher", "liquidity", "depth", "pricemaker"}
        assert bot.scheduler("depth").strategy is bot.depth_builder

    def test_strategies_share_collaborators(self, deps):
        bot = create_bot(deps)
        assert bot.price_maker.liquidity_planner is bot.liquidity_planner
        assert bot.liquidity_planner.watcher is bot.watcher
        assert bot.depth_builder.store is bot.store is deps.store
        assert bot.price_maker.exchange is bot.exchange
        assert bot.exchange.adapter is deps.adapter
        assert "azbit" in bot.watcher.reference_exchanges

    def test_unknown_scheduler(self, deps):
        with pytest.raises(KeyError):
            create_bot(deps).scheduler("nope")

    def test_describe(self, deps):
        bot = create_bot(deps)
        snapshot = describe(bot)
        assert snapshot["pair"] == "ADM/USDT"
        assert snapshot["price_band"]["is_actual"] is False
        assert snapshot["strategies"]["pricemaker"]["enabled"] is True
        assert snapshot["strategies"]["depth"]["enabled"] is False

    @pytest.mark.asyncio
    async def test_start_and_stop(self, deps, params):
        params.is_active = False
        bot = create_bot(deps)
        bot.alert_manager.flush = AsyncMock()

        await bot.start()
        assert len(bot._tasks) == 5
        await bot.stop()

        assert bot._tasks == []
        assert not any(s.is_running for s in bot.schedulers)
        bot.alert_manager.flush.assert_awaited_once()


class TestRatesRefresher:

    @pytest.mark.asyncio
    async def test_disabled_without_url(self):
        refresher = RatesRefresher(RatesService(), random.Random(1))
        assert not refresher.is_enabled()
        assert 60_000 <= refresher.next_interval_ms() <= 120_000

    @pytest.mark.asyncio
    async def test_failed_refresh_is_logged(self):
        rates = RatesService("https://rates.example.com")
        rates.update_rates = AsyncMock(return_value=False)
        events = []
        refresher = RatesRefresher(rates)
        refresher._log_event = lambda event, **kw: events.append(event)

        await refresher.run_iteration()

        assert events == ["rates_refresh_failed"]
        await rates.close()


class TestAdapterLoading:

    def test_load_factory(self):
        assert load_factory("fakes:FakeExchange") is FakeExchange

    @pytest.mark.parametrize("path", ["fakes", "fakes:", "no_such_module_xyz:f", "fakes:PAIR_MISSING"])
    def test_load_factory_rejects(self, path):
        with pytest.raises(ConfigurationError):
            load_factory(path)

    def test_parse_reference_adapters(self):
        parsed = parse_reference_adapters(" Azbit=a.b:f , p2pb2b=c.d:g ,")
        assert parsed == {"azbit": "a.b:f", "p2pb2b": "c.d:g"}
        assert parse_reference_adapters(None) == {}

    def test_parse_reference_adapters_rejects(self):
        with pytest.raises(ConfigurationError):
            parse_reference_adapters("azbit")
