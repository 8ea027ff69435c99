"""
Tests for DepthBuilder.
"""

import pytest

from mmbot.core.models import BookLevel, OrderPurpose, OrderSide, OrderState
from mmbot.monitoring.alerting import ThrottledNotifier
from mmbot.strategy.depth_builder import DepthBuilder

from fakes import FakeExchange, RecordingNotifier, StaticBand, make_deps, quiet

PAIR = "ADM/USDT"
BIDS = [(round(0.99 - i * 0.01, 2), 100) for i in range(10)]
ASKS = [(round(1.01 + i * 0.01, 2), 100) for i in range(10)]


@pytest.fixture
def exchange():
    return FakeExchange(BIDS, ASKS)


@pytest.fixture
def depth_params(params):
    params.is_orderbook_active = True
    params.orderbook_orders_count = 3
    params.orderbook_height = 5
    return params


def make_builder(settings, params, exchange, rng, **kwargs):
    kwargs.setdefault("clock", lambda: 0)
    return DepthBuilder(make_deps(settings, params, exchange, rng, **kwargs), log_event=quiet)


def levels(pairs):
    return [BookLevel(p, a) for p, a in pairs]


class TestIteration:

    @pytest.mark.asyncio
    async def test_places_one_order_per_iteration(self, settings, depth_params, exchange, rng):
        builder = make_builder(settings, depth_params, exchange, rng)

        await builder.run_iteration()
        assert len(exchange.placed) == 1

        await builder.run_iteration()
        assert len(exchange.placed) == 2

    @pytest.mark.asyncio
    async def test_stops_at_target_count(self, settings, depth_params, exchange, rng):
        builder = make_builder(settings, depth_params, exchange, rng)

        for _ in range(6):
            await builder.run_iteration()

        assert len(exchange.placed) == 3
        active = await builder.store.find(purpose=OrderPurpose.DEPTH, is_processed=False)
        assert len(active) == 3

    @pytest.mark.asyncio
    async def test_orders_stay_off_the_top_of_book(self, settings, depth_params, exchange, rng):
        builder = make_builder(settings, depth_params, exchange, rng)
        for _ in range(3):
            await builder.run_iteration()

        for record in await builder.store.find(purpose=OrderPurpose.DEPTH):
            if record.side is OrderSide.SELL:
                assert record.price > 1.01
            else:
                assert record.price < 0.99
            assert record.expires_at is not None

    @pytest.mark.asyncio
    async def test_expired_orders_are_replaced(self, settings, depth_params, exchange, rng):
        now = [0]
        builder = make_builder(settings, depth_params, exchange, rng, clock=lambda: now[0])
        for _ in range(3):
            await builder.run_iteration()

        now[0] = 10 ** 9
        await builder.run_iteration()

        records = await builder.store.find(purpose=OrderPurpose.DEPTH)
        assert sum(1 for r in records if r.state is OrderState.EXPIRED) == 3
        assert len(exchange.placed) == 4

    @pytest.mark.asyncio
    async def test_thin_book_places_nothing(self, settings, depth_params, rng):
        depth_params.buy_percent = 0.0
        exchange = FakeExchange(BIDS, [(1.01, 100)])
        builder = make_builder(settings, depth_params, exchange, rng)

        await builder.run_iteration()

        assert exchange.placed == []

    @pytest.mark.asyncio
    async def test_low_balance_alerts(self, settings, depth_params, rng):
        exchange = FakeExchange(BIDS, ASKS, balances={"ADM": 0, "USDT": 0})
        sink = RecordingNotifier()
        alerts = ThrottledNotifier(sink, clock=lambda: 0.0, log_event=quiet)
        builder = make_builder(settings, depth_params, exchange, rng, alerts=alerts)

        await builder.run_iteration()
        await builder.run_iteration()

        assert exchange.placed == []
        assert len(sink.messages) == 1

    @pytest.mark.asyncio
    async def test_skips_placement_while_band_is_stale(self, settings, depth_params, exchange, rng):
        band = StaticBand(0.5, 2.0, is_actual=False)
        builder = make_builder(settings, depth_params, exchange, rng, watcher=band)

        await builder.run_iteration()
        assert exchange.placed == []

        band.is_actual = True
        await builder.run_iteration()
        assert len(exchange.placed) == 1

    @pytest.mark.asyncio
    async def test_inactive_watcher_does_not_block(self, settings, depth_params, exchange, rng):
        builder = make_builder(settings, depth_params, exchange, rng, watcher=StaticBand(0.5, 2.0, is_active=False, is_actual=False))
        await builder.run_iteration()
        assert len(exchange.placed) == 1

    @pytest.mark.asyncio
    async def test_closes_orders_outside_watcher_band(self, settings, depth_params, exchange, rng):
        depth_params.is_price_watcher_active = True
        builder = make_builder(settings, depth_params, exchange, rng, watcher=StaticBand(1.0, 1.2))
        exchange.add_open_order("x", "sell", 0.995, 10)
        record = await builder.store.create(
            id="x", pair=PAIR, side="sell", purpose=OrderPurpose.DEPTH,
            price=0.995, base_amount=10, quote_amount=9.95,
        )

        await builder.run_iteration()

        assert record.state is OrderState.OUT_OF_RANGE
        assert record.close_reason == "outOfRange"


class TestPricing:

    def test_sell_price_between_levels(self, settings, depth_params, exchange, rng):
        builder = make_builder(settings, depth_params, exchange, rng)
        for _ in range(20):
            price = builder.set_price(OrderSide.SELL, 3, levels(ASKS))
            assert 1.02 < price < 1.03

    def test_buy_price_between_levels(self, settings, depth_params, exchange, rng):
        builder = make_builder(settings, depth_params, exchange, rng)
        for _ in range(20):
            price = builder.set_price(OrderSide.BUY, 3, levels(BIDS))
            assert 0.97 < price < 0.98

    def test_sell_clamped_into_band(self, settings, depth_params, exchange, rng):
        depth_params.is_price_watcher_active = True
        builder = make_builder(settings, depth_params, exchange, rng, watcher=StaticBand(1.05, 1.5))
        for _ in range(20):
            price = builder.set_price(OrderSide.SELL, 2, levels(ASKS))
            assert 1.05 <= price <= 1.05 * 1.21

    def test_buy_clamped_into_band(self, settings, depth_params, exchange, rng):
        depth_params.is_price_watcher_active = True
        builder = make_builder(settings, depth_params, exchange, rng, watcher=StaticBand(0.5, 0.95))
        for _ in range(20):
            price = builder.set_price(OrderSide.BUY, 2, levels(BIDS))
            assert 0.95 * 0.79 <= price <= 0.95

    def test_position_range(self, settings, depth_params, exchange, rng):
        builder = make_builder(settings, depth_params, exchange, rng)
        positions = {builder.set_position(10) for _ in range(200)}
        assert positions == {2, 3, 4, 5}
        assert builder.set_position(1) == 2


class TestSizing:

    def test_amount_range(self, settings, depth_params, exchange, rng):
        builder = make_builder(settings, depth_params, exchange, rng)
        for _ in range(50):
            assert 10 <= builder.set_amount() <= 50

    def test_amount_when_max_below_min(self, settings, depth_params, exchange, rng):
        depth_params.orderbook_max_order_percent = 5.0
        builder = make_builder(settings, depth_params, exchange, rng)
        for _ in range(50):
            assert 10 <= builder.set_amount() <= 11

    def test_lifetime_bounds(self, settings, depth_params, exchange, rng):
        depth_params.orderbook_orders_count = 15
        builder = make_builder(settings, depth_params, exchange, rng)
        for position in (2, 5, 10):
            for _ in range(20):
                assert 1000 <= builder.set_lifetime(position) <= 15 * 1500
