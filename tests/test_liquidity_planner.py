"""
Tests for LiquidityPlanner.

Tests cover:
- Filling both sides up to the configured amounts
- Closing orders out of spread, out of the watcher band and expired
- Price watcher corrections
- Spread support orders
- Balance alerts and the trend override after a price change
"""

from unittest.mock import AsyncMock

import pytest

from mmbot.core.errors import ConfigurationError
from mmbot.core.models import OrderPurpose, OrderSide, OrderState
from mmbot.monitoring.alerting import ThrottledNotifier
from mmbot.strategy.liquidity_planner import ALERT_KEY_BALANCE, LiquidityPlanner

from fakes import FakeExchange, RecordingNotifier, StaticBand, make_deps, quiet

PAIR = "ADM/USDT"
BIDS = [(0.99, 1000), (0.98, 1000)]
ASKS = [(1.01, 1000), (1.02, 1000)]


@pytest.fixture
def exchange():
    return FakeExchange(BIDS, ASKS)


@pytest.fixture
def liquidity_params(params):
    params.is_liquidity_active = True
    return params


def make_planner(settings, params, exchange, rng, **kwargs):
    return LiquidityPlanner(make_deps(settings, params, exchange, rng, **kwargs), log_event=quiet)


async def resting(planner, exchange, order_id, side, price, amount, **fields):
    exchange.add_open_order(order_id, side, price, amount)
    return await planner.store.create(
        id=order_id, pair=PAIR, side=side, purpose=OrderPurpose.LIQUIDITY,
        price=price, base_amount=amount, quote_amount=price * amount, **fields,
    )


def own(planner, side, **filters):
    return [
        r for r in planner.store._records.values()
        if r.side is side and not r.is_processed and all(getattr(r, k) == v for k, v in filters.items())
    ]


# ─────────────────────────────────────────────────────────────────────────────
# Filling
# ─────────────────────────────────────────────────────────────────────────────


class TestFilling:

    @pytest.mark.asyncio
    async def test_fills_both_sides_to_target(self, settings, liquidity_params, exchange, rng):
        planner = make_planner(settings, liquidity_params, exchange, rng)

        await planner.run_iteration()

        sells = own(planner, OrderSide.SELL)
        buys = own(planner, OrderSide.BUY)
        assert 990 <= sum(r.base_amount for r in sells) <= 1000.1
        assert 99 <= sum(r.quote_amount for r in buys) <= 100.1
        assert all(0.99 < r.price <= 1.024 for r in sells)
        assert all(0.976 <= r.price < 1.01 for r in buys)
        assert all(r.sub_purpose == "depth" and r.expires_at is not None for r in sells + buys)

    @pytest.mark.asyncio
    async def test_second_iteration_places_nothing(self, settings, liquidity_params, exchange, rng):
        planner = make_planner(settings, liquidity_params, exchange, rng)
        await planner.run_iteration()
        placed = len(exchange.placed)

        await planner.run_iteration()

        assert len(exchange.placed) == placed
        assert exchange.cancelled == []

    @pytest.mark.asyncio
    async def test_failed_placement_stops_side(self, settings, liquidity_params, exchange, rng):
        exchange.fail_sides.add(OrderSide.SELL)
        planner = make_planner(settings, liquidity_params, exchange, rng)

        await planner.run_iteration()

        assert sum(1 for p in exchange.placed if p["side"] is OrderSide.SELL) == 1
        assert own(planner, OrderSide.SELL) == []
        assert own(planner, OrderSide.BUY)

    @pytest.mark.asyncio
    async def test_no_book_skips_cycle(self, settings, liquidity_params, rng):
        exchange = FakeExchange([], ASKS)
        planner = make_planner(settings, liquidity_params, exchange, rng)
        await planner.run_iteration()
        assert exchange.placed == []


# ─────────────────────────────────────────────────────────────────────────────
# Closing
# ─────────────────────────────────────────────────────────────────────────────


class TestClosing:

    @pytest.mark.asyncio
    async def test_closes_out_of_spread(self, settings, liquidity_params, exchange, rng):
        planner = make_planner(settings, liquidity_params, exchange, rng)
        far = await resting(planner, exchange, "far", OrderSide.SELL, 1.10, 100)

        await planner.run_iteration()

        assert far.is_processed
        assert far.state is OrderState.OUT_OF_RANGE
        assert far.close_reason == "outOfSpread"

    @pytest.mark.asyncio
    async def test_keeps_price_corrected_order(self, settings, liquidity_params, exchange, rng):
        planner = make_planner(settings, liquidity_params, exchange, rng)
        corrected = await resting(planner, exchange, "c", OrderSide.SELL, 1.10, 100, price_corrected=True)

        await planner.run_iteration()

        assert not corrected.is_processed
        assert "c" not in exchange.cancelled

    @pytest.mark.asyncio
    async def test_closes_out_of_watcher_band(self, settings, liquidity_params, exchange, rng):
        liquidity_params.is_price_watcher_active = True
        planner = make_planner(settings, liquidity_params, exchange, rng, watcher=StaticBand(1.0, 1.2))
        below = await resting(planner, exchange, "low", OrderSide.SELL, 0.995, 100, price_corrected=True)

        await planner.run_iteration()

        assert below.is_processed
        assert below.close_reason == "outOfRange"

    @pytest.mark.asyncio
    async def test_closes_expired(self, settings, liquidity_params, exchange, rng):
        planner = make_planner(settings, liquidity_params, exchange, rng, clock=lambda: 10_000)
        old = await resting(planner, exchange, "old", OrderSide.BUY, 0.995, 10, expires_at=5_000)

        await planner.run_iteration()

        assert old.state is OrderState.EXPIRED

    @pytest.mark.asyncio
    async def test_inner_guard(self, settings, liquidity_params, exchange, rng):
        liquidity_params.liquidity_spread_percent_min = 1.0
        planner = make_planner(settings, liquidity_params, exchange, rng)
        info = planner.analytics.compute(exchange.book, custom_spread_percent=2.0)

        near = await resting(planner, exchange, "n", OrderSide.SELL, 1.0, 1)
        fine = await resting(planner, exchange, "f", OrderSide.SELL, 1.015, 1)
        ss_near = await resting(planner, exchange, "s", OrderSide.SELL, 1.0, 1, sub_purpose="ss")
        ss_far = await resting(planner, exchange, "sf", OrderSide.SELL, 1.01, 1, sub_purpose="ss")

        assert planner.check_spread(near, info).out_of_spread
        assert not planner.check_spread(fine, info).out_of_spread
        assert not planner.check_spread(ss_near, info).out_of_spread
        assert planner.check_spread(ss_far, info).out_of_spread


# ─────────────────────────────────────────────────────────────────────────────
# Pricing
# ─────────────────────────────────────────────────────────────────────────────


class TestPricing:

    def test_watcher_corrects_sell_price(self, settings, liquidity_params, exchange, rng):
        liquidity_params.is_price_watcher_active = True
        planner = make_planner(settings, liquidity_params, exchange, rng, watcher=StaticBand(1.05, 1.2))
        info = planner.analytics.compute(exchange.book, custom_spread_percent=2.0)

        priced = planner.set_price(OrderSide.SELL, info, "depth")

        assert priced.corrected
        assert 1.05 <= priced.price <= 1.05 * 1.02
        assert priced.message

    def test_watcher_corrects_buy_price(self, settings, liquidity_params, exchange, rng):
        liquidity_params.is_price_watcher_active = True
        planner = make_planner(settings, liquidity_params, exchange, rng, watcher=StaticBand(0.8, 0.95))
        info = planner.analytics.compute(exchange.book, custom_spread_percent=2.0)

        priced = planner.set_price(OrderSide.BUY, info, "depth")

        assert priced.corrected
        assert 0.95 * 0.98 <= priced.price <= 0.95

    def test_stale_watcher_is_ignored(self, settings, liquidity_params, exchange, rng):
        liquidity_params.is_price_watcher_active = True
        band = StaticBand(1.05, 1.2, is_actual=False)
        planner = make_planner(settings, liquidity_params, exchange, rng, watcher=band)
        info = planner.analytics.compute(exchange.book, custom_spread_percent=2.0)

        priced = planner.set_price(OrderSide.SELL, info, "depth")

        assert not priced.corrected
        assert priced.price < 1.05

    def test_sell_never_crosses_highest_bid(self, settings, liquidity_params, rng):
        exchange = FakeExchange([(0.9999, 10)], [(1.0001, 10)])
        planner = make_planner(settings, liquidity_params, exchange, rng)
        info = planner.analytics.compute(exchange.book, custom_spread_percent=2.0)
        for _ in range(20):
            assert planner.set_price(OrderSide.SELL, info, "ss").price >= 0.9999 + 0.0003 - 1e-9
            assert planner.set_price(OrderSide.BUY, info, "ss").price <= 1.0001 - 0.0003 + 1e-9


# ─────────────────────────────────────────────────────────────────────────────
# Spread support
# ─────────────────────────────────────────────────────────────────────────────


class TestSpreadSupport:

    @pytest.mark.asyncio
    async def test_places_two_ss_orders_per_side(self, settings, liquidity_params, exchange, rng):
        liquidity_params.liquidity_spread_support = True
        planner = make_planner(settings, liquidity_params, exchange, rng)

        await planner.run_iteration()

        for side in (OrderSide.SELL, OrderSide.BUY):
            ss = own(planner, side, sub_purpose="ss")
            assert len(ss) == 2
            assert all(9.9 <= r.base_amount <= 20.2 for r in ss)
            assert all(0.99 < r.price < 1.01 for r in ss)

        # ss orders do not count toward the depth amount
        depth_sells = own(planner, OrderSide.SELL, sub_purpose="depth")
        assert sum(r.base_amount for r in depth_sells) >= 990

    @pytest.mark.asyncio
    async def test_spread_support_requires_min_amount(self, settings, liquidity_params, exchange, rng):
        liquidity_params.liquidity_spread_support = True
        liquidity_params.min_amount = None
        planner = make_planner(settings, liquidity_params, exchange, rng)
        with pytest.raises(ConfigurationError):
            await planner.run_iteration()


# ─────────────────────────────────────────────────────────────────────────────
# Alerts and trend override
# ─────────────────────────────────────────────────────────────────────────────


class TestBalanceAlerts:

    @pytest.mark.asyncio
    async def test_low_balance_alert_is_throttled(self, settings, liquidity_params, rng):
        exchange = FakeExchange(BIDS, ASKS, balances={"ADM": 0, "USDT": 0})
        sink = RecordingNotifier()
        alerts = ThrottledNotifier(sink, clock=lambda: 0.0, log_event=quiet)
        planner = make_planner(settings, liquidity_params, exchange, rng, alerts=alerts)

        await planner.run_iteration()
        await planner.run_iteration()

        assert exchange.placed == []
        assert len(sink.messages) == 1
        assert "Not enough" in sink.messages[0][0]
        assert not alerts.allow(ALERT_KEY_BALANCE)


class TestTrendOverride:

    @pytest.mark.asyncio
    async def test_override_applies_for_one_iteration(self, settings, liquidity_params, exchange, rng):
        planner = make_planner(settings, liquidity_params, exchange, rng)
        seen = []

        async def record_trend():
            seen.append(planner.trend)

        planner.run_iteration = AsyncMock(side_effect=record_trend)

        assert await planner.update_after_price_change(OrderSide.BUY) is True
        assert await planner.update_after_price_change(OrderSide.SELL) is True
        assert seen == ["uptrend", "downtrend"]
        assert planner.trend == "middle"

    @pytest.mark.asyncio
    async def test_skipped_while_in_progress(self, settings, liquidity_params, exchange, rng):
        planner = make_planner(settings, liquidity_params, exchange, rng)
        planner._in_progress = True
        assert await planner.update_after_price_change(OrderSide.BUY) is False
        assert planner.trend == "middle"

    @pytest.mark.asyncio
    async def test_skipped_when_disabled(self, settings, params, exchange, rng):
        planner = make_planner(settings, params, exchange, rng)
        assert await planner.update_after_price_change(OrderSide.BUY) is False
        assert exchange.placed == []
