"""
Pytest configuration and fixtures.
Adds the repo root to the Python path so tests can import mmbot.
"""

import random
import sys
from pathlib import Path

import pytest

repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from mmbot.config.config import Settings, TradeParams  # noqa: E402


def make_settings(**overrides) -> Settings:
    values = dict(
        pair="ADM/USDT",
        exchange="test",
        coin1_decimals=2,
        coin2_decimals=4,
        log_level="INFO",
        log_file=None,
        state_dir=None,
        rates_url=None,
        metrics_port=0,
        alert_webhook_url=None,
        alert_webhook_type="generic",
        alert_enabled=False,
        alert_throttle_sec=3600.0,
        api_processing_delay_sec=0.0,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def params():
    return TradeParams(
        is_active=True,
        policy="optimal",
        buy_percent=0.5,
        min_amount=10.0,
        max_amount=100.0,
        liquidity_spread_percent=2.0,
        liquidity_sell_amount=1000.0,
        liquidity_buy_quote_amount=100.0,
    )


@pytest.fixture
def rng():
    return random.Random(42)
