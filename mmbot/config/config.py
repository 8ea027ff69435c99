"""
Environment-driven configuration with validation.

Settings are process-level and frozen. TradeParams are the trading
tunables; they stay mutable so operator layers can change them at runtime
and every strategy reads the current values at the start of an iteration.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from mmbot.core.errors import ConfigurationError

load_dotenv()

log = logging.getLogger("mmbot")

POLICIES = {"spread", "orderbook", "optimal"}
TRENDS = {"middle", "uptrend", "downtrend"}
SOURCE_POLICIES = {"smart", "strict"}


def env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None:
        return default
    return val.lower() in {"1", "true", "yes", "y"}


def _int_env(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}") from exc


def _float_env(key: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}") from exc


@dataclass(frozen=True)
class Settings:
    pair: str
    exchange: str
    coin1_decimals: int
    coin2_decimals: int
    log_level: str
    log_file: Optional[str]
    state_dir: Optional[str]
    rates_url: Optional[str]
    metrics_port: int
    alert_webhook_url: Optional[str]
    alert_webhook_type: str  # generic, slack, discord
    alert_enabled: bool
    alert_throttle_sec: float
    api_processing_delay_sec: float

    @property
    def coin1(self) -> str:
        return self.pair.split("/")[0]

    @property
    def coin2(self) -> str:
        return self.pair.split("/")[1]

    def dump(self) -> dict:
        """Return a dict of settings for sanity checks/logging."""
        data = self.__dict__.copy()
        if data.get("alert_webhook_url"):
            data["alert_webhook_url"] = "***"
        return data

    @classmethod
    def load(cls) -> "Settings":
        cfg = cls(
            pair=os.getenv("MM_PAIR", "ADM/USDT").upper(),
            exchange=os.getenv("MM_EXCHANGE", "exchange"),
            coin1_decimals=_int_env("MM_COIN1_DECIMALS", 8),
            coin2_decimals=_int_env("MM_COIN2_DECIMALS", 8),
            log_level=os.getenv("MM_LOG_LEVEL", "INFO").upper(),
            log_file=os.getenv("MM_LOG_FILE", "mmbot.log") or None,
            state_dir=os.getenv("MM_STATE_DIR", "state") or None,
            rates_url=os.getenv("MM_RATES_URL") or None,
            metrics_port=_int_env("MM_METRICS_PORT", 0),
            alert_webhook_url=os.getenv("MM_ALERT_WEBHOOK_URL") or None,
            alert_webhook_type=os.getenv("MM_ALERT_WEBHOOK_TYPE", "generic"),
            alert_enabled=env_bool("MM_ALERT_ENABLED", True),
            alert_throttle_sec=_float_env("MM_ALERT_THROTTLE_SEC", 3600.0),
            api_processing_delay_sec=_float_env("MM_API_PROCESSING_DELAY_SEC", 2.0),
        )
        cfg._validate()
        _sanity_check(cfg)
        return cfg

    def _validate(self) -> None:
        if "/" not in self.pair:
            raise ConfigurationError(f"MM_PAIR must look like BASE/QUOTE, got {self.pair!r}")
        if not 0 <= self.coin1_decimals <= 18 or not 0 <= self.coin2_decimals <= 18:
            raise ConfigurationError("Coin decimals must be within [0, 18]")
        if self.alert_webhook_type not in {"generic", "slack", "discord"}:
            raise ConfigurationError(f"Unknown MM_ALERT_WEBHOOK_TYPE: {self.alert_webhook_type}")
        if self.alert_throttle_sec < 0 or self.api_processing_delay_sec < 0:
            raise ConfigurationError("Delays must be >= 0")


@dataclass
class TradeParams:
    """
    Trading tunables shared by the strategies.

    Amounts are in the base coin except liquidity_buy_quote_amount (quote
    coin). buy_percent is the probability, in [0, 1], of choosing the buy side.
    """
    is_active: bool = False
    policy: str = "optimal"
    buy_percent: float = 0.5
    min_amount: Optional[float] = None
    max_amount: Optional[float] = None
    min_interval_ms: int = 10_000
    max_interval_ms: int = 20_000
    is_careful: bool = False

    is_liquidity_active: bool = False
    liquidity_spread_percent: Optional[float] = None
    liquidity_spread_percent_min: float = 0.0
    liquidity_sell_amount: Optional[float] = None
    liquidity_buy_quote_amount: Optional[float] = None
    liquidity_trend: str = "middle"
    liquidity_spread_support: bool = False

    is_orderbook_active: bool = False
    orderbook_orders_count: int = 15
    orderbook_height: int = 10
    orderbook_max_order_percent: float = 50.0

    is_price_watcher_active: bool = False
    pw_source: Optional[str] = None
    pw_source_policy: str = "smart"
    pw_low_price: Optional[float] = None
    pw_high_price: Optional[float] = None
    pw_deviation_percent: float = 1.0

    def require(self, *names: str) -> None:
        """Raise ConfigurationError if any named tunable is unset."""
        missing = [n for n in names if getattr(self, n) is None]
        if missing:
            raise ConfigurationError(f"Missing required trade params: {', '.join(missing)}")

    def update(self, **changes: Any) -> None:
        known = {f.name for f in fields(self)}
        for name, value in changes.items():
            if name not in known:
                raise ConfigurationError(f"Unknown trade param: {name}")
            setattr(self, name, value)
        self.validate()

    def validate(self) -> None:
        if self.policy not in POLICIES:
            raise ConfigurationError(f"Unknown policy: {self.policy}")
        if self.liquidity_trend not in TRENDS:
            raise ConfigurationError(f"Unknown liquidity trend: {self.liquidity_trend}")
        if self.pw_source_policy not in SOURCE_POLICIES:
            raise ConfigurationError(f"Unknown price source policy: {self.pw_source_policy}")
        if not 0 <= self.buy_percent <= 1:
            raise ConfigurationError("buy_percent must be within [0, 1]")
        if self.min_amount is not None and self.max_amount is not None and self.min_amount > self.max_amount:
            raise ConfigurationError("min_amount must be <= max_amount")
        if self.min_interval_ms <= 0 or self.min_interval_ms > self.max_interval_ms:
            raise ConfigurationError("Intervals must satisfy 0 < min_interval_ms <= max_interval_ms")
        if self.pw_deviation_percent < 0:
            raise ConfigurationError("pw_deviation_percent must be >= 0")

    def dump(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_env(cls) -> "TradeParams":
        params = cls(
            is_active=env_bool("MM_IS_ACTIVE", False),
            policy=os.getenv("MM_POLICY", "optimal"),
            buy_percent=_float_env("MM_BUY_PERCENT", 0.5),
            min_amount=_float_env("MM_MIN_AMOUNT", None),
            max_amount=_float_env("MM_MAX_AMOUNT", None),
            min_interval_ms=_int_env("MM_MIN_INTERVAL_MS", 10_000),
            max_interval_ms=_int_env("MM_MAX_INTERVAL_MS", 20_000),
            is_careful=env_bool("MM_IS_CAREFUL", False),
            is_liquidity_active=env_bool("MM_IS_LIQUIDITY_ACTIVE", False),
            liquidity_spread_percent=_float_env("MM_LIQUIDITY_SPREAD_PERCENT", None),
            liquidity_spread_percent_min=_float_env("MM_LIQUIDITY_SPREAD_PERCENT_MIN", 0.0),
            liquidity_sell_amount=_float_env("MM_LIQUIDITY_SELL_AMOUNT", None),
            liquidity_buy_quote_amount=_float_env("MM_LIQUIDITY_BUY_QUOTE_AMOUNT", None),
            liquidity_trend=os.getenv("MM_LIQUIDITY_TREND", "middle"),
            liquidity_spread_support=env_bool("MM_LIQUIDITY_SPREAD_SUPPORT", False),
            is_orderbook_active=env_bool("MM_IS_ORDERBOOK_ACTIVE", False),
            orderbook_orders_count=_int_env("MM_ORDERBOOK_ORDERS_COUNT", 15),
            orderbook_height=_int_env("MM_ORDERBOOK_HEIGHT", 10),
            orderbook_max_order_percent=_float_env("MM_ORDERBOOK_MAX_ORDER_PERCENT", 50.0),
            is_price_watcher_active=env_bool("MM_IS_PRICE_WATCHER_ACTIVE", False),
            pw_source=os.getenv("MM_PW_SOURCE") or None,
            pw_source_policy=os.getenv("MM_PW_SOURCE_POLICY", "smart"),
            pw_low_price=_float_env("MM_PW_LOW_PRICE", None),
            pw_high_price=_float_env("MM_PW_HIGH_PRICE", None),
            pw_deviation_percent=_float_env("MM_PW_DEVIATION_PERCENT", 1.0),
        )
        params.validate()
        return params


def _sanity_check(cfg: Settings) -> None:
    """Log critical settings once at startup so overrides are obvious."""
    log.info(json.dumps({"event": "config_loaded", **cfg.dump()}))
