"""
Domain types shared by analytics, reconciliation and strategies.

OrderRecord is the persisted ledger entry for a bot-managed order. It is
bound to the store that created it so strategies can call
``await record.update({...}, persist=True)`` without holding the store.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple

from mmbot.core.utils import now_ms

if TYPE_CHECKING:
    from mmbot.state.order_store import OrderStore


class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"

    @property
    def opposite(self) -> "OrderSide":
        return OrderSide.SELL if self is OrderSide.BUY else OrderSide.BUY


class OrderPurpose(str, Enum):
    LIQUIDITY = "liquidity"
    DEPTH = "depth"
    PRICEMAKER = "pricemaker"
    MANUAL = "manual"


class OrderState(str, Enum):
    """
    Ledger state of an order record.

    OPEN ──> PARTIALLY_FILLED ──> FILLED
      │             │
      └─────────────┴──> CANCELLED | EXPIRED | OUT_OF_RANGE | UNKNOWN
    """
    OPEN = "open"
    PARTIALLY_FILLED = "partiallyFilled"
    FILLED = "filled"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    OUT_OF_RANGE = "outOfRange"
    UNKNOWN = "unknown"


TERMINAL_STATES = {
    OrderState.FILLED,
    OrderState.CANCELLED,
    OrderState.EXPIRED,
    OrderState.OUT_OF_RANGE,
    OrderState.UNKNOWN,
}


class ExchangeOrderStatus(str, Enum):
    NEW = "new"
    PARTIALLY_FILLED = "partially_filled"
    FILLED = "filled"
    CLOSED = "closed"


@dataclass(frozen=True)
class BookLevel:
    price: float
    amount: float


@dataclass
class OrderBookSnapshot:
    """Bids sorted by price descending, asks ascending."""
    bids: List[BookLevel] = field(default_factory=list)
    asks: List[BookLevel] = field(default_factory=list)

    @classmethod
    def from_pairs(
        cls,
        bids: Sequence[Tuple[float, float]],
        asks: Sequence[Tuple[float, float]],
    ) -> "OrderBookSnapshot":
        return cls(
            bids=[BookLevel(float(p), float(a)) for p, a in bids],
            asks=[BookLevel(float(p), float(a)) for p, a in asks],
        )

    @property
    def highest_bid(self) -> Optional[float]:
        return self.bids[0].price if self.bids else None

    @property
    def lowest_ask(self) -> Optional[float]:
        return self.asks[0].price if self.asks else None


@dataclass
class ExchangeOrder:
    """Open order as reported by the exchange adapter."""
    id: str
    price: float
    side: OrderSide
    status: ExchangeOrderStatus
    amount: float
    amount_left: Optional[float] = None
    pair: Optional[str] = None


@dataclass
class Balance:
    code: str
    free: float
    frozen: float = 0.0
    total: float = 0.0


@dataclass
class PlaceOrderResult:
    order_id: Optional[str] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return bool(self.order_id)


@dataclass
class ConversionResult:
    out_amount: float
    rate: float


@dataclass
class PriceBand:
    """Defensive [low, high] reference band published by the price watcher."""
    low: float = 0.0
    high: float = 0.0
    is_actual: bool = False
    source_timestamp_ms: int = 0
    source: Optional[str] = None
    failures: int = 0
    delta_percent: Optional[float] = None


@dataclass
class OrderRecord:
    id: str
    pair: str
    side: OrderSide
    purpose: OrderPurpose
    price: float
    base_amount: float
    quote_amount: float
    created_at: int = field(default_factory=now_ms)
    expires_at: Optional[int] = None
    state: OrderState = OrderState.OPEN
    sub_purpose: Optional[str] = None
    base_amount_left: Optional[float] = None
    base_amount_filled: float = 0.0
    is_processed: bool = False
    is_cancelled: bool = False
    is_not_found: bool = False
    is_expired: bool = False
    is_out_of_range: bool = False
    is_executed: bool = False
    price_corrected: bool = False
    cross_order_id: Optional[str] = None
    close_reason: Optional[str] = None
    updated_at: int = field(default_factory=now_ms)
    _store: Optional["OrderStore"] = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.side = OrderSide(self.side)
        self.purpose = OrderPurpose(self.purpose)
        self.state = OrderState(self.state)
        if self.base_amount_left is None:
            self.base_amount_left = self.base_amount

    def bind(self, store: "OrderStore") -> "OrderRecord":
        self._store = store
        return self

    @property
    def is_active(self) -> bool:
        return not self.is_processed

    async def update(self, fields_: Optional[Dict[str, Any]] = None, persist: bool = False, **kwargs: Any) -> None:
        """Apply field changes; optionally persist through the bound store."""
        changes = {**(fields_ or {}), **kwargs}
        for name, value in changes.items():
            if name.startswith("_") or name not in _RECORD_FIELDS:
                raise AttributeError(f"unknown order record field: {name}")
            setattr(self, name, value)
        self.updated_at = now_ms()
        if persist:
            await self.save()

    async def save(self) -> None:
        if self._store is not None:
            await self._store.save(self)

    def to_dict(self) -> Dict[str, Any]:
        data = {name: getattr(self, name) for name in _RECORD_FIELDS}
        data["side"] = self.side.value
        data["purpose"] = self.purpose.value
        data["state"] = self.state.value
        return data


_RECORD_FIELDS = {f.name for f in fields(OrderRecord) if not f.name.startswith("_")}
