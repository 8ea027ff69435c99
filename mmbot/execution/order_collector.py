"""
OrderCollector: closes bot orders with cancel-then-mark semantics.

A record is only marked closed once the exchange answered the cancel
(cancelled or already gone). An inconclusive answer leaves the record
untouched so the next cycle retries.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional

from mmbot.core.models import OrderPurpose, OrderRecord, OrderState
from mmbot.exchange.interfaces import ExchangeAdapter
from mmbot.monitoring.metrics_rich import RichMetrics
from mmbot.state.order_store import OrderStore

log = logging.getLogger("mmbot")

# close reason -> (record flag, terminal state)
_REASON_FLAGS: Dict[str, tuple] = {
    "expired": ("is_expired", OrderState.EXPIRED),
    "outOfRange": ("is_out_of_range", OrderState.OUT_OF_RANGE),
    "outOfSpread": ("is_out_of_range", OrderState.OUT_OF_RANGE),
}


@dataclass
class ClearResult:
    closed: int = 0
    retried: int = 0


class OrderCollector:
    def __init__(
        self,
        exchange: ExchangeAdapter,
        store: OrderStore,
        metrics: Optional[RichMetrics] = None,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self.exchange = exchange
        self.store = store
        self.metrics = metrics
        self._log_event = log_event or self._default_log

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(json.dumps({"event": event, **kwargs}, default=str))

    async def close_order(self, record: OrderRecord, reason: str) -> bool:
        """
        Cancel an order and mark its record closed.

        Returns:
            True if the record is now closed, False if the cancel was
            inconclusive and the record is left for the next cycle
        """
        cancelled = await self.exchange.cancel_order(record.id, record.side, record.pair)
        if cancelled is None:
            self._log_event(
                "order_close_inconclusive",
                pair=record.pair,
                order_id=record.id,
                purpose=record.purpose.value,
                reason=reason,
            )
            return False

        flag, state = _REASON_FLAGS.get(reason, (None, OrderState.CANCELLED))
        fields: Dict[str, Any] = {"is_processed": True, "close_reason": reason}
        if flag:
            fields[flag] = True
        if cancelled:
            fields["is_cancelled"] = True
            fields["state"] = state
        else:
            fields["is_not_found"] = True
            fields["state"] = OrderState.UNKNOWN
        await record.update(fields, persist=True)

        if self.metrics is not None:
            self.metrics.record_closed(record.pair, record.purpose.value, reason)
        self._log_event(
            "order_closed",
            pair=record.pair,
            order_id=record.id,
            purpose=record.purpose.value,
            side=record.side.value,
            price=record.price,
            reason=reason,
            cancelled=cancelled,
        )
        return True

    async def clear_orders(self, pair: str, purposes: Iterable[OrderPurpose], reason: str) -> ClearResult:
        """Close every open record of the given purposes on the pair."""
        wanted = set(purposes)
        result = ClearResult()
        for record in await self.store.find(pair=pair, is_processed=False):
            if record.purpose not in wanted:
                continue
            if await self.close_order(record, reason):
                result.closed += 1
            else:
                result.retried += 1
        self._log_event(
            "orders_cleared",
            pair=pair,
            purposes=sorted(p.value for p in wanted),
            reason=reason,
            closed=result.closed,
            retried=result.retried,
        )
        return result
