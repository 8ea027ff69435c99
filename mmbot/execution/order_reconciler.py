"""
OrderReconciler: keeps the local order ledger consistent with the exchange.

One call fetches the exchange's open orders once and walks the given local
records:

- not on the exchange: issue a cancel. Cancelled ⇒ closed+cancelled+notFound,
  already gone ⇒ closed+notFound, inconclusive ⇒ untouched, retried next cycle
- "new": stays active
- "partially_filled": local remainder shrinks when the exchange reports less
- "filled"/"closed": terminal

A failed fetch returns the input unchanged: no destructive action is taken
on stale data. Records already closed are skipped, which makes two calls
with no external change in between produce the same active set.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from mmbot.core.models import ExchangeOrder, ExchangeOrderStatus, OrderRecord, OrderState
from mmbot.exchange.interfaces import ExchangeAdapter
from mmbot.monitoring.metrics_rich import RichMetrics

log = logging.getLogger("mmbot")


@dataclass
class ReconcileResult:
    """Result of one reconciliation pass."""
    success: bool
    active: List[OrderRecord] = field(default_factory=list)
    not_found: int = 0
    filled: int = 0
    partially_filled: int = 0
    retried: int = 0
    unknown_status: int = 0
    filled_amount: float = 0.0
    remote_count: int = 0
    error: Optional[str] = None


class OrderReconciler:
    """
    Usage:
        reconciler = OrderReconciler(exchange)
        result = await reconciler.reconcile(records, "ADM/USDT")
        active = result.active
    """

    def __init__(
        self,
        exchange: ExchangeAdapter,
        metrics: Optional[RichMetrics] = None,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self.exchange = exchange
        self.metrics = metrics
        self._log_event = log_event or self._default_log

    def _default_log(self, event: str, **kwargs: Any) -> None:
        level = kwargs.pop("level", logging.INFO)
        log.log(level, json.dumps({"event": event, **kwargs}, default=str))

    async def reconcile(self, records: List[OrderRecord], pair: str) -> ReconcileResult:
        open_orders = await self.exchange.get_open_orders(pair)
        if open_orders is None:
            self._log_event("reconcile_skipped", pair=pair, reason="open orders unavailable", records=len(records))
            return ReconcileResult(success=False, active=list(records), error="open orders unavailable")

        remote: Dict[str, ExchangeOrder] = {str(o.id): o for o in open_orders}
        result = ReconcileResult(success=True, remote_count=len(remote))

        for record in records:
            if record.is_processed:
                continue
            exchange_order = remote.get(str(record.id))
            if exchange_order is None:
                if await self._resolve_missing(record, result):
                    result.active.append(record)
                continue

            try:
                status = ExchangeOrderStatus(exchange_order.status)
            except ValueError:
                # Unknown vendor status: leave the record as it is until the exchange says more
                result.unknown_status += 1
                result.active.append(record)
                self._log_event(
                    "reconcile_unknown_status",
                    pair=pair,
                    order_id=record.id,
                    purpose=record.purpose.value,
                    status=exchange_order.status,
                    level=logging.WARNING,
                )
                continue

            if status is ExchangeOrderStatus.NEW:
                result.active.append(record)
            elif status is ExchangeOrderStatus.PARTIALLY_FILLED:
                await self._apply_partial_fill(record, exchange_order, result)
                result.active.append(record)
            else:
                await self._apply_filled(record, result)

        if result.not_found or result.filled or result.partially_filled or result.retried or result.unknown_status:
            self._log_event(
                "reconcile_done",
                pair=pair,
                active=len(result.active),
                remote=result.remote_count,
                not_found=result.not_found,
                filled=result.filled,
                partially_filled=result.partially_filled,
                retried=result.retried,
                unknown_status=result.unknown_status,
                filled_amount=result.filled_amount,
            )
        return result

    async def _resolve_missing(self, record: OrderRecord, result: ReconcileResult) -> bool:
        """Cancel-then-mark an order that vanished. Returns True if it stays active."""
        cancelled = await self.exchange.cancel_order(record.id, record.side, record.pair)
        if cancelled is None:
            result.retried += 1
            self._log_event(
                "reconcile_cancel_inconclusive",
                pair=record.pair,
                order_id=record.id,
                purpose=record.purpose.value,
            )
            return True

        fields: Dict[str, Any] = {
            "is_processed": True,
            "is_not_found": True,
            "close_reason": "notFound",
        }
        if cancelled:
            fields["is_cancelled"] = True
            fields["state"] = OrderState.CANCELLED
        else:
            fields["state"] = OrderState.UNKNOWN
        await record.update(fields, persist=True)
        result.not_found += 1
        if self.metrics is not None:
            self.metrics.record_closed(record.pair, record.purpose.value, "notFound")
        self._log_event(
            "order_not_found_closed",
            pair=record.pair,
            order_id=record.id,
            purpose=record.purpose.value,
            cancelled=bool(cancelled),
        )
        return False

    async def _apply_partial_fill(self, record: OrderRecord, exchange_order: ExchangeOrder, result: ReconcileResult) -> None:
        left = exchange_order.amount_left
        local_left = record.base_amount_left if record.base_amount_left is not None else record.base_amount
        if left is None or left >= local_left:
            return
        delta = local_left - left
        await record.update(
            {
                "base_amount_left": left,
                "base_amount_filled": record.base_amount_filled + delta,
                "is_executed": True,
                "state": OrderState.PARTIALLY_FILLED,
            },
            persist=True,
        )
        result.partially_filled += 1
        result.filled_amount += delta
        self._log_event(
            "order_partially_filled",
            pair=record.pair,
            order_id=record.id,
            purpose=record.purpose.value,
            filled=delta,
            left=left,
        )

    async def _apply_filled(self, record: OrderRecord, result: ReconcileResult) -> None:
        delta = record.base_amount_left or 0.0
        await record.update(
            {
                "base_amount_left": 0.0,
                "base_amount_filled": record.base_amount,
                "is_executed": True,
                "is_processed": True,
                "state": OrderState.FILLED,
                "close_reason": "filled",
            },
            persist=True,
        )
        result.filled += 1
        result.filled_amount += delta
        if self.metrics is not None:
            self.metrics.record_closed(record.pair, record.purpose.value, "filled")
