"""
Execution package: ledger reconciliation, order closing and balance checks.
"""

from mmbot.execution.balance_check import BalanceCheck, is_enough_coins
from mmbot.execution.order_collector import ClearResult, OrderCollector
from mmbot.execution.order_reconciler import OrderReconciler, ReconcileResult

__all__ = [
    "BalanceCheck",
    "is_enough_coins",
    "ClearResult",
    "OrderCollector",
    "OrderReconciler",
    "ReconcileResult",
]
