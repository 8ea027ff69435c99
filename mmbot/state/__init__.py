"""
Order-record persistence package.
"""

from mmbot.state.order_store import InMemoryOrderStore, OrderStore

__all__ = ["InMemoryOrderStore", "OrderStore"]
