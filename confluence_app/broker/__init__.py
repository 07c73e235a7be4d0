"""
Broker contract, paper broker and order executor.
"""

from .base import Account, Broker, BrokerPosition, Order, OrderSide, OrderStatus
from .executor import OrderExecutor
from .paper import PaperBroker

__all__ = [
    "Account",
    "Broker",
    "BrokerPosition",
    "Order",
    "OrderSide",
    "OrderStatus",
    "OrderExecutor",
    "PaperBroker",
]
