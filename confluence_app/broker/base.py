"""
Broker contract.

The lifecycle machine talks to a broker only through this interface. Every
call is treated as a fallible remote operation: implementations raise
BrokerError, and callers never assume an order fills synchronously.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class OrderStatus(str, Enum):
    NEW = "new"
    FILLED = "filled"
    CANCELED = "canceled"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.FILLED, OrderStatus.CANCELED, OrderStatus.REJECTED)


@dataclass(frozen=True)
class Order:
    order_id: str
    client_id: str
    symbol: str
    qty: float
    side: OrderSide
    order_type: str
    time_in_force: str
    status: OrderStatus
    submitted_at: Optional[datetime] = None
    filled_avg_price: Optional[float] = None
    filled_at: Optional[datetime] = None


@dataclass(frozen=True)
class Account:
    account_id: str
    equity: float
    cash: float
    buying_power: float


@dataclass(frozen=True)
class BrokerPosition:
    symbol: str
    qty: float
    avg_entry_price: float
    market_value: float


class Broker(ABC):
    """Abstract broker used for live and paper trading."""

    @abstractmethod
    def get_account(self) -> Account:
        """Return current account balances."""

    @abstractmethod
    def create_order(
        self,
        symbol: str,
        qty: float,
        side: OrderSide,
        order_type: str = "market",
        time_in_force: str = "day",
        client_id: Optional[str] = None,
    ) -> Order:
        """Submit an order; the returned order is usually not yet filled."""

    @abstractmethod
    def get_orders(self, status: Optional[OrderStatus] = None) -> list[Order]:
        """List orders, optionally filtered by status."""

    @abstractmethod
    def cancel_order(self, order_id: str) -> None:
        """Cancel an open order."""

    @abstractmethod
    def get_positions(self) -> list[BrokerPosition]:
        """List broker-side positions."""

    def health_check(self) -> bool:
        """Check broker reachability by fetching the account."""
        try:
            self.get_account()
        except Exception:
            return False
        return True
