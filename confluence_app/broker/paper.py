"""In-memory paper broker."""

from dataclasses import replace
from datetime import datetime
from typing import Optional

import structlog

from ..errors import BrokerError
from .base import Account, Broker, BrokerPosition, Order, OrderSide, OrderStatus

logger = structlog.get_logger(__name__)


class PaperBroker(Broker):
    """
    Simulated broker for paper trading and tests.

    Market orders rest as NEW when submitted and fill on the next
    ``get_orders`` call at the latest mark for their symbol. Orders for a
    symbol with no mark are rejected at fill time.
    """

    def __init__(self, starting_cash: float = 25000.0, account_id: str = "paper") -> None:
        self.logger = logger
        self.account_id = account_id
        self.cash = starting_cash
        self._orders: dict[str, Order] = {}
        self._positions: dict[str, BrokerPosition] = {}
        self._marks: dict[str, float] = {}
        self._mark_time: Optional[datetime] = None
        self._sequence = 0

    def set_mark(self, symbol: str, price: float, timestamp: Optional[datetime] = None) -> None:
        self._marks[symbol] = price
        if timestamp is not None:
            self._mark_time = timestamp
        position = self._positions.get(symbol)
        if position is not None:
            self._positions[symbol] = replace(position, market_value=position.qty * price)

    def get_account(self) -> Account:
        equity = self.cash + sum(p.market_value for p in self._positions.values())
        return Account(
            account_id=self.account_id,
            equity=equity,
            cash=self.cash,
            buying_power=max(0.0, self.cash),
        )

    def create_order(
        self,
        symbol: str,
        qty: float,
        side: OrderSide,
        order_type: str = "market",
        time_in_force: str = "day",
        client_id: Optional[str] = None,
    ) -> Order:
        if qty <= 0:
            raise BrokerError(
                f"Order quantity must be positive, got {qty}",
                operation="create_order",
                symbol=symbol,
                client_id=client_id,
            )
        if order_type != "market":
            raise BrokerError(
                f"Unsupported order type: {order_type}",
                operation="create_order",
                symbol=symbol,
                client_id=client_id,
            )

        self._sequence += 1
        order = Order(
            order_id=f"paper-{self._sequence:06d}",
            client_id=client_id or f"paper-client-{self._sequence:06d}",
            symbol=symbol,
            qty=qty,
            side=side,
            order_type=order_type,
            time_in_force=time_in_force,
            status=OrderStatus.NEW,
            submitted_at=self._mark_time,
        )
        self._orders[order.order_id] = order
        self.logger.info(
            "Paper order accepted",
            order_id=order.order_id,
            client_id=order.client_id,
            symbol=symbol,
            qty=qty,
            side=side.value,
        )
        return order

    def get_orders(self, status: Optional[OrderStatus] = None) -> list[Order]:
        self._fill_resting_orders()
        orders = list(self._orders.values())
        if status is not None:
            orders = [o for o in orders if o.status == status]
        return orders

    def cancel_order(self, order_id: str) -> None:
        order = self._orders.get(order_id)
        if order is None:
            raise BrokerError(f"Unknown order: {order_id}", operation="cancel_order")
        if order.status.is_terminal:
            raise BrokerError(
                f"Order {order_id} already {order.status.value}",
                operation="cancel_order",
            )
        self._orders[order_id] = replace(order, status=OrderStatus.CANCELED)

    def get_positions(self) -> list[BrokerPosition]:
        return [p for p in self._positions.values() if p.qty != 0]

    def _fill_resting_orders(self) -> None:
        for order_id, order in list(self._orders.items()):
            if order.status != OrderStatus.NEW:
                continue

            price = self._marks.get(order.symbol)
            if price is None:
                self._orders[order_id] = replace(order, status=OrderStatus.REJECTED)
                self.logger.warning("Paper order rejected: no mark", order_id=order_id, symbol=order.symbol)
                continue

            self._orders[order_id] = replace(
                order,
                status=OrderStatus.FILLED,
                filled_avg_price=price,
                filled_at=self._mark_time,
            )
            self._apply_fill(order, price)

    def _apply_fill(self, order: Order, price: float) -> None:
        signed_qty = order.qty if order.side == OrderSide.BUY else -order.qty
        self.cash -= signed_qty * price

        current = self._positions.get(order.symbol)
        if current is None or current.qty == 0:
            new_qty = signed_qty
            avg = price
        else:
            new_qty = current.qty + signed_qty
            same_direction = (current.qty > 0) == (signed_qty > 0)
            avg = (
                (current.avg_entry_price * current.qty + price * signed_qty) / new_qty
                if same_direction and new_qty != 0
                else current.avg_entry_price
            )

        self._positions[order.symbol] = BrokerPosition(
            symbol=order.symbol,
            qty=new_qty,
            avg_entry_price=avg,
            market_value=new_qty * price,
        )
