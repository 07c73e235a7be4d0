"""
Order execution and fill polling.

Entry and exit orders are submitted once and then tracked by client id.
Fills are discovered by polling the broker on later ticks. A failed
submission leaves nothing tracked: no phantom positions, and an exit that
could not be sent simply stays due on the next tick.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import structlog

from ..errors import BrokerError
from ..models.snapshots import VolatilityRegime
from ..signals.models import StrategySignal
from ..state.models import ExitDecision, Position, PositionSide
from .base import Broker, Order, OrderSide, OrderStatus

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PendingEntry:
    client_id: str
    order_id: str
    symbol: str
    side: PositionSide
    quantity: float
    signal: StrategySignal
    submitted_at: datetime
    volatility_regime: Optional[VolatilityRegime] = None


@dataclass(frozen=True)
class PendingExit:
    client_id: str
    order_id: str
    position_id: str
    decision: ExitDecision
    submitted_at: datetime


@dataclass
class PollResult:
    filled_entries: list[tuple[PendingEntry, Order]] = field(default_factory=list)
    filled_exits: list[tuple[PendingExit, Order]] = field(default_factory=list)
    dropped_entries: list[PendingEntry] = field(default_factory=list)
    dropped_exits: list[PendingExit] = field(default_factory=list)


def entry_order_side(side: PositionSide) -> OrderSide:
    return OrderSide.BUY if side == PositionSide.LONG else OrderSide.SELL


def exit_order_side(side: PositionSide) -> OrderSide:
    return OrderSide.SELL if side == PositionSide.LONG else OrderSide.BUY


class OrderExecutor:
    """Submits orders and reconciles their status on subsequent ticks."""

    def __init__(self, broker: Broker, order_type: str = "market", time_in_force: str = "day") -> None:
        self.broker = broker
        self.order_type = order_type
        self.time_in_force = time_in_force
        self.logger = logger
        self.pending_entries: dict[str, PendingEntry] = {}
        self.pending_exits: dict[str, PendingExit] = {}
        self._sequence = 0

    def _next_client_id(self, kind: str, timestamp: datetime) -> str:
        self._sequence += 1
        return f"cf-{kind}-{timestamp:%Y%m%d%H%M%S}-{self._sequence:04d}"

    def submit_entry(
        self,
        signal: StrategySignal,
        symbol: str,
        side: PositionSide,
        quantity: float,
        timestamp: datetime,
        volatility_regime: Optional[VolatilityRegime] = None,
    ) -> Optional[PendingEntry]:
        """Submit an entry order; returns None (and tracks nothing) on failure."""
        client_id = self._next_client_id("entry", timestamp)
        try:
            order = self.broker.create_order(
                symbol=symbol,
                qty=quantity,
                side=entry_order_side(side),
                order_type=self.order_type,
                time_in_force=self.time_in_force,
                client_id=client_id,
            )
        except BrokerError as e:
            self.logger.error(
                "Entry order submission failed",
                client_id=client_id,
                symbol=symbol,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        pending = PendingEntry(
            client_id=client_id,
            order_id=order.order_id,
            symbol=symbol,
            side=side,
            quantity=quantity,
            signal=signal,
            submitted_at=timestamp,
            volatility_regime=volatility_regime,
        )
        self.pending_entries[client_id] = pending
        self.logger.info("Entry order submitted", client_id=client_id, order_id=order.order_id)
        return pending

    def submit_exit(
        self,
        position: Position,
        decision: ExitDecision,
        timestamp: datetime,
    ) -> Optional[PendingExit]:
        """Submit a closing order; returns None on failure so the exit is retried."""
        client_id = self._next_client_id("exit", timestamp)
        try:
            order = self.broker.create_order(
                symbol=position.symbol,
                qty=position.quantity,
                side=exit_order_side(position.side),
                order_type=self.order_type,
                time_in_force=self.time_in_force,
                client_id=client_id,
            )
        except BrokerError as e:
            self.logger.error(
                "Exit order submission failed",
                position_id=position.position_id,
                exit_reason=decision.reason.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        pending = PendingExit(
            client_id=client_id,
            order_id=order.order_id,
            position_id=position.position_id,
            decision=decision,
            submitted_at=timestamp,
        )
        self.pending_exits[client_id] = pending
        self.logger.info(
            "Exit order submitted",
            client_id=client_id,
            position_id=position.position_id,
            exit_reason=decision.reason.value,
        )
        return pending

    def cancel_entries(self) -> list[PendingEntry]:
        """
        Cancel every entry order still awaiting a fill.

        Returns the entries that were cancelled. An entry whose cancel fails
        (typically because it already filled) stays tracked so the fill is
        still picked up by the next poll.
        """
        cancelled = []
        for client_id, entry in list(self.pending_entries.items()):
            try:
                self.broker.cancel_order(entry.order_id)
            except BrokerError as e:
                self.logger.error(
                    "Entry order cancel failed",
                    client_id=client_id,
                    order_id=entry.order_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue
            del self.pending_entries[client_id]
            cancelled.append(entry)
            self.logger.info("Entry order cancelled", client_id=client_id, order_id=entry.order_id)
        return cancelled

    def poll(self) -> PollResult:
        """Fetch order status once and resolve every pending order that finished."""
        result = PollResult()
        if not self.pending_entries and not self.pending_exits:
            return result

        try:
            orders = self.broker.get_orders()
        except BrokerError as e:
            self.logger.error(
                "Order status poll failed",
                pending_entries=len(self.pending_entries),
                pending_exits=len(self.pending_exits),
                error=str(e),
                error_type=type(e).__name__,
            )
            return result

        by_client = {order.client_id: order for order in orders}

        for client_id, entry in list(self.pending_entries.items()):
            order = by_client.get(client_id)
            if order is None or not order.status.is_terminal:
                continue
            del self.pending_entries[client_id]
            if order.status == OrderStatus.FILLED:
                result.filled_entries.append((entry, order))
            else:
                self.logger.warning(
                    "Entry order not filled",
                    client_id=client_id,
                    status=order.status.value,
                )
                result.dropped_entries.append(entry)

        for client_id, pending_exit in list(self.pending_exits.items()):
            order = by_client.get(client_id)
            if order is None or not order.status.is_terminal:
                continue
            del self.pending_exits[client_id]
            if order.status == OrderStatus.FILLED:
                result.filled_exits.append((pending_exit, order))
            else:
                self.logger.warning(
                    "Exit order not filled",
                    client_id=client_id,
                    position_id=pending_exit.position_id,
                    status=order.status.value,
                )
                result.dropped_exits.append(pending_exit)

        return result
