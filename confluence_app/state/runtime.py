"""
Runtime management of open positions.

Opens positions from approved signals, runs the exit policy on every tick,
and routes closes either straight into the ledger (simulation) or through
the order executor (live/paper broker). Every open and close is mirrored
into the governor so outstanding risk stays in step.
"""

from dataclasses import replace
from datetime import datetime
from typing import Optional

import structlog

from ..broker.executor import OrderExecutor, PollResult
from ..config.defaults import StrategyConfig
from ..events import EventBus, PositionClosed, PositionOpened
from ..models.snapshots import VolatilityRegime
from ..risk.governor import PortfolioRiskGovernor
from ..signals.models import StrategySignal
from ..utils.time import at_session_hour
from .machine import emergency_exit, evaluate_exit
from .models import (
    ClosedTrade,
    ExitDecision,
    MarkContext,
    Position,
    PositionSide,
)
from .transitions import transition_handler

logger = structlog.get_logger(__name__)


class PositionRuntimeManager:
    """Owns the open-position lifecycle for one session engine."""

    def __init__(
        self,
        config: StrategyConfig,
        governor: PortfolioRiskGovernor,
        event_bus: Optional[EventBus] = None,
        executor: Optional[OrderExecutor] = None,
    ) -> None:
        self.config = config
        self.governor = governor
        self.event_bus = event_bus
        self.executor = executor
        self.logger = logger
        self._position_seq = 0

    @property
    def state(self):
        return self.governor.state

    def open_positions(self) -> list[Position]:
        return list(self.state.open_positions.values())

    def plan_stop(self, signal: StrategySignal, fill_price: float) -> float:
        """
        Initial stop for a position filled at ``fill_price``.

        By default the stop sits ``stop_loss_fraction`` away from the fill
        value. With ``use_signal_stop`` the signal's own stop distance is
        kept, shifted to the fill.
        """
        exits = self.config.exits
        side = PositionSide.from_action(signal.action)
        if exits.use_signal_stop:
            distance = abs(signal.entry_price - signal.stop_loss)
        else:
            distance = fill_price * exits.stop_loss_fraction
        return fill_price - distance if side == PositionSide.LONG else fill_price + distance

    def plan_risk(self, signal: StrategySignal, fill_price: float, quantity: Optional[float] = None) -> float:
        qty = signal.position_size if quantity is None else quantity
        return abs(fill_price - self.plan_stop(signal, fill_price)) * qty

    def open_position(
        self,
        signal: StrategySignal,
        fill_price: float,
        opened_at: datetime,
        symbol: Optional[str] = None,
        quantity: Optional[float] = None,
        volatility_regime: Optional[VolatilityRegime] = None,
    ) -> Position:
        """Create and register a position from an accepted signal."""
        session = self.config.session
        side = PositionSide.from_action(signal.action)
        self._position_seq += 1

        position = Position(
            position_id=f"pos-{opened_at:%Y%m%d-%H%M%S}-{self._position_seq:04d}",
            side=side,
            entry_price=fill_price,
            quantity=signal.position_size if quantity is None else quantity,
            stop_loss=self.plan_stop(signal, fill_price),
            opened_at=opened_at,
            symbol=symbol or session.symbol,
            expires_at=at_session_hour(opened_at, self.config.exits.expiry_hour, session.timezone),
            entry_volatility_regime=volatility_regime,
            last_value=fill_price,
            signal=signal,
        )

        self.governor.register_open(position)
        self.logger.info(
            "Position opened",
            position_id=position.position_id,
            side=side.value,
            entry_price=fill_price,
            quantity=position.quantity,
            stop_loss=round(position.stop_loss, 4),
        )
        self._emit(PositionOpened.from_position(position))
        return position

    def submit_entry(
        self,
        signal: StrategySignal,
        timestamp: datetime,
        symbol: Optional[str] = None,
        volatility_regime: Optional[VolatilityRegime] = None,
    ) -> bool:
        """Send an entry order to the broker; the position opens when it fills."""
        if self.executor is None:
            raise RuntimeError("submit_entry requires an order executor")

        pending = self.executor.submit_entry(
            signal=signal,
            symbol=symbol or self.config.session.symbol,
            side=PositionSide.from_action(signal.action),
            quantity=signal.position_size,
            timestamp=timestamp,
            volatility_regime=volatility_regime,
        )
        if pending is None:
            return False
        self.state.pending_entries.add(pending.client_id)
        return True

    def apply_fills(self, result: PollResult, timestamp: datetime) -> tuple[list[Position], list[ClosedTrade]]:
        """Turn polled broker fills into opened positions and closed trades."""
        opened: list[Position] = []
        closed: list[ClosedTrade] = []

        for entry, order in result.filled_entries:
            self.state.pending_entries.discard(entry.client_id)
            position = self.open_position(
                signal=entry.signal,
                fill_price=order.filled_avg_price or entry.signal.entry_price,
                opened_at=order.filled_at or timestamp,
                symbol=entry.symbol,
                quantity=order.qty,
                volatility_regime=entry.volatility_regime,
            )
            if self.state.emergency_active:
                # Filled after the breach: the broker holds it, so flatten at once
                self.logger.warning(
                    "Entry filled after emergency stop",
                    position_id=position.position_id,
                    client_id=entry.client_id,
                )
                trade = self._execute_exit(
                    position,
                    emergency_exit(
                        MarkContext(timestamp=timestamp, value=position.entry_price),
                        self.state.emergency_drawdown,
                    ),
                    max(timestamp, position.opened_at),
                )
                if trade is not None:
                    closed.append(trade)
                continue
            opened.append(position)

        for entry in result.dropped_entries:
            self.state.pending_entries.discard(entry.client_id)

        for pending_exit, order in result.filled_exits:
            position = self.state.open_positions.get(pending_exit.position_id)
            if position is None:
                self.logger.warning("Exit fill for unknown position", position_id=pending_exit.position_id)
                continue
            fill_price = order.filled_avg_price
            decision = pending_exit.decision
            if fill_price is not None:
                decision = replace(decision, exit_price=fill_price)
            closed.append(self.close_position(position, decision, order.filled_at or timestamp))

        for pending_exit in result.dropped_exits:
            position = self.state.open_positions.get(pending_exit.position_id)
            if position is not None:
                position.exit_pending = False

        return opened, closed

    def update_positions(self, marks: dict[str, MarkContext]) -> list[ClosedTrade]:
        """
        Run the exit policy over every open position.

        A failure while evaluating one position is logged and does not stop
        the remaining positions from being evaluated.
        """
        closed: list[ClosedTrade] = []

        for position in self.open_positions():
            if position.exit_pending:
                continue
            mark = marks.get(position.position_id)
            if mark is None:
                self.logger.debug("No mark for position", position_id=position.position_id)
                continue

            try:
                evaluation = evaluate_exit(position, mark, self.config.exits, self.config.session)
                position.max_profit_seen = evaluation.trailing.max_profit_seen
                position.trailing_stop = evaluation.trailing.trailing_stop
                position.trailing_active = evaluation.trailing.trailing_active
                position.last_value = mark.value

                if evaluation.decision is not None:
                    trade = self._execute_exit(position, evaluation.decision, mark.timestamp)
                    if trade is not None:
                        closed.append(trade)
            except Exception as e:
                self.logger.error(
                    "Position exit evaluation failed",
                    position_id=position.position_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        return closed

    def emergency_close_all(
        self,
        marks: dict[str, MarkContext],
        drawdown: float,
        timestamp: datetime,
    ) -> list[ClosedTrade]:
        """Force every open position to EMERGENCY_STOP, ignoring exit precedence."""
        closed: list[ClosedTrade] = []

        for position in self.open_positions():
            if position.exit_pending:
                continue
            mark = marks.get(position.position_id) or MarkContext(
                timestamp=timestamp,
                value=position.last_value if position.last_value is not None else position.entry_price,
            )
            try:
                trade = self._execute_exit(position, emergency_exit(mark, drawdown), timestamp)
                if trade is not None:
                    closed.append(trade)
            except Exception as e:
                self.logger.error(
                    "Emergency close failed",
                    position_id=position.position_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        return closed

    def cancel_pending_entries(self) -> int:
        """Cancel entry orders not yet filled; returns how many were cancelled."""
        if self.executor is None:
            return 0
        cancelled = self.executor.cancel_entries()
        for entry in cancelled:
            self.state.pending_entries.discard(entry.client_id)
        return len(cancelled)

    def close_position(self, position: Position, decision: ExitDecision, closed_at: datetime) -> ClosedTrade:
        """Apply the transition, release the position's risk and book the trade."""
        trade = transition_handler.close(position, decision, closed_at)
        self.governor.register_close(position, trade.realized_pnl)
        self.state.closed_trades.append(trade)
        self._emit(PositionClosed(timestamp=closed_at, trade=trade))
        return trade

    def _execute_exit(
        self,
        position: Position,
        decision: ExitDecision,
        timestamp: datetime,
    ) -> Optional[ClosedTrade]:
        if self.executor is None:
            return self.close_position(position, decision, timestamp)

        pending = self.executor.submit_exit(position, decision, timestamp)
        if pending is not None:
            position.exit_pending = True
        return None

    def _emit(self, event) -> None:
        if self.event_bus is not None:
            self.event_bus.emit(event)
