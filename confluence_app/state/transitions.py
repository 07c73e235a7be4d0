"""
Position state transitions.

The lifecycle has a single legal transition, OPEN → CLOSED(reason). This
module validates and applies it, books realized P&L and produces the
ClosedTrade ledger record.
"""

from datetime import datetime

import structlog

from ..errors import StateTransitionError, TemporalDataError
from ..logging.config import get_state_logger, log_state_transition
from .models import (
    ClosedTrade,
    ExitDecision,
    ExitReason,
    Position,
    PositionStatus,
    TradeOutcome,
)

logger = structlog.get_logger(__name__)
state_logger = get_state_logger(__name__)


def realized_pnl(position: Position, exit_price: float) -> float:
    move = exit_price - position.entry_price
    return (move if position.is_long else -move) * position.quantity


def classify_outcome(position: Position, decision: ExitDecision, pnl: float) -> TradeOutcome:
    """
    Profit/loss classification for the ledger.

    Trailing-stop exits are classified by where the trailing stop sat
    relative to the original stop; every other exit by its realized P&L.
    """
    if decision.reason == ExitReason.TRAILING_STOP and position.trailing_stop is not None:
        if position.is_long:
            beyond = position.trailing_stop > position.stop_loss
        else:
            beyond = position.trailing_stop < position.stop_loss
        return TradeOutcome.PROFIT if beyond else TradeOutcome.LOSS
    return TradeOutcome.PROFIT if pnl > 0 else TradeOutcome.LOSS


class PositionTransitionHandler:
    """Applies validated OPEN → CLOSED transitions."""

    def __init__(self) -> None:
        self.logger = logger

    def _validate_close(self, position: Position, decision: ExitDecision, closed_at: datetime) -> None:
        if position.status != PositionStatus.OPEN:
            raise StateTransitionError(
                f"Position {position.position_id} is already closed",
                current_state=position.status.value,
                attempted_transition=f"CLOSED:{decision.reason.value}",
            )

        if closed_at < position.opened_at:
            raise TemporalDataError(
                "Close timestamp precedes open timestamp",
                timestamp=closed_at,
                expected_after=position.opened_at,
                context={"position_id": position.position_id},
            )

    def close(self, position: Position, decision: ExitDecision, closed_at: datetime) -> ClosedTrade:
        """Close a position and return its ledger record."""
        self._validate_close(position, decision, closed_at)

        pnl = realized_pnl(position, decision.exit_price)
        outcome = classify_outcome(position, decision, pnl)

        position.status = PositionStatus.CLOSED
        position.exit_reason = decision.reason
        position.exit_pending = False
        position.last_value = decision.exit_price

        signal = position.signal
        trade = ClosedTrade(
            position_id=position.position_id,
            symbol=position.symbol,
            side=position.side,
            entry_price=position.entry_price,
            exit_price=decision.exit_price,
            quantity=position.quantity,
            stop_loss=position.stop_loss,
            opened_at=position.opened_at,
            closed_at=closed_at,
            realized_pnl=pnl,
            exit_reason=decision.reason,
            outcome=outcome,
            detail=decision.detail,
            signal_confidence=signal.confidence if signal else 0.0,
            signal_quality=signal.quality.value if signal else None,
        )

        log_state_transition(
            state_logger,
            position_id=position.position_id,
            from_state=PositionStatus.OPEN.value,
            to_state=PositionStatus.CLOSED.value,
            trigger=decision.reason.value,
            context={
                "detail": decision.detail,
                "exit_price": decision.exit_price,
                "realized_pnl": round(pnl, 4),
                "outcome": outcome.value,
            },
        )
        return trade


transition_handler = PositionTransitionHandler()
