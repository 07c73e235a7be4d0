"""
Position lifecycle and portfolio state models.

Positions are the only mutable trading records: their trailing stop and
high-water mark move every tick while OPEN. Once CLOSED a position is
frozen into a ClosedTrade ledger record and never reopened.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from ..models.snapshots import VolatilityRegime
from ..signals.models import Action, StrategySignal


class PositionStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class PositionSide(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"

    @classmethod
    def from_action(cls, action: Action) -> "PositionSide":
        if action == Action.BUY:
            return cls.LONG
        if action == Action.SELL:
            return cls.SHORT
        raise ValueError(f"No position side for action {action.value}")


class ExitReason(str, Enum):
    """Why a position was closed."""
    PROFIT_TARGET = "PROFIT_TARGET"
    STOP_LOSS = "STOP_LOSS"
    TRAILING_STOP = "TRAILING_STOP"
    TIME_EXIT = "TIME_EXIT"
    VOLATILITY_REGIME_CHANGE = "VOLATILITY_REGIME_CHANGE"
    EMERGENCY_STOP = "EMERGENCY_STOP"


class TradeOutcome(str, Enum):
    PROFIT = "PROFIT"
    LOSS = "LOSS"


@dataclass
class Position:
    """One open trade. ``max_profit_seen`` is the best gain as a fraction of entry."""
    position_id: str
    side: PositionSide
    entry_price: float
    quantity: float
    stop_loss: float
    opened_at: datetime
    symbol: str = ""
    trailing_stop: Optional[float] = None
    trailing_active: bool = False
    max_profit_seen: float = 0.0
    expires_at: Optional[datetime] = None
    entry_volatility_regime: Optional[VolatilityRegime] = None
    status: PositionStatus = PositionStatus.OPEN
    exit_reason: Optional[ExitReason] = None
    exit_pending: bool = False
    last_value: Optional[float] = None
    signal: Optional[StrategySignal] = None

    def __post_init__(self) -> None:
        if self.trailing_stop is None:
            self.trailing_stop = self.stop_loss

    @property
    def is_long(self) -> bool:
        return self.side == PositionSide.LONG

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    @property
    def risk(self) -> float:
        """Original risk: distance from entry to the fixed stop times quantity."""
        return abs(self.entry_price - self.stop_loss) * self.quantity

    def gain_fraction(self, value: float) -> float:
        """Unrealized gain relative to entry, positive when the trade is winning."""
        if self.entry_price == 0:
            return 0.0
        move = (value - self.entry_price) / self.entry_price
        return move if self.is_long else -move

    def unrealized_pnl(self, value: float) -> float:
        move = value - self.entry_price
        return (move if self.is_long else -move) * self.quantity


@dataclass(frozen=True)
class MarkContext:
    """Everything the exit policy may look at for one position on one tick."""
    timestamp: datetime
    value: float
    volatility_regime: Optional[VolatilityRegime] = None


@dataclass(frozen=True)
class TrailingUpdate:
    max_profit_seen: float
    trailing_stop: float
    trailing_active: bool


@dataclass(frozen=True)
class ExitDecision:
    reason: ExitReason
    exit_price: float
    detail: str


@dataclass(frozen=True)
class ExitEvaluation:
    """Result of evaluating one position on one tick."""
    trailing: TrailingUpdate
    decision: Optional[ExitDecision] = None


@dataclass(frozen=True)
class ClosedTrade:
    """Ledger record emitted when a position closes."""
    position_id: str
    symbol: str
    side: PositionSide
    entry_price: float
    exit_price: float
    quantity: float
    stop_loss: float
    opened_at: datetime
    closed_at: datetime
    realized_pnl: float
    exit_reason: ExitReason
    outcome: TradeOutcome
    detail: str
    signal_confidence: float = 0.0
    signal_quality: Optional[str] = None

    @property
    def return_fraction(self) -> float:
        basis = self.entry_price * self.quantity
        return self.realized_pnl / basis if basis else 0.0

    @property
    def hold_minutes(self) -> float:
        return (self.closed_at - self.opened_at).total_seconds() / 60.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "position_id": self.position_id,
            "symbol": self.symbol,
            "side": self.side.value,
            "entry_price": self.entry_price,
            "exit_price": self.exit_price,
            "quantity": self.quantity,
            "stop_loss": self.stop_loss,
            "opened_at": self.opened_at.isoformat(),
            "closed_at": self.closed_at.isoformat(),
            "realized_pnl": self.realized_pnl,
            "exit_reason": self.exit_reason.value,
            "outcome": self.outcome.value,
            "detail": self.detail,
            "signal_confidence": self.signal_confidence,
            "signal_quality": self.signal_quality,
        }


@dataclass
class PortfolioState:
    """
    Session-scoped portfolio aggregate owned by one engine.

    ``outstanding_risk`` is maintained incrementally on open and close;
    ``recompute_outstanding_risk`` exists only for consistency checks.
    """
    open_positions: dict[str, Position] = field(default_factory=dict)
    pending_entries: set[str] = field(default_factory=set)
    outstanding_risk: float = 0.0
    daily_risk_consumed: float = 0.0
    trades_opened_today: int = 0
    session_date: Optional[date] = None
    session_opening_equity: float = 0.0
    realized_pnl_today: float = 0.0
    last_signal_at: Optional[datetime] = None
    halted: bool = False
    halt_reason: Optional[str] = None
    emergency_drawdown: Optional[float] = None
    closed_trades: list[ClosedTrade] = field(default_factory=list)

    @property
    def position_count(self) -> int:
        return len(self.open_positions)

    @property
    def committed_slots(self) -> int:
        """Open positions plus entry orders still awaiting a fill."""
        return len(self.open_positions) + len(self.pending_entries)

    @property
    def emergency_active(self) -> bool:
        """True once a drawdown breach has halted the session."""
        return self.halted and self.emergency_drawdown is not None

    def recompute_outstanding_risk(self) -> float:
        return sum(p.risk for p in self.open_positions.values())

    def unrealized_pnl(self, marks: dict[str, float]) -> float:
        total = 0.0
        for position_id, position in self.open_positions.items():
            value = marks.get(position_id, position.last_value)
            if value is not None:
                total += position.unrealized_pnl(value)
        return total
