"""
Portfolio risk governor.

Owns the session's PortfolioState counters and vetoes new entries on
capacity, pacing, signal quality and daily risk budget. It also watches
session drawdown; a breach halts new entries for the rest of the session
and tells the driver to force-close everything.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import structlog

from ..config.defaults import StrategyConfig
from ..logging.config import get_risk_logger
from ..signals.models import StrategySignal
from ..state.models import PortfolioState, Position
from ..utils.time import minutes_between, session_date

logger = structlog.get_logger(__name__)
risk_logger = get_risk_logger(__name__)

RISK_TOLERANCE = 1e-6


@dataclass(frozen=True)
class GovernorDecision:
    approved: bool
    reason: str

    @classmethod
    def approve(cls, reason: str = "Approved") -> "GovernorDecision":
        return cls(approved=True, reason=reason)

    @classmethod
    def veto(cls, reason: str) -> "GovernorDecision":
        return cls(approved=False, reason=reason)


class PortfolioRiskGovernor:
    """Session risk limits for one engine."""

    def __init__(self, config: StrategyConfig, state: Optional[PortfolioState] = None) -> None:
        self.config = config
        self.state = state or PortfolioState(
            session_opening_equity=config.portfolio.account_balance
        )
        self.logger = risk_logger

    @property
    def daily_risk_limit(self) -> float:
        balance = self.state.session_opening_equity or self.config.portfolio.account_balance
        return balance * self.config.portfolio.max_daily_risk_fraction

    def roll_session(self, timestamp: datetime, equity: float) -> bool:
        """
        Reset session counters when the tick's calendar date changes.

        Returns True if a new session started. Open positions carry over with
        their risk; everything else, including an emergency halt, resets.
        """
        today = session_date(timestamp, self.config.session.timezone)
        state = self.state
        if state.session_date == today:
            return False

        previous = state.session_date
        state.session_date = today
        state.session_opening_equity = equity
        state.daily_risk_consumed = 0.0
        state.trades_opened_today = 0
        state.realized_pnl_today = 0.0
        state.last_signal_at = None
        state.halted = False
        state.halt_reason = None
        state.emergency_drawdown = None

        self.logger.info(
            "Session rolled",
            previous_session=previous.isoformat() if previous else None,
            session_date=today.isoformat(),
            opening_equity=equity,
            carried_positions=state.position_count,
        )
        return True

    def pre_entry_check(self, timestamp: datetime) -> GovernorDecision:
        """Checks that must pass before the pipeline is even invoked."""
        state = self.state
        portfolio = self.config.portfolio

        if state.halted:
            return self._veto(f"Trading halted for session: {state.halt_reason}")

        if state.committed_slots >= portfolio.max_concurrent_positions:
            return self._veto(
                f"Max concurrent positions reached: {state.committed_slots} "
                f">= {portfolio.max_concurrent_positions}"
            )

        if portfolio.max_trades_per_day and state.trades_opened_today >= portfolio.max_trades_per_day:
            return self._veto(
                f"Daily trade limit reached: {state.trades_opened_today} "
                f">= {portfolio.max_trades_per_day}"
            )

        spacing = self.config.session.min_signal_spacing_minutes
        if state.last_signal_at is not None and spacing > 0:
            elapsed = minutes_between(state.last_signal_at, timestamp)
            if elapsed < spacing:
                return self._veto(
                    f"Signal spacing: {elapsed:.1f} min since last signal (min {spacing} min)"
                )

        return GovernorDecision.approve()

    def approve_signal(
        self,
        signal: StrategySignal,
        proposed_risk: Optional[float] = None
    ) -> GovernorDecision:
        """
        Checks on the pipeline's output before it becomes a position.

        ``proposed_risk`` is the risk of the position that would actually be
        opened; it defaults to the signal's own ``|entry - stop| x size``.
        """
        portfolio = self.config.portfolio

        if not signal.is_actionable:
            return GovernorDecision.veto(f"No trade: {signal.reason}")

        if signal.confidence < portfolio.min_signal_confidence:
            return self._veto(
                f"Signal confidence {signal.confidence:.2f} below minimum "
                f"{portfolio.min_signal_confidence:.2f}"
            )

        if signal.quality.value not in portfolio.accepted_qualities:
            return self._veto(f"Signal quality {signal.quality.value} not accepted")

        risk = signal.risk_amount if proposed_risk is None else proposed_risk
        limit = self.daily_risk_limit
        if self.state.daily_risk_consumed + risk > limit + RISK_TOLERANCE:
            return self._veto(
                f"Daily risk budget exceeded: {self.state.daily_risk_consumed:.2f} + {risk:.2f} "
                f"> {limit:.2f}"
            )

        return GovernorDecision.approve(f"Approved {signal.action.value} ({risk:.2f} at risk)")

    def record_signal(self, timestamp: datetime) -> None:
        """Stamp the signal-spacing clock for an actionable signal."""
        self.state.last_signal_at = timestamp

    def register_open(self, position: Position) -> None:
        state = self.state
        risk = position.risk
        state.open_positions[position.position_id] = position
        state.outstanding_risk += risk
        state.daily_risk_consumed += risk
        state.trades_opened_today += 1

        self.logger.info(
            "Position registered",
            position_id=position.position_id,
            risk=round(risk, 4),
            outstanding_risk=round(state.outstanding_risk, 4),
            daily_risk_consumed=round(state.daily_risk_consumed, 4),
        )

    def register_close(self, position: Position, realized_pnl: float) -> None:
        state = self.state
        if state.open_positions.pop(position.position_id, None) is None:
            self.logger.warning("Close for unknown position", position_id=position.position_id)
            return

        state.outstanding_risk -= position.risk
        if not state.open_positions:
            # Clear accumulated float drift once flat
            state.outstanding_risk = 0.0
        state.realized_pnl_today += realized_pnl

    def current_equity(self, unrealized_pnl: float) -> float:
        state = self.state
        return state.session_opening_equity + state.realized_pnl_today + unrealized_pnl

    def drawdown(self, equity: float) -> float:
        opening = self.state.session_opening_equity
        if opening <= 0:
            return 0.0
        return (equity - opening) / opening

    def check_drawdown(self, equity: float) -> Optional[float]:
        """Return the drawdown if it breaches the emergency threshold, else None."""
        drawdown = self.drawdown(equity)
        if drawdown <= self.config.portfolio.emergency_drawdown_fraction:
            self.logger.critical(
                "Emergency drawdown breached",
                equity=equity,
                opening_equity=self.state.session_opening_equity,
                drawdown=round(drawdown, 6),
                threshold=self.config.portfolio.emergency_drawdown_fraction,
            )
            return drawdown
        return None

    def halt(self, reason: str, drawdown: Optional[float] = None) -> None:
        """Stop new entries until the next session; a drawdown marks an emergency stop."""
        self.state.halted = True
        self.state.halt_reason = reason
        if drawdown is not None:
            self.state.emergency_drawdown = drawdown
        self.logger.warning("Trading halted", reason=reason, drawdown=drawdown)

    def consistency_check(self) -> bool:
        """Compare incremental outstanding risk with a full recomputation."""
        expected = self.state.recompute_outstanding_risk()
        if abs(expected - self.state.outstanding_risk) > RISK_TOLERANCE * max(1.0, expected):
            self.logger.error(
                "Outstanding risk mismatch",
                tracked=self.state.outstanding_risk,
                recomputed=expected,
            )
            return False
        return True

    def _veto(self, reason: str) -> GovernorDecision:
        self.logger.info("Entry vetoed", reason=reason)
        return GovernorDecision.veto(reason)
