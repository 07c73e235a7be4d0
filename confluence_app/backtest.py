"""
Backtest aggregation over a recorded tick stream.

Drives a fresh SessionEngine over the ticks, flattens whatever is still
open at the final bar and summarizes the closed-trade ledger.
"""

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import structlog

from .config.defaults import StrategyConfig
from .engine import MarketTick, SessionEngine, TickResult
from .errors import DataQualityError
from .events import EventBus
from .indicators.base import IndicatorSuite
from .signals.models import StrategySignal
from .state.models import ClosedTrade

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PerformanceSummary:
    total_pnl: float = 0.0
    total_return_percent: float = 0.0
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    average_win: float = 0.0
    average_loss: float = 0.0
    profit_factor: float = 0.0
    max_drawdown: float = 0.0  # Largest peak-to-trough equity decline, as a fraction of the peak
    quality_breakdown: dict[str, int] = field(default_factory=dict)
    exit_reason_breakdown: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_pnl": self.total_pnl,
            "total_return_percent": self.total_return_percent,
            "total_trades": self.total_trades,
            "winning_trades": self.winning_trades,
            "losing_trades": self.losing_trades,
            "win_rate": self.win_rate,
            "average_win": self.average_win,
            "average_loss": self.average_loss,
            "profit_factor": self.profit_factor,
            "max_drawdown": self.max_drawdown,
            "quality_breakdown": dict(self.quality_breakdown),
            "exit_reason_breakdown": dict(self.exit_reason_breakdown),
        }


@dataclass
class BacktestReport:
    trades: list[ClosedTrade]
    signals: list[StrategySignal]
    rejected_entries: list[str]
    equity_curve: list[tuple[datetime, float]]
    summary: PerformanceSummary
    ticks_processed: int = 0
    ticks_skipped: int = 0


def max_drawdown(equity_curve: list[tuple[datetime, float]]) -> float:
    """Largest peak-to-trough decline of the curve, as a positive fraction."""
    peak: Optional[float] = None
    worst = 0.0
    for _, equity in equity_curve:
        if peak is None or equity > peak:
            peak = equity
        if peak and peak > 0:
            worst = max(worst, (peak - equity) / peak)
    return worst


def summarize(
    trades: list[ClosedTrade],
    starting_equity: float,
    equity_curve: list[tuple[datetime, float]],
) -> PerformanceSummary:
    """Compute performance statistics for a closed-trade ledger."""
    if not trades:
        return PerformanceSummary(max_drawdown=max_drawdown(equity_curve))

    total_pnl = sum(t.realized_pnl for t in trades)
    wins = [t.realized_pnl for t in trades if t.realized_pnl > 0]
    losses = [t.realized_pnl for t in trades if t.realized_pnl < 0]

    gross_loss = abs(sum(losses))
    quality = Counter(t.signal_quality or "UNKNOWN" for t in trades)
    reasons = Counter(t.exit_reason.value for t in trades)

    return PerformanceSummary(
        total_pnl=total_pnl,
        total_return_percent=(total_pnl / starting_equity * 100) if starting_equity else 0.0,
        total_trades=len(trades),
        winning_trades=len(wins),
        losing_trades=len(losses),
        win_rate=len(wins) / len(trades),
        average_win=sum(wins) / len(wins) if wins else 0.0,
        average_loss=gross_loss / len(losses) if losses else 0.0,
        profit_factor=sum(wins) / gross_loss if gross_loss > 0 else 0.0,
        max_drawdown=max_drawdown(equity_curve),
        quality_breakdown=dict(quality),
        exit_reason_breakdown=dict(reasons),
    )


class BacktestRunner:
    """Replays ticks through a fresh engine and reports performance."""

    def __init__(
        self,
        config: StrategyConfig,
        indicators: Optional[IndicatorSuite] = None,
        event_bus: Optional[EventBus] = None,
    ) -> None:
        self.config = config
        self.indicators = indicators
        self.event_bus = event_bus
        self.logger = logger

    def run(self, ticks: Iterable[MarketTick]) -> BacktestReport:
        engine = SessionEngine(self.config, indicators=self.indicators, event_bus=self.event_bus)
        starting_equity = self.config.portfolio.account_balance

        signals: list[StrategySignal] = []
        rejected: list[str] = []
        equity_curve: list[tuple[datetime, float]] = []
        processed = 0
        skipped = 0
        last_tick: Optional[MarketTick] = None

        for tick in ticks:
            try:
                result: TickResult = engine.process_tick(tick)
            except DataQualityError as e:
                skipped += 1
                self.logger.warning(
                    "Skipping tick with data quality issue",
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue

            processed += 1
            last_tick = tick
            if result.signal is not None and result.signal.is_actionable:
                signals.append(result.signal)
            rejected.extend(result.rejections)
            equity_curve.append((result.timestamp, result.equity))

        if last_tick is not None and engine.state.open_positions:
            flattened = engine.flatten(last_tick.bar.timestamp, last_tick.marks)
            self.logger.info("Flattened open positions at end of data", count=len(flattened))
            equity_curve.append((last_tick.bar.timestamp, engine.current_equity()))

        trades = list(engine.closed_trades)
        summary = summarize(trades, starting_equity, equity_curve)

        self.logger.info(
            "Backtest complete",
            ticks_processed=processed,
            ticks_skipped=skipped,
            total_trades=summary.total_trades,
            total_pnl=round(summary.total_pnl, 2),
            win_rate=round(summary.win_rate, 4),
        )

        return BacktestReport(
            trades=trades,
            signals=signals,
            rejected_entries=rejected,
            equity_curve=equity_curve,
            summary=summary,
            ticks_processed=processed,
            ticks_skipped=skipped,
        )
