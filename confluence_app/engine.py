"""
Session engine: the per-tick driver.

Processes bars strictly in time order. Within one tick:

1. roll the session on a calendar-date change
2. resolve the five indicator snapshots for this bar
3. reconcile broker fills (when trading through a broker)
4. mark open positions and check session drawdown; a breach cancels
   unfilled entries, force-closes everything and halts the session. Until
   the session rolls, every later tick keeps force-closing what is left
5. otherwise run the exit policy over every open position
6. governor pre-check → signal pipeline → governor approval → open/submit

Exits always resolve before the entry decision, so risk freed by a close
is visible to the same tick's entry.
"""

from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

import structlog

from .broker.base import Broker
from .broker.executor import OrderExecutor
from .config.defaults import StrategyConfig
from .config.loader import load_strategy_config
from .errors import DataQualityError, RecoverableError, TemporalDataError
from .events import EmergencyStopTriggered, EntryRejected, EventBus, SessionReset
from .indicators.base import IndicatorSuite
from .logging.config import get_gating_logger
from .models.snapshots import Bar, IndicatorBundle, SnapshotKind
from .risk.governor import PortfolioRiskGovernor
from .signals.models import StrategySignal
from .signals.pipeline import SignalPipeline
from .state.models import ClosedTrade, ExitDecision, ExitReason, MarkContext, PortfolioState, Position
from .state.runtime import PositionRuntimeManager
from .utils.time import session_date

logger = structlog.get_logger(__name__)
gating_logger = get_gating_logger(__name__)

NO_INDICATORS_REASON = "no indicator source configured"


@dataclass(frozen=True)
class MarketTick:
    """
    One bar of input.

    ``instrument_price`` is the mark of the traded contract (for 0DTE options,
    the premium); it is the fill price for new entries and the default mark
    for open positions. ``marks`` overrides the mark per position id.
    ``equity`` overrides the computed account equity for the drawdown check.
    """
    bar: Bar
    snapshots: Optional[IndicatorBundle] = None
    instrument_price: Optional[float] = None
    marks: Mapping[str, float] = field(default_factory=dict)
    equity: Optional[float] = None
    symbol: Optional[str] = None


@dataclass
class TickResult:
    timestamp: datetime
    signal: Optional[StrategySignal] = None
    opened: list[Position] = field(default_factory=list)
    closed: list[ClosedTrade] = field(default_factory=list)
    rejections: list[str] = field(default_factory=list)
    emergency: bool = False
    session_reset: bool = False
    equity: float = 0.0


class SessionEngine:
    """
    Drives the signal pipeline and position lifecycle for one session.

    Each engine owns its own PortfolioState; engines never share state, so
    independent backtests may run side by side in separate processes.
    """

    def __init__(
        self,
        config: Optional[StrategyConfig] = None,
        indicators: Optional[IndicatorSuite] = None,
        broker: Optional[Broker] = None,
        event_bus: Optional[EventBus] = None,
        config_dir: Optional[str] = None,
        preset: Optional[str] = None,
    ) -> None:
        self.logger = logger
        self.gating_logger = gating_logger

        if config is None:
            config = load_strategy_config(Path(config_dir) if config_dir else None, preset)
        self.config = config

        self.event_bus = event_bus or EventBus()
        self.indicators = indicators
        self.executor = OrderExecutor(broker) if broker is not None else None

        self.governor = PortfolioRiskGovernor(config)
        self.pipeline = SignalPipeline(config, self.event_bus)
        self.runtime = PositionRuntimeManager(
            config, self.governor, event_bus=self.event_bus, executor=self.executor
        )

        self.history: deque[Bar] = deque(maxlen=config.session.history_window_size)
        self._last_bar_ts: Optional[datetime] = None
        self._bars_seen = 0

        self.logger.info(
            "Session engine initialized",
            symbol=config.session.symbol,
            live=self.executor is not None,
            max_concurrent_positions=config.portfolio.max_concurrent_positions,
        )

    @property
    def state(self) -> PortfolioState:
        return self.governor.state

    @property
    def closed_trades(self) -> list[ClosedTrade]:
        return self.state.closed_trades

    def process_tick(self, tick: MarketTick) -> TickResult:
        """Process one bar; see the module docstring for the ordering."""
        bar = tick.bar
        ts = bar.timestamp

        if self._last_bar_ts is not None and ts <= self._last_bar_ts:
            raise TemporalDataError(
                "Bars must arrive in strictly increasing time order",
                timestamp=ts,
                expected_after=self._last_bar_ts,
            )

        if tick.snapshots is not None and tick.snapshots.timestamp not in (None, ts):
            raise TemporalDataError(
                "Indicator snapshots are not from this bar",
                timestamp=tick.snapshots.timestamp,
                context={"bar_timestamp": ts.isoformat()},
            )

        self._last_bar_ts = ts
        self.history.append(bar)
        self._bars_seen += 1
        result = TickResult(timestamp=ts)

        result.session_reset = self._roll_session(tick)
        bundle = self._resolve_snapshots(tick)

        if self.executor is not None:
            opened, closed = self.runtime.apply_fills(self.executor.poll(), ts)
            result.opened.extend(opened)
            result.closed.extend(closed)

        marks = self._build_marks(tick, bundle)
        equity = self._equity(tick, marks)
        drawdown = self.governor.check_drawdown(equity)

        if drawdown is not None and not self.state.emergency_active:
            result.emergency = True
            self.governor.halt(f"Emergency drawdown {drawdown * 100:.2f}%", drawdown=drawdown)
            cancelled = self.runtime.cancel_pending_entries()
            closed = self.runtime.emergency_close_all(marks, drawdown, ts)
            result.closed.extend(closed)
            self.event_bus.emit(EmergencyStopTriggered(
                timestamp=ts,
                drawdown=drawdown,
                positions_closed=len(closed),
                entries_cancelled=cancelled,
            ))
        elif self.state.emergency_active:
            # Irreversible until the session rolls, even if equity recovers
            result.closed.extend(self.runtime.emergency_close_all(
                marks, self.state.emergency_drawdown, ts
            ))
        else:
            result.closed.extend(self.runtime.update_positions(marks))

        self._evaluate_entry(tick, bundle, result)

        self.governor.consistency_check()
        result.equity = self._equity(tick, self._build_marks(tick, bundle))
        return result

    def run(self, ticks) -> list[TickResult]:
        """Process an iterable of ticks, skipping bars with data-quality problems."""
        results = []
        for tick in ticks:
            try:
                results.append(self.process_tick(tick))
            except DataQualityError as e:
                self.logger.warning(
                    "Skipping tick with data quality issue",
                    error=str(e),
                    error_type=type(e).__name__,
                    context=e.context,
                )
            except RecoverableError as e:
                self.logger.warning(
                    "Recoverable error while processing tick",
                    error=str(e),
                    error_type=type(e).__name__,
                )
        return results

    def flatten(self, timestamp: datetime, marks: Optional[Mapping[str, float]] = None) -> list[ClosedTrade]:
        """Close every open position at its latest mark (end of data)."""
        closed = []
        for position in self.runtime.open_positions():
            value = (marks or {}).get(position.position_id, position.last_value)
            decision = ExitDecision(
                reason=ExitReason.TIME_EXIT,
                exit_price=value if value is not None else position.entry_price,
                detail="Flattened at end of data",
            )
            closed.append(self.runtime.close_position(position, decision, max(timestamp, position.opened_at)))
        return closed

    def current_equity(self) -> float:
        return self.governor.current_equity(self.state.unrealized_pnl({}))

    def _roll_session(self, tick: MarketTick) -> bool:
        ts = tick.bar.timestamp
        today = session_date(ts, self.config.session.timezone)
        if self.state.session_date == today:
            return False

        equity = tick.equity if tick.equity is not None else self.current_equity()
        if not self.governor.roll_session(ts, equity):
            return False

        self.event_bus.emit(SessionReset(
            timestamp=ts,
            session_date=today,
            opening_equity=equity,
        ))
        return True

    def _resolve_snapshots(self, tick: MarketTick) -> IndicatorBundle:
        if tick.snapshots is not None:
            return tick.snapshots

        if self.indicators is None:
            return IndicatorBundle(failures=tuple((kind, NO_INDICATORS_REASON) for kind in SnapshotKind))

        return self.indicators.compute(list(self.history), self.config)

    def _build_marks(self, tick: MarketTick, bundle: IndicatorBundle) -> dict[str, MarkContext]:
        default_value = tick.instrument_price if tick.instrument_price is not None else tick.bar.close
        regime = bundle.volatility.volatility_regime if bundle.volatility is not None else None

        return {
            position_id: MarkContext(
                timestamp=tick.bar.timestamp,
                value=tick.marks.get(position_id, default_value),
                volatility_regime=regime,
            )
            for position_id in self.state.open_positions
        }

    def _equity(self, tick: MarketTick, marks: dict[str, MarkContext]) -> float:
        if tick.equity is not None:
            return tick.equity
        values = {pid: mark.value for pid, mark in marks.items()}
        return self.governor.current_equity(self.state.unrealized_pnl(values))

    def _evaluate_entry(self, tick: MarketTick, bundle: IndicatorBundle, result: TickResult) -> None:
        ts = tick.bar.timestamp

        pre_check = self.governor.pre_entry_check(ts)
        if not pre_check.approved:
            self._reject(result, ts, "pre_entry", pre_check.reason)
            return

        signal = self.pipeline.evaluate(bundle, tick.bar.close, ts, self._bars_seen)
        result.signal = signal
        if not signal.is_actionable:
            return

        fill_price = tick.instrument_price if tick.instrument_price is not None else tick.bar.close
        approval = self.governor.approve_signal(signal, self.runtime.plan_risk(signal, fill_price))
        if not approval.approved:
            self._reject(result, ts, "approval", approval.reason)
            return

        self.governor.record_signal(ts)

        regime = bundle.volatility.volatility_regime if bundle.volatility is not None else None

        if self.executor is None:
            result.opened.append(self.runtime.open_position(
                signal=signal,
                fill_price=fill_price,
                opened_at=ts,
                symbol=tick.symbol,
                volatility_regime=regime,
            ))
            return

        if not self.runtime.submit_entry(signal, ts, symbol=tick.symbol, volatility_regime=regime):
            self._reject(result, ts, "broker", "Entry order submission failed")

    def _reject(self, result: TickResult, ts: datetime, stage: str, reason: str) -> None:
        result.rejections.append(reason)
        self.gating_logger.info("Entry rejected", stage=stage, reason=reason)
        self.event_bus.emit(EntryRejected(timestamp=ts, stage=stage, reason=reason))
