"""
Signal confluence pipeline.

Runs the four gates in order, short-circuiting to NO_TRADE on the first
rejection, then detects confluence zones and synthesizes the final signal.
Given identical snapshots, price and configuration the pipeline always
returns an identical signal.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import structlog

from ..config.defaults import StrategyConfig
from ..events import EventBus, GateEvaluated, SignalGenerated, ZoneFormed
from ..logging.config import get_gating_logger, log_gate_decision
from ..models.snapshots import IndicatorBundle
from .confluence import collect_levels, detect_zones
from .gates import (
    evaluate_entry_trigger,
    evaluate_market_condition,
    evaluate_risk,
    evaluate_trend,
)
from .models import GateResult, StrategySignal
from .synthesizer import synthesize_signal

logger = structlog.get_logger(__name__)
gating_logger = get_gating_logger(__name__)


@dataclass(frozen=True)
class PipelineResult:
    signal: StrategySignal
    gate_results: tuple[GateResult, ...]


class SignalPipeline:
    """Four-gate pipeline parameterized by one immutable configuration."""

    def __init__(self, config: StrategyConfig, event_bus: Optional[EventBus] = None) -> None:
        self.config = config
        self.event_bus = event_bus

    def evaluate(
        self,
        bundle: IndicatorBundle,
        current_price: float,
        timestamp: datetime,
        history_bars: int
    ) -> StrategySignal:
        return self.run(bundle, current_price, timestamp, history_bars).signal

    def run(
        self,
        bundle: IndicatorBundle,
        current_price: float,
        timestamp: datetime,
        history_bars: int
    ) -> PipelineResult:
        """Evaluate all gates and return the signal with every gate result produced."""
        config = self.config
        results: list[GateResult] = []

        market = evaluate_market_condition(bundle, history_bars, config)
        self._record_gate(market, timestamp, results)
        if not market.accepted:
            return self._rejected(market, results, current_price, timestamp)

        trend = evaluate_trend(bundle, market, current_price, config)
        self._record_gate(trend, timestamp, results)
        if not trend.accepted:
            return self._rejected(trend, results, current_price, timestamp)

        entry = evaluate_entry_trigger(bundle, trend, current_price, config)
        self._record_gate(entry, timestamp, results)
        if not entry.accepted:
            return self._rejected(entry, results, current_price, timestamp)

        risk = evaluate_risk(bundle, config)
        self._record_gate(risk, timestamp, results)
        if not risk.accepted:
            return self._rejected(risk, results, current_price, timestamp)

        levels = collect_levels(market, trend, entry, config)
        zones = detect_zones(levels, current_price, config)
        for zone in zones:
            self._emit(ZoneFormed(timestamp=timestamp, zone=zone))

        signal = synthesize_signal(market, trend, entry, risk, zones, current_price, timestamp, config)

        logger.info(
            "Signal synthesized",
            action=signal.action.value,
            confidence=round(signal.confidence, 4),
            quality=signal.quality.value,
            entry_price=signal.entry_price,
            zone_count=len(zones),
        )
        self._emit(SignalGenerated(timestamp=timestamp, signal=signal))
        return PipelineResult(signal=signal, gate_results=tuple(results))

    def _record_gate(self, result: GateResult, timestamp: datetime, results: list[GateResult]) -> None:
        results.append(result)
        log_gate_decision(
            gating_logger,
            gate_name=result.gate.value,
            passed=result.accepted,
            reason=result.reason,
        )
        self._emit(GateEvaluated(
            timestamp=timestamp,
            gate=result.gate,
            accepted=result.accepted,
            reason=result.reason,
        ))

    def _rejected(
        self,
        rejection: GateResult,
        results: list[GateResult],
        current_price: float,
        timestamp: datetime
    ) -> PipelineResult:
        reasoning = tuple((r.gate.value, r.reason) for r in results)
        reasoning += (("final_decision", f"Rejected at {rejection.gate.value}"),)
        signal = StrategySignal.no_trade(
            current_price=current_price,
            timestamp=timestamp,
            reason=rejection.reason,
            rejected_gate=rejection.gate,
            reasoning=reasoning,
        )
        self._emit(SignalGenerated(timestamp=timestamp, signal=signal))
        return PipelineResult(signal=signal, gate_results=tuple(results))

    def _emit(self, event) -> None:
        if self.event_bus is not None:
            self.event_bus.emit(event)
