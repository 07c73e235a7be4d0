"""
Composite signal synthesis.

Blends the accepted gate outputs into one confidence value, a quality tier,
an action and the trade parameters derived from the volatility unit.
"""

from datetime import datetime

from ..config.defaults import StrategyConfig
from ..models.snapshots import GammaRisk, LiquidityProfile, TrendDirection, VolatilityRegime
from .models import (
    Action,
    ConfluenceZone,
    EntryTriggerResult,
    MarketConditionResult,
    RiskAssessmentResult,
    SignalQuality,
    StrategySignal,
    TrendResult,
)

GAMMA_RISK_SCORES = {GammaRisk.LOW: 1.0, GammaRisk.MEDIUM: 0.7}
LIQUIDITY_SCORES = {LiquidityProfile.LIQUID: 1.0, LiquidityProfile.MODERATE: 0.7}
VOLATILITY_SCORES = {VolatilityRegime.NORMAL: 1.0, VolatilityRegime.LOW: 0.9}
FALLBACK_SCORE = 0.4
FALLBACK_VOLATILITY_SCORE = 0.6

HIGH_GAMMA_WARNING = "High gamma risk environment"
NO_ZONES_WARNING = "No significant confluence zones identified"


def component_scores(
    market: MarketConditionResult,
    trend: TrendResult,
    entry: EntryTriggerResult,
    risk: RiskAssessmentResult
) -> dict[str, float]:
    """Per-component scores in [0, 1], keyed like IndicatorWeights fields."""
    gamma_risk = market.gamma.gamma_risk if market.gamma else GammaRisk.EXTREME
    profile = market.liquidity.liquidity_profile if market.liquidity else LiquidityProfile.ILLIQUID
    regime = risk.volatility.volatility_regime if risk.volatility else VolatilityRegime.EXTREME
    trend_level = trend.trend.confluence_level if trend.trend else 0.0

    return {
        "gamma": GAMMA_RISK_SCORES.get(gamma_risk, FALLBACK_SCORE),
        "trend": min(1.0, max(0.0, trend_level)),
        "liquidity": LIQUIDITY_SCORES.get(profile, FALLBACK_SCORE),
        "pattern": 1.0 if entry.qualifying_setups else 0.5,
        "volatility": VOLATILITY_SCORES.get(regime, FALLBACK_VOLATILITY_SCORE),
    }


def composite_confidence(scores: dict[str, float], config: StrategyConfig) -> float:
    """Weighted sum of component scores, clamped to [0, 1]."""
    weights = config.weights
    total = (
        weights.gamma * scores["gamma"]
        + weights.trend * scores["trend"]
        + weights.liquidity * scores["liquidity"]
        + weights.pattern * scores["pattern"]
        + weights.volatility * scores["volatility"]
    )
    return min(1.0, max(0.0, total))


def classify_quality(confidence: float, zone_count: int, config: StrategyConfig) -> SignalQuality:
    params = config.signal
    if confidence > params.excellent_confidence and zone_count >= params.excellent_min_zones:
        return SignalQuality.EXCELLENT
    if confidence > params.good_confidence:
        return SignalQuality.GOOD
    if confidence > params.fair_confidence:
        return SignalQuality.FAIR
    return SignalQuality.POOR


def synthesize_signal(
    market: MarketConditionResult,
    trend: TrendResult,
    entry: EntryTriggerResult,
    risk: RiskAssessmentResult,
    zones: tuple[ConfluenceZone, ...],
    current_price: float,
    timestamp: datetime,
    config: StrategyConfig
) -> StrategySignal:
    """Build the final signal from four accepted gate results."""
    warnings = list(risk.warnings)
    if market.gamma is not None and market.gamma.gamma_risk == GammaRisk.HIGH:
        warnings.append(HIGH_GAMMA_WARNING)
    if not zones:
        warnings.append(NO_ZONES_WARNING)

    reasoning = [
        ("market_condition", market.reason),
        ("trend", trend.reason),
        ("entry_trigger", entry.reason),
        ("risk_assessment", risk.reason),
    ]

    action = Action.NO_TRADE
    if entry.entry_level is not None:
        if trend.direction == TrendDirection.BULLISH:
            action = Action.BUY
        elif trend.direction == TrendDirection.BEARISH:
            action = Action.SELL

    if action == Action.NO_TRADE or risk.volatility is None:
        if action == Action.NO_TRADE:
            reason = f"No directional bias (trend {trend.direction.value})"
        else:
            reason = "No volatility snapshot to size stops and targets"
        reasoning.append(("final_decision", reason))
        return StrategySignal.no_trade(
            current_price=current_price,
            timestamp=timestamp,
            reason=reason,
            warnings=tuple(warnings),
            reasoning=tuple(reasoning),
            confluence_zones=zones,
        )

    confidence = composite_confidence(component_scores(market, trend, entry, risk), config)
    quality = classify_quality(confidence, len(zones), config)

    volatility = risk.volatility
    atr = volatility.atr
    sign = 1.0 if action == Action.BUY else -1.0
    entry_price = entry.entry_level

    reason = f"{action.value} signal with {quality.value} quality"
    reasoning.append(("final_decision", reason))

    return StrategySignal(
        action=action,
        confidence=confidence,
        quality=quality,
        entry_price=entry_price,
        stop_loss=entry_price - sign * atr * volatility.dynamic_stop_multiplier,
        target1=entry_price + sign * atr * config.signal.target1_atr_multiple,
        target2=entry_price + sign * atr * config.signal.target2_atr_multiple,
        position_size=risk.position_size,
        max_risk=volatility.max_risk_per_trade,
        current_price=current_price,
        timestamp=timestamp,
        confluence_zones=zones,
        warnings=tuple(warnings),
        reason=reason,
        direction=trend.direction,
        reasoning=tuple(reasoning),
    )
