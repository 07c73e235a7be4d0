"""
The four ordered gates of the signal pipeline.

Every gate is a pure function of snapshots, prior gate output, the current
price and configuration. Gates fail closed: missing snapshots, failed
adapters and insufficient history all become rejections with a specific
reason rather than exceptions.
"""

from typing import Optional

from ..config.defaults import StrategyConfig
from ..models.snapshots import (
    GammaRisk,
    IndicatorBundle,
    PatternSetup,
    PricePosition,
    SnapshotKind,
    TrendDirection,
    TrendQuality,
)
from .models import (
    EntryTriggerResult,
    MarketConditionResult,
    RiskAssessmentResult,
    TrendResult,
)


def _unavailable_reason(bundle: IndicatorBundle, kind: SnapshotKind) -> str:
    failure = bundle.failure_for(kind)
    if failure:
        return f"Indicator failure ({kind.value}): {failure}"
    return f"Missing {kind.value} snapshot"


def evaluate_market_condition(
    bundle: IndicatorBundle,
    history_bars: int,
    config: StrategyConfig
) -> MarketConditionResult:
    """
    Gate 1: gamma regime, gamma risk ceiling and liquidity profile.

    History sufficiency is checked first so that an early-session tick is
    rejected for the right reason.
    """
    params = config.market

    if history_bars < params.min_history_bars:
        return MarketConditionResult.reject(
            f"Insufficient history: {history_bars} bars (need {params.min_history_bars})"
        )

    gamma = bundle.gamma
    if gamma is None:
        return MarketConditionResult.reject(_unavailable_reason(bundle, SnapshotKind.GAMMA))

    if gamma.volatility_regime.value not in params.allowed_gamma_regimes:
        return MarketConditionResult.reject(
            f"Unfavorable gamma regime: {gamma.volatility_regime.value}",
            gamma=gamma,
        )

    ceiling = GammaRisk(params.gamma_risk_ceiling)
    if gamma.gamma_risk.rank >= ceiling.rank:
        if gamma.gamma_risk == GammaRisk.EXTREME:
            reason = "Extreme gamma risk detected"
        else:
            reason = f"Gamma risk {gamma.gamma_risk.value} at or above ceiling {ceiling.value}"
        return MarketConditionResult.reject(reason, gamma=gamma)

    liquidity = bundle.liquidity
    if liquidity is None:
        return MarketConditionResult.reject(
            _unavailable_reason(bundle, SnapshotKind.LIQUIDITY),
            gamma=gamma,
        )

    if liquidity.hvn_count < params.min_hvn_count:
        return MarketConditionResult.reject(
            f"Insufficient liquidity zones: {liquidity.hvn_count} HVNs "
            f"(need {params.min_hvn_count})",
            gamma=gamma,
            liquidity=liquidity,
        )

    if liquidity.lvn_ratio > params.max_lvn_ratio:
        return MarketConditionResult.reject(
            f"Too many low volume zones: {liquidity.lvn_ratio * 100:.1f}% LVNs "
            f"(max {params.max_lvn_ratio * 100:.1f}%)",
            gamma=gamma,
            liquidity=liquidity,
        )

    return MarketConditionResult.accept(
        f"Market conditions favorable: {gamma.volatility_regime.value} regime, "
        f"{gamma.gamma_risk.value} gamma risk, {liquidity.hvn_count} HVNs",
        gamma=gamma,
        liquidity=liquidity,
    )


def derive_direction(
    current_price: float,
    poc: float,
    position: PricePosition,
    trend_tag: TrendDirection
) -> TrendDirection:
    """Three-way agreement of price vs POC, price vs VWAP and the trend tag."""
    price_vs_poc = PricePosition.ABOVE if current_price > poc else PricePosition.BELOW

    if (position == PricePosition.ABOVE and price_vs_poc == PricePosition.ABOVE
            and trend_tag == TrendDirection.BULLISH):
        return TrendDirection.BULLISH
    if (position == PricePosition.BELOW and price_vs_poc == PricePosition.BELOW
            and trend_tag == TrendDirection.BEARISH):
        return TrendDirection.BEARISH
    return TrendDirection.NEUTRAL


def evaluate_trend(
    bundle: IndicatorBundle,
    market: MarketConditionResult,
    current_price: float,
    config: StrategyConfig
) -> TrendResult:
    """Gate 2: trend quality, confluence and directional agreement."""
    params = config.trend

    trend = bundle.trend
    if trend is None:
        return TrendResult.reject(_unavailable_reason(bundle, SnapshotKind.TREND))

    if trend.signal_quality == TrendQuality.LOW:
        return TrendResult.reject("Low trend signal quality", trend=trend)

    if trend.confluence_level < params.min_confluence:
        return TrendResult.reject(
            f"Trend confluence too low: {trend.confluence_level * 100:.1f}% "
            f"(need {params.min_confluence * 100:.1f}%)",
            trend=trend,
        )

    # Gate 1 accepted, so the liquidity snapshot is present
    poc = market.liquidity.poc if market.liquidity is not None else trend.vwap
    direction = derive_direction(current_price, poc, trend.price_position, trend.trend_direction)

    if direction == TrendDirection.NEUTRAL:
        if params.trend_alignment_required:
            return TrendResult.reject(
                "No clear trend alignment between VWAP, POC and trend direction",
                trend=trend,
            )
        direction = trend.trend_direction

    return TrendResult.accept(
        f"Trend conditions favorable: {direction.value}, "
        f"{trend.signal_quality.value} quality",
        trend=trend,
        direction=direction,
    )


def score_setup(
    setup: PatternSetup,
    trend_level: float,
    current_price: float,
    config: StrategyConfig
) -> float:
    """confluence x proximity to trend level x proximity to current price."""
    params = config.entry

    if trend_level <= 0 or current_price <= 0:
        return 0.0

    trend_distance = abs(setup.level - trend_level) / trend_level
    price_distance = abs(setup.level - current_price) / current_price

    trend_proximity = 1.0 - min(1.0, trend_distance * params.trend_proximity_scale)
    price_proximity = 1.0 - min(1.0, price_distance * params.price_proximity_scale)

    return setup.confluence * trend_proximity * price_proximity


def evaluate_entry_trigger(
    bundle: IndicatorBundle,
    trend: TrendResult,
    current_price: float,
    config: StrategyConfig
) -> EntryTriggerResult:
    """Gate 3: pick the best-scoring pattern setup."""
    params = config.entry

    pattern = bundle.pattern
    if pattern is None:
        return EntryTriggerResult.reject(_unavailable_reason(bundle, SnapshotKind.PATTERN))

    qualifying = tuple(s for s in pattern.setups if s.confluence >= params.min_setup_confluence)
    if not qualifying:
        return EntryTriggerResult.reject(
            f"No qualifying pattern setups (need confluence >= {params.min_setup_confluence:.2f})",
            pattern=pattern,
        )

    trend_level = trend.trend.vwap if trend.trend is not None else current_price

    best_setup: Optional[PatternSetup] = None
    best_score = 0.0
    for setup in qualifying:
        score = score_setup(setup, trend_level, current_price, config)
        # Strict comparison keeps the first setup on ties
        if best_setup is None or score > best_score:
            best_setup = setup
            best_score = score

    if best_score < params.min_setup_score:
        return EntryTriggerResult.reject(
            f"No high-confidence setup found (best score: {best_score:.2f}, "
            f"need {params.min_setup_score:.2f})",
            pattern=pattern,
            qualifying_setups=qualifying,
            best_score=best_score,
        )

    return EntryTriggerResult.accept(
        f"Entry setup at {best_setup.level:.2f} (score {best_score:.2f})",
        pattern=pattern,
        qualifying_setups=qualifying,
        best_setup=best_setup,
        best_score=best_score,
    )


def evaluate_risk(bundle: IndicatorBundle, config: StrategyConfig) -> RiskAssessmentResult:
    """Gate 4: volatility regime, stop multiplier and critical warnings."""
    params = config.risk

    volatility = bundle.volatility
    if volatility is None:
        return RiskAssessmentResult.reject(_unavailable_reason(bundle, SnapshotKind.VOLATILITY))

    if volatility.volatility_regime.value in params.excluded_volatility_regimes:
        return RiskAssessmentResult.reject(
            f"Filtered volatility regime: {volatility.volatility_regime.value}",
            volatility=volatility,
        )

    if volatility.dynamic_stop_multiplier > params.max_stop_multiplier:
        return RiskAssessmentResult.reject(
            f"Stop multiplier too high: {volatility.dynamic_stop_multiplier:.1f}x "
            f"(max {params.max_stop_multiplier:.1f}x)",
            volatility=volatility,
        )

    critical = [
        warning for warning in volatility.warnings
        if any(pattern in warning for pattern in params.critical_warning_patterns)
    ]
    if critical:
        return RiskAssessmentResult.reject(
            f"Critical volatility warning: {critical[0]}",
            volatility=volatility,
            warnings=tuple(volatility.warnings),
        )

    if volatility.recommended_position_size <= 0:
        return RiskAssessmentResult.reject(
            "Recommended position size is zero",
            volatility=volatility,
            warnings=tuple(volatility.warnings),
        )

    return RiskAssessmentResult.accept(
        f"Risk within limits: {volatility.volatility_regime.value} volatility, "
        f"{volatility.dynamic_stop_multiplier:.1f}x stop multiplier",
        volatility=volatility,
        position_size=volatility.recommended_position_size,
        warnings=tuple(volatility.warnings),
    )
