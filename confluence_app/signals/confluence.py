"""
Confluence zone detection.

Price levels surfaced by the first three gates are tagged with their
source and weight, then clustered: a level plus every later level within
the relative tolerance of it forms a candidate zone at the cluster mean.
"""

from collections.abc import Sequence
from typing import Optional

import structlog

from ..config.defaults import StrategyConfig
from .models import (
    ConfluenceZone,
    EntryTriggerResult,
    LevelSource,
    MarketConditionResult,
    TrendResult,
    WeightedLevel,
    ZoneStrength,
)

logger = structlog.get_logger(__name__)

STRONG_MIN_MEMBERS = 4
STRONG_MIN_WEIGHT = 0.8
MODERATE_MIN_MEMBERS = 3
MODERATE_MIN_WEIGHT = 0.6


def collect_levels(
    market: MarketConditionResult,
    trend: TrendResult,
    entry: Optional[EntryTriggerResult],
    config: StrategyConfig
) -> list[WeightedLevel]:
    """Gather weighted levels in a fixed source order."""
    weights = config.weights
    params = config.confluence
    levels: list[WeightedLevel] = []

    if market.gamma is not None:
        for price in market.gamma.support_levels:
            levels.append(WeightedLevel(price, LevelSource.GEX_SUPPORT, weights.gamma))
        for price in market.gamma.resistance_levels:
            levels.append(WeightedLevel(price, LevelSource.GEX_RESISTANCE, weights.gamma))

    if market.liquidity is not None:
        liquidity = market.liquidity
        levels.append(WeightedLevel(
            liquidity.poc, LevelSource.VALUE_AREA_POC,
            weights.liquidity * params.poc_weight_multiplier
        ))
        levels.append(WeightedLevel(liquidity.value_area_high, LevelSource.VALUE_AREA_VAH, weights.liquidity))
        levels.append(WeightedLevel(liquidity.value_area_low, LevelSource.VALUE_AREA_VAL, weights.liquidity))

    if trend.trend is not None:
        levels.append(WeightedLevel(trend.trend.vwap, LevelSource.VWAP, weights.trend))
        for price in trend.trend.entry_zones:
            levels.append(WeightedLevel(
                price, LevelSource.VWAP_ENTRY_ZONE,
                weights.trend * params.entry_zone_weight_multiplier
            ))

    if entry is not None and entry.entry_level is not None:
        levels.append(WeightedLevel(entry.entry_level, LevelSource.FRACTAL_FIB, weights.pattern))

    return [level for level in levels if level.price > 0]


def classify_strength(member_count: int, total_weight: float) -> ZoneStrength:
    if member_count >= STRONG_MIN_MEMBERS or total_weight >= STRONG_MIN_WEIGHT:
        return ZoneStrength.STRONG
    if member_count >= MODERATE_MIN_MEMBERS or total_weight >= MODERATE_MIN_WEIGHT:
        return ZoneStrength.MODERATE
    return ZoneStrength.WEAK


def _build_zone(cluster: list[WeightedLevel], tolerance: float) -> Optional[ConfluenceZone]:
    sources = frozenset(level.source for level in cluster)
    if len(cluster) < 2 or len(sources) < 2:
        return None

    mean = sum(level.price for level in cluster) / len(cluster)
    # Lopsided clusters can drift away from their base level
    if any(abs(level.price - mean) > tolerance * mean for level in cluster):
        return None

    total_weight = sum(level.weight for level in cluster)
    return ConfluenceZone(
        price_level=mean,
        supporting_indicators=sources,
        strength=classify_strength(len(cluster), total_weight),
        confidence=min(1.0, total_weight),
        members=tuple(cluster),
    )


def detect_zones(
    levels: Sequence[WeightedLevel],
    current_price: float,
    config: StrategyConfig
) -> tuple[ConfluenceZone, ...]:
    """
    Cluster levels into at most ``max_zones`` confluence zones.

    Candidates are ordered by confidence (stable), then any zone whose mean
    lies within tolerance of an already kept zone is dropped, so the
    highest-confidence zone of each neighbourhood survives.
    """
    params = config.confluence
    tolerance = params.tolerance

    candidates: list[ConfluenceZone] = []
    for i, base in enumerate(levels):
        cluster = [base]
        for other in levels[i + 1:]:
            if abs(base.price - other.price) / base.price <= tolerance:
                cluster.append(other)

        zone = _build_zone(cluster, tolerance)
        if zone is not None:
            candidates.append(zone)

    candidates.sort(key=lambda z: z.confidence, reverse=True)

    dedup_distance = current_price * tolerance
    kept: list[ConfluenceZone] = []
    for zone in candidates:
        if any(abs(zone.price_level - k.price_level) < dedup_distance for k in kept):
            continue
        kept.append(zone)

    zones = tuple(kept[:params.max_zones])
    logger.debug(
        "Confluence zones detected",
        level_count=len(levels),
        candidate_count=len(candidates),
        zone_count=len(zones),
    )
    return zones
