"""
Indicator snapshot records.

Each indicator adapter produces exactly one immutable snapshot per bar.
The five snapshot types form a tagged union (``kind``); the pipeline reads
them and never mutates them.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import ClassVar, Optional, Union

from ..errors import MalformedDataError, TemporalDataError


class SnapshotKind(str, Enum):
    """Tag identifying the indicator a snapshot came from."""
    GAMMA = "gamma"
    LIQUIDITY = "liquidity"
    TREND = "trend"
    PATTERN = "pattern"
    VOLATILITY = "volatility"


class GammaRegime(str, Enum):
    """Dealer hedging regime derived from aggregate gamma exposure."""
    SUPPRESSING = "SUPPRESSING"
    AMPLIFYING = "AMPLIFYING"
    TRANSITIONAL = "TRANSITIONAL"


class GammaRisk(str, Enum):
    """Ordered gamma risk tiers."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    EXTREME = "EXTREME"

    @property
    def rank(self) -> int:
        return _GAMMA_RISK_ORDER.index(self)


_GAMMA_RISK_ORDER = (GammaRisk.LOW, GammaRisk.MEDIUM, GammaRisk.HIGH, GammaRisk.EXTREME)


class LiquidityProfile(str, Enum):
    LIQUID = "LIQUID"
    MODERATE = "MODERATE"
    ILLIQUID = "ILLIQUID"


class TrendDirection(str, Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"


class PricePosition(str, Enum):
    """Where price sits relative to the trend line (VWAP)."""
    ABOVE = "ABOVE"
    BELOW = "BELOW"
    AT = "AT"


class TrendQuality(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class VolatilityRegime(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    EXTREME = "EXTREME"


@dataclass(frozen=True)
class Bar:
    """OHLCV bar of the underlying."""
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    def __post_init__(self) -> None:
        if self.high < self.low:
            raise MalformedDataError(
                "Bar high is below bar low",
                context={"timestamp": self.timestamp.isoformat(), "high": self.high, "low": self.low}
            )


@dataclass(frozen=True)
class GammaSnapshot:
    """Market regime / dealer gamma exposure reading."""
    kind: ClassVar[SnapshotKind] = SnapshotKind.GAMMA

    timestamp: datetime
    volatility_regime: GammaRegime
    gamma_risk: GammaRisk
    support_levels: tuple[float, ...] = ()
    resistance_levels: tuple[float, ...] = ()
    gamma_flip_point: Optional[float] = None
    net_gamma: float = 0.0


@dataclass(frozen=True)
class LiquiditySnapshot:
    """Anchored volume profile reading."""
    kind: ClassVar[SnapshotKind] = SnapshotKind.LIQUIDITY

    timestamp: datetime
    hvn_count: int
    lvn_count: int
    node_count: int
    poc: float
    value_area_high: float
    value_area_low: float
    liquidity_profile: LiquidityProfile

    @property
    def lvn_ratio(self) -> float:
        """Share of volume nodes classified low-volume; 1.0 with no nodes."""
        if self.node_count <= 0:
            return 1.0
        return self.lvn_count / self.node_count


@dataclass(frozen=True)
class TrendSnapshot:
    """Anchored VWAP reading."""
    kind: ClassVar[SnapshotKind] = SnapshotKind.TREND

    timestamp: datetime
    vwap: float
    trend_direction: TrendDirection
    price_position: PricePosition
    signal_quality: TrendQuality
    confluence_level: float
    entry_zones: tuple[float, ...] = ()


@dataclass(frozen=True)
class PatternSetup:
    """One fractal/retracement entry candidate."""
    level: float
    confluence: float
    fib_percentage: float = 0.618
    fractal_type: str = ""


@dataclass(frozen=True)
class PatternSnapshot:
    """Fractal/retracement reading."""
    kind: ClassVar[SnapshotKind] = SnapshotKind.PATTERN

    timestamp: datetime
    setups: tuple[PatternSetup, ...] = ()


@dataclass(frozen=True)
class VolatilitySnapshot:
    """Volatility-based stop sizing reading."""
    kind: ClassVar[SnapshotKind] = SnapshotKind.VOLATILITY

    timestamp: datetime
    atr: float
    volatility_regime: VolatilityRegime
    dynamic_stop_multiplier: float
    recommended_position_size: float
    max_risk_per_trade: float = 0.0
    warnings: tuple[str, ...] = ()


IndicatorSnapshot = Union[
    GammaSnapshot, LiquiditySnapshot, TrendSnapshot, PatternSnapshot, VolatilitySnapshot
]


@dataclass(frozen=True)
class IndicatorBundle:
    """
    The five snapshots for one bar.

    A missing snapshot means its adapter failed for this bar; ``failures``
    maps the snapshot kind to the error message. All present snapshots must
    share one timestamp, so no look-ahead mixing across bars can occur.
    """
    gamma: Optional[GammaSnapshot] = None
    liquidity: Optional[LiquiditySnapshot] = None
    trend: Optional[TrendSnapshot] = None
    pattern: Optional[PatternSnapshot] = None
    volatility: Optional[VolatilitySnapshot] = None
    failures: tuple[tuple[SnapshotKind, str], ...] = ()

    def __post_init__(self) -> None:
        stamps = {s.timestamp for s in self.present()}
        if len(stamps) > 1:
            raise TemporalDataError(
                "Indicator snapshots drawn from different bars",
                context={"timestamps": sorted(ts.isoformat() for ts in stamps)}
            )

    def present(self) -> list[IndicatorSnapshot]:
        snapshots = (self.gamma, self.liquidity, self.trend, self.pattern, self.volatility)
        return [s for s in snapshots if s is not None]

    def failure_for(self, kind: SnapshotKind) -> Optional[str]:
        for failed_kind, message in self.failures:
            if failed_kind == kind:
                return message
        return None

    @property
    def timestamp(self) -> Optional[datetime]:
        present = self.present()
        return present[0].timestamp if present else None
