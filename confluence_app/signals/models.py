"""
Typed gate results, confluence zones and the immutable strategy signal.

Each gate yields its own result variant so downstream stages read typed
fields instead of loose dictionaries. A rejected result always carries a
non-empty reason.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Optional

from ..models.snapshots import (
    GammaSnapshot,
    LiquiditySnapshot,
    PatternSetup,
    PatternSnapshot,
    TrendDirection,
    TrendSnapshot,
    VolatilitySnapshot,
)


class Action(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    NO_TRADE = "NO_TRADE"


class SignalQuality(str, Enum):
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    FAIR = "FAIR"
    POOR = "POOR"


class GateName(str, Enum):
    MARKET_CONDITION = "market_condition"
    TREND = "trend"
    ENTRY_TRIGGER = "entry_trigger"
    RISK_ASSESSMENT = "risk_assessment"


class LevelSource(str, Enum):
    """Origin of a price level fed to the confluence detector."""
    GEX_SUPPORT = "GEX_SUPPORT"
    GEX_RESISTANCE = "GEX_RESISTANCE"
    VALUE_AREA_POC = "VALUE_AREA_POC"
    VALUE_AREA_VAH = "VALUE_AREA_VAH"
    VALUE_AREA_VAL = "VALUE_AREA_VAL"
    VWAP = "VWAP"
    VWAP_ENTRY_ZONE = "VWAP_ENTRY_ZONE"
    FRACTAL_FIB = "FRACTAL_FIB"


class ZoneStrength(str, Enum):
    STRONG = "STRONG"
    MODERATE = "MODERATE"
    WEAK = "WEAK"


@dataclass(frozen=True)
class GateResult:
    """Base gate outcome."""
    gate: ClassVar[GateName]

    accepted: bool
    reason: str

    def __post_init__(self) -> None:
        if not self.accepted and not self.reason.strip():
            raise ValueError(f"Rejected {self.gate.value} result requires a reason")

    @classmethod
    def accept(cls, reason: str, **data: Any):
        return cls(accepted=True, reason=reason, **data)

    @classmethod
    def reject(cls, reason: str, **data: Any):
        return cls(accepted=False, reason=reason, **data)


@dataclass(frozen=True)
class MarketConditionResult(GateResult):
    gate: ClassVar[GateName] = GateName.MARKET_CONDITION

    gamma: Optional[GammaSnapshot] = None
    liquidity: Optional[LiquiditySnapshot] = None


@dataclass(frozen=True)
class TrendResult(GateResult):
    gate: ClassVar[GateName] = GateName.TREND

    trend: Optional[TrendSnapshot] = None
    direction: TrendDirection = TrendDirection.NEUTRAL


@dataclass(frozen=True)
class EntryTriggerResult(GateResult):
    gate: ClassVar[GateName] = GateName.ENTRY_TRIGGER

    pattern: Optional[PatternSnapshot] = None
    qualifying_setups: tuple[PatternSetup, ...] = ()
    best_setup: Optional[PatternSetup] = None
    best_score: float = 0.0

    @property
    def entry_level(self) -> Optional[float]:
        return self.best_setup.level if self.best_setup is not None else None


@dataclass(frozen=True)
class RiskAssessmentResult(GateResult):
    gate: ClassVar[GateName] = GateName.RISK_ASSESSMENT

    volatility: Optional[VolatilitySnapshot] = None
    position_size: float = 0.0
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class WeightedLevel:
    """A price level contributed by one indicator, weighted for clustering."""
    price: float
    source: LevelSource
    weight: float


@dataclass(frozen=True)
class ConfluenceZone:
    """A price level flagged by at least two independent indicator sources."""
    price_level: float
    supporting_indicators: frozenset[LevelSource]
    strength: ZoneStrength
    confidence: float
    members: tuple[WeightedLevel, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "price_level": self.price_level,
            "supporting_indicators": sorted(s.value for s in self.supporting_indicators),
            "strength": self.strength.value,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class StrategySignal:
    """
    The single decision emitted per tick.

    NO_TRADE signals carry zero confidence and degenerate trade parameters:
    entry, stop and both targets all equal the current price.
    """
    action: Action
    confidence: float
    quality: SignalQuality
    entry_price: float
    stop_loss: float
    target1: float
    target2: float
    position_size: float
    max_risk: float
    current_price: float
    timestamp: datetime
    confluence_zones: tuple[ConfluenceZone, ...] = ()
    warnings: tuple[str, ...] = ()
    reason: str = ""
    rejected_gate: Optional[GateName] = None
    direction: TrendDirection = TrendDirection.NEUTRAL
    reasoning: tuple[tuple[str, str], ...] = ()

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Signal confidence out of range: {self.confidence}")
        if self.action == Action.NO_TRADE:
            degenerate = (self.entry_price, self.stop_loss, self.target1, self.target2)
            if self.confidence != 0.0 or any(p != self.current_price for p in degenerate):
                raise ValueError("NO_TRADE signal must have zero confidence and degenerate prices")

    @classmethod
    def no_trade(
        cls,
        current_price: float,
        timestamp: datetime,
        reason: str,
        rejected_gate: Optional[GateName] = None,
        warnings: tuple[str, ...] = (),
        reasoning: tuple[tuple[str, str], ...] = (),
        confluence_zones: tuple[ConfluenceZone, ...] = (),
    ) -> "StrategySignal":
        return cls(
            action=Action.NO_TRADE,
            confidence=0.0,
            quality=SignalQuality.POOR,
            entry_price=current_price,
            stop_loss=current_price,
            target1=current_price,
            target2=current_price,
            position_size=0.0,
            max_risk=0.0,
            current_price=current_price,
            timestamp=timestamp,
            confluence_zones=confluence_zones,
            warnings=warnings,
            reason=reason,
            rejected_gate=rejected_gate,
            reasoning=reasoning,
        )

    @property
    def is_actionable(self) -> bool:
        return self.action != Action.NO_TRADE

    @property
    def risk_amount(self) -> float:
        """Capital at risk if filled at entry and stopped out."""
        return abs(self.entry_price - self.stop_loss) * self.position_size

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "confidence": round(self.confidence, 6),
            "quality": self.quality.value,
            "entry_price": self.entry_price,
            "stop_loss": self.stop_loss,
            "target1": self.target1,
            "target2": self.target2,
            "position_size": self.position_size,
            "max_risk": self.max_risk,
            "current_price": self.current_price,
            "timestamp": self.timestamp.isoformat(),
            "confluence_zones": [z.to_dict() for z in self.confluence_zones],
            "warnings": list(self.warnings),
            "reason": self.reason,
            "rejected_gate": self.rejected_gate.value if self.rejected_gate else None,
            "direction": self.direction.value,
            "reasoning": dict(self.reasoning),
        }
