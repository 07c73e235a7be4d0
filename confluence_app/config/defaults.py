"""Default configuration parameters for the confluence pipeline and position lifecycle."""

from dataclasses import dataclass, field, fields, replace
from typing import Any


@dataclass(frozen=True)
class MarketConditionParams:
    """Gate 1: dealer gamma regime and liquidity profile thresholds."""
    # Gamma regime
    allowed_gamma_regimes: tuple[str, ...] = ("SUPPRESSING", "TRANSITIONAL")
    gamma_risk_ceiling: str = "EXTREME"              # Risk tier must be strictly below this

    # Liquidity profile
    min_hvn_count: int = 3                           # Min high-volume nodes
    max_lvn_ratio: float = 0.4                       # Max share of low-volume nodes

    # Data sufficiency
    min_history_bars: int = 50                       # Bars required before any decision


@dataclass(frozen=True)
class TrendParams:
    """Gate 2: trend/VWAP thresholds."""
    min_confluence: float = 0.7                      # Min trend confluence level
    trend_alignment_required: bool = True            # Require POC/VWAP/trend-tag agreement


@dataclass(frozen=True)
class EntryTriggerParams:
    """Gate 3: pattern setup scoring."""
    min_setup_confluence: float = 0.6                # Setup qualifies at this confluence
    min_setup_score: float = 0.7                     # Best setup must score at least this
    trend_proximity_scale: float = 10.0              # k for distance to trend level
    price_proximity_scale: float = 20.0              # k for distance to current price


@dataclass(frozen=True)
class RiskGateParams:
    """Gate 4: volatility risk filters."""
    excluded_volatility_regimes: tuple[str, ...] = ("EXTREME",)
    max_stop_multiplier: float = 3.0                 # Dynamic stop multiplier ceiling
    critical_warning_patterns: tuple[str, ...] = ("EXTREME", "MAJOR")


@dataclass(frozen=True)
class IndicatorWeights:
    """Composite confidence weights, must sum to 1.0."""
    gamma: float = 0.25
    liquidity: float = 0.20
    trend: float = 0.20
    pattern: float = 0.20
    volatility: float = 0.15

    def total(self) -> float:
        return self.gamma + self.liquidity + self.trend + self.pattern + self.volatility


@dataclass(frozen=True)
class ConfluenceParams:
    """Confluence zone detection parameters."""
    tolerance: float = 0.005                         # Relative clustering tolerance (0.5%)
    max_zones: int = 5                               # Zones kept per tick
    poc_weight_multiplier: float = 1.2               # POC weighs more than VAH/VAL
    entry_zone_weight_multiplier: float = 0.8        # VWAP entry zones weigh less than VWAP


@dataclass(frozen=True)
class SignalParams:
    """Trade parameter derivation from the volatility unit."""
    target1_atr_multiple: float = 2.0
    target2_atr_multiple: float = 3.5
    excellent_confidence: float = 0.85
    good_confidence: float = 0.7
    fair_confidence: float = 0.6
    excellent_min_zones: int = 2


@dataclass(frozen=True)
class ExitParams:
    """Position exit policy, fractions relative to entry value."""
    # Price-based exits
    stop_loss_fraction: float = 0.35                 # Initial stop below fill value
    profit_target_fraction: float = 0.50             # Take profit above fill value
    trail_activation_fraction: float = 0.20          # Gain that arms the trailing stop
    trail_stop_fraction: float = 0.10                # Trail distance below current value
    use_signal_stop: bool = False                    # Keep signal's stop distance instead

    # Time-based exits (exchange-local decimal hours)
    force_exit_hour: float = 15.5
    max_hold_minutes_early: int = 90                 # Front half of session
    max_hold_minutes_late: int = 60                  # Back half of session

    # Decay protection
    decay_window_minutes: int = 30                   # Minutes to expiry that arm decay exit
    decay_value_fraction: float = 0.5                # Exit when value below this share of entry

    # Expiry
    expiry_hour: float = 16.0
    expiry_residual_value: float = 0.01              # Value at forced expiry close


@dataclass(frozen=True)
class PortfolioParams:
    """Portfolio risk governor limits."""
    account_balance: float = 25000.0
    max_concurrent_positions: int = 3
    max_daily_risk_fraction: float = 0.02            # Share of balance risked per session
    emergency_drawdown_fraction: float = -0.05       # Session drawdown that halts trading
    max_trades_per_day: int = 0                      # 0 disables the cap

    # Entry filter on synthesized signals
    min_signal_confidence: float = 0.6
    accepted_qualities: tuple[str, ...] = ("EXCELLENT", "GOOD")


@dataclass(frozen=True)
class SessionParams:
    """Session calendar and pacing."""
    timezone: str = "America/New_York"
    session_open_hour: float = 9.5
    session_close_hour: float = 16.0
    min_signal_spacing_minutes: int = 5
    history_window_size: int = 500                   # Rolling bars kept by the driver
    symbol: str = "SPY"


@dataclass(frozen=True)
class StrategyConfig:
    """Complete immutable strategy configuration."""
    market: MarketConditionParams = field(default_factory=MarketConditionParams)
    trend: TrendParams = field(default_factory=TrendParams)
    entry: EntryTriggerParams = field(default_factory=EntryTriggerParams)
    risk: RiskGateParams = field(default_factory=RiskGateParams)
    weights: IndicatorWeights = field(default_factory=IndicatorWeights)
    confluence: ConfluenceParams = field(default_factory=ConfluenceParams)
    signal: SignalParams = field(default_factory=SignalParams)
    exits: ExitParams = field(default_factory=ExitParams)
    portfolio: PortfolioParams = field(default_factory=PortfolioParams)
    session: SessionParams = field(default_factory=SessionParams)

    def with_overrides(self, overrides: dict[str, Any]) -> "StrategyConfig":
        """
        Return a copy with per-section overrides applied.

        ``overrides`` maps section name to a dict of field values, e.g.
        ``{"exits": {"profit_target_fraction": 0.6}}``. Lists are coerced to
        tuples for tuple-typed fields. Unknown sections or keys raise KeyError.
        """
        section_names = {f.name for f in fields(self)}
        updated = {}
        for section_name, values in overrides.items():
            if section_name not in section_names:
                raise KeyError(f"Unknown config section: {section_name}")
            section = getattr(self, section_name)
            known = {f.name for f in fields(section)}
            changes = {}
            for key, value in (values or {}).items():
                if key not in known:
                    raise KeyError(f"Unknown config key: {section_name}.{key}")
                if isinstance(getattr(section, key), tuple) and isinstance(value, list):
                    value = tuple(value)
                changes[key] = value
            updated[section_name] = replace(section, **changes)
        return replace(self, **updated)


def get_default_config() -> StrategyConfig:
    """Get the default strategy configuration."""
    return StrategyConfig()
